"""Minimal async Slack Web API client (chat.postMessage and private file download)."""

from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from utils.errors import NotifierError

LOGGER = logging.getLogger(__name__)

SLACK_API = "https://slack.com/api"


class SlackClient:
    def __init__(self, http: httpx.AsyncClient, bot_token: str) -> None:
        self._http = http
        self._auth = {"Authorization": f"Bearer {bot_token}"}

    async def post_message(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Call chat.postMessage.

        Slack answers HTTP 200 with ``ok: false`` for most failures, so both
        the status and the ``ok`` flag are checked.

        Raises:
            NotifierError: If the message was not accepted.
        """
        try:
            response = await self._http.post(f"{SLACK_API}/chat.postMessage", headers=self._auth, json=payload)
        except httpx.HTTPError as exc:
            raise NotifierError(f"chat.postMessage request failed: {exc}") from exc

        if not response.is_success:
            raise NotifierError(f"chat.postMessage returned HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            raise NotifierError("chat.postMessage returned a non-JSON body") from exc
        if not data.get("ok"):
            raise NotifierError(f"chat.postMessage rejected: {data.get('error', 'unknown_error')}")
        return data

    async def download_file(self, url: str) -> bytes:
        """Fetch a private file with the bot token.

        Raises:
            ValueError: If Slack does not return the file.
        """
        try:
            response = await self._http.get(url, headers=self._auth, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise ValueError(f"Failed to fetch file: {exc}") from exc
        if not response.is_success:
            raise ValueError(f"Failed to fetch file: {response.status_code}")
        # Slack serves an HTML login page instead of a 403 when the token lacks files:read
        if response.headers.get("content-type", "").startswith("text/html"):
            raise ValueError("Failed to fetch file: Slack returned an HTML page (missing files:read scope?)")
        return response.content
