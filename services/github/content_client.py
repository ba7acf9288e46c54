"""Thin async client for the GitHub contents and git-data APIs.

Every method checks the response and raises ``RemoteHostError`` naming the
failing step; callers never see a raw ``httpx.Response``.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, List, Optional

import httpx

from utils.errors import RefConflictError, RemoteHostError

LOGGER = logging.getLogger(__name__)

API_ROOT = "https://api.github.com"
USER_AGENT = "image-entry-bot"


class ContentRepositoryClient:
    """Read/write primitives against one repository.

    Args:
        http: Shared ``httpx.AsyncClient``; its lifetime is managed by the app.
        token: Personal access token with contents:write scope.
        owner: Repository owner.
        repo: Repository name.
    """

    def __init__(self, http: httpx.AsyncClient, token: str, owner: str, repo: str) -> None:
        self._http = http
        self._base = f"{API_ROOT}/repos/{owner}/{repo}"
        self._headers = {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
        }

    async def _request(self, step: str, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, f"{self._base}{path}", headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            LOGGER.error("GitHub API request failed (%s): %s", step, exc)
            raise RemoteHostError(step, None, str(exc)) from exc

    @staticmethod
    def _check(step: str, response: httpx.Response) -> Dict[str, Any]:
        if response.is_success:
            return response.json() if response.content else {}
        LOGGER.error("GitHub API error (%s): %s %s", step, response.status_code, response.text[:200])
        raise RemoteHostError(step, response.status_code, response.text)

    async def get_file(self, path: str, ref: Optional[str] = None) -> Optional[bytes]:
        """Return the decoded file content, or None when the file does not exist."""
        params = {"ref": ref} if ref else None
        response = await self._request("get file", "GET", f"/contents/{path}", params=params)
        if response.status_code == 404:
            return None
        data = self._check("get file", response)
        content = "".join((data.get("content") or "").split())
        return base64.b64decode(content) if content else b""

    async def get_ref_sha(self, branch: str) -> str:
        response = await self._request("get branch ref", "GET", f"/git/refs/heads/{branch}")
        return self._check("get branch ref", response)["object"]["sha"]

    async def get_commit(self, sha: str) -> Dict[str, Any]:
        response = await self._request("get commit", "GET", f"/git/commits/{sha}")
        return self._check("get commit", response)

    async def get_tree(self, sha: str, recursive: bool = False) -> Dict[str, Any]:
        params = {"recursive": "1"} if recursive else None
        response = await self._request("get tree", "GET", f"/git/trees/{sha}", params=params)
        return self._check("get tree", response)

    async def create_blob(self, content: bytes, step: str = "create blob") -> str:
        """Upload raw bytes as a base64 blob and return its sha."""
        body = {"content": base64.b64encode(content).decode("ascii"), "encoding": "base64"}
        response = await self._request(step, "POST", "/git/blobs", json=body)
        return self._check(step, response)["sha"]

    async def create_tree(self, items: List[Dict[str, str]], base_tree: Optional[str] = None) -> str:
        body: Dict[str, Any] = {"tree": items}
        if base_tree:
            body["base_tree"] = base_tree
        response = await self._request("create tree", "POST", "/git/trees", json=body)
        return self._check("create tree", response)["sha"]

    async def create_commit(self, message: str, tree: str, parents: List[str], identity: Dict[str, str]) -> str:
        body = {
            "message": message,
            "tree": tree,
            "parents": parents,
            "author": identity,
            "committer": identity,
        }
        response = await self._request("create commit", "POST", "/git/commits", json=body)
        return self._check("create commit", response)["sha"]

    async def update_ref(self, branch: str, sha: str, force: bool = False) -> None:
        """Move ``heads/{branch}`` to ``sha``.

        Raises:
            RefConflictError: If the host rejects a non-fast-forward update.
        """
        step = "update branch ref"
        response = await self._request(step, "PATCH", f"/git/refs/heads/{branch}", json={"sha": sha, "force": force})
        if response.status_code in (409, 422):
            LOGGER.warning("Branch %s moved concurrently; fast-forward rejected", branch)
            raise RefConflictError(step, response.status_code, response.text)
        self._check(step, response)
