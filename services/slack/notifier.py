"""Outbound thread messages: plain text, colour bar, or interactive blocks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from services.slack.slack_client import SlackClient

COLORS = ("good", "warning", "danger")


@dataclass(frozen=True)
class OutboundMessage:
    """Chat message rendered by ``services.slack.blocks``.

    ``text`` is always present and doubles as the plain-text fallback when a
    rich message cannot be delivered.
    """

    text: str
    color: Optional[str] = None
    blocks: List[Dict[str, Any]] = field(default_factory=list)

    def as_plain(self) -> "OutboundMessage":
        return OutboundMessage(text=self.text)


class Notifier:
    def __init__(self, slack: SlackClient) -> None:
        self._slack = slack

    async def send(self, channel: str, thread_ts: str, message: OutboundMessage) -> None:
        """Post ``message`` into the thread.

        Raises:
            NotifierError: If Slack does not accept the message.
        """
        payload: Dict[str, Any] = {"channel": channel, "thread_ts": thread_ts, "text": message.text}
        if message.color and message.blocks:
            payload["attachments"] = [{"color": message.color, "blocks": message.blocks}]
        elif message.color:
            # the text lives in the attachment only, otherwise Slack shows it twice
            payload["text"] = ""
            payload["attachments"] = [{"color": message.color, "text": message.text, "mrkdwn_in": ["text"]}]
        elif message.blocks:
            payload["blocks"] = message.blocks
        await self._slack.post_message(payload)
