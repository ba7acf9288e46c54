from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class EventKind(str, Enum):
    MESSAGE = "message"
    ACTION = "action"


@dataclass(frozen=True)
class Attachment:
    """Image shared together with a chat message."""

    source_ref: str
    display_name: str
    media_type: str


@dataclass(frozen=True)
class InboundEvent:
    """Normalized chat event handed from the intake gate to the flow controller.

    Attributes:
        id: Transport-level identifier used for de-duplication.
        kind: Plain message or interactive button action.
        session_id: Thread root timestamp; identifies the conversation.
        channel: Channel the thread lives in.
        author: Slack user id of the sender.
        text: Message text (empty for actions).
        attachment: First image attached to the message, if any.
        in_thread: True when a message was posted as a thread reply.
        action_id: Button action identifier (actions only).
        action_value: Button value, usually the entry id (actions only).
    """

    id: str
    kind: EventKind
    session_id: str
    channel: str
    author: str = ""
    text: str = ""
    attachment: Optional[Attachment] = None
    in_thread: bool = False
    action_id: Optional[str] = None
    action_value: Optional[str] = None
