"""Session domain models for the upload wizard.

Each workflow state is its own dataclass carrying only the fields valid in
that state; ``session_from_dict`` dispatches on the ``state`` tag.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union


class FlowState(str, Enum):
	WAITING_DATE = "waiting_date"
	WAITING_TITLE = "waiting_title"
	WAITING_LINK = "waiting_link"
	COMPLETED = "completed"
	EDITING = "editing"


EDITABLE_FIELDS = ("date", "title", "link")


@dataclass(frozen=True)
class PendingImage:
	"""Slack file waiting to be uploaded."""

	source_ref: str
	display_name: str
	media_type: str


@dataclass(frozen=True)
class Collected:
	"""Metadata answers known for a finished upload."""

	date: Optional[str] = None
	title: Optional[str] = None
	link: Optional[str] = None


@dataclass(frozen=True)
class WaitingDate:
	session_id: str
	channel: str
	pending_image: PendingImage
	created_at: float = field(default_factory=time.time)

	state = FlowState.WAITING_DATE


@dataclass(frozen=True)
class WaitingTitle:
	session_id: str
	channel: str
	pending_image: PendingImage
	date: str
	created_at: float = field(default_factory=time.time)

	state = FlowState.WAITING_TITLE


@dataclass(frozen=True)
class WaitingLink:
	session_id: str
	channel: str
	pending_image: PendingImage
	date: str
	title: str
	created_at: float = field(default_factory=time.time)

	state = FlowState.WAITING_LINK


@dataclass(frozen=True)
class Completed:
	session_id: str
	channel: str
	entry_id: int
	collected: Collected = field(default_factory=Collected)
	created_at: float = field(default_factory=time.time)

	state = FlowState.COMPLETED


@dataclass(frozen=True)
class Editing:
	session_id: str
	channel: str
	entry_id: int
	editing_field: str
	collected: Collected = field(default_factory=Collected)
	created_at: float = field(default_factory=time.time)

	state = FlowState.EDITING


Session = Union[WaitingDate, WaitingTitle, WaitingLink, Completed, Editing]

_VARIANTS = {
	FlowState.WAITING_DATE: WaitingDate,
	FlowState.WAITING_TITLE: WaitingTitle,
	FlowState.WAITING_LINK: WaitingLink,
	FlowState.COMPLETED: Completed,
	FlowState.EDITING: Editing,
}


def session_to_dict(session: Session) -> Dict[str, Any]:
	"""Serialize a session variant with its ``state`` tag."""
	data = asdict(session)
	data["state"] = session.state.value
	return data


def session_from_dict(data: Dict[str, Any]) -> Session:
	"""Rebuild the session variant named by the ``state`` tag.

	Raises:
		ValueError: If the tag is unknown or required fields are missing.
	"""
	payload = dict(data)
	try:
		variant = _VARIANTS[FlowState(payload.pop("state"))]
	except (KeyError, ValueError) as exc:
		raise ValueError(f"Unknown session state in {data!r}") from exc

	if "pending_image" in payload:
		payload["pending_image"] = PendingImage(**payload["pending_image"])
	if "collected" in payload:
		payload["collected"] = Collected(**(payload["collected"] or {}))
	try:
		return variant(**payload)
	except TypeError as exc:
		raise ValueError(f"Malformed {variant.__name__} session: {exc}") from exc
