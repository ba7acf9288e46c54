"""Error taxonomy shared by the flow controller, commit engine and notifier."""

from __future__ import annotations

from typing import Optional


class ValidationError(ValueError):
    """User input that cannot be normalized (date, link or title)."""

    def __init__(self, field: str, raw: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.raw = raw


class SessionNotFound(KeyError):
    """No live session exists for the given thread."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class RemoteHostError(RuntimeError):
    """A content-host call returned a non-success response.

    Attributes:
        step: Name of the failing step (e.g. ``"create tree"``).
        status: HTTP status code, or None when the request never completed.
        body: Response body truncated to ``BODY_LIMIT`` characters.
    """

    BODY_LIMIT = 200

    def __init__(self, step: str, status: Optional[int], body: str = "") -> None:
        self.step = step
        self.status = status
        self.body = (body or "")[: self.BODY_LIMIT]
        super().__init__(f"GitHub API error ({step}): {status} - {self.body}")


class RefConflictError(RemoteHostError):
    """The branch moved since the head was read; the fast-forward was rejected."""


class NotifierError(RuntimeError):
    """An outbound chat message could not be delivered."""
