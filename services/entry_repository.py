"""Pure operations over the decoded entry collection.

Nothing in this module performs I/O or raises: unknown ids are no-ops and the
input list is never mutated.
"""

from __future__ import annotations

from typing import Any, List, Optional

from models.entry import Entry


def compute_next_id(entries: List[Entry]) -> int:
    """Return ``max(id) + 1``, or 1 for an empty collection."""
    return max((entry.id for entry in entries), default=0) + 1


def insert_at_head(entries: List[Entry], entry: Entry) -> List[Entry]:
    """Return a new collection with ``entry`` first (newest first ordering)."""
    return [entry, *entries]


def update_by_id(entries: List[Entry], entry_id: int, **changes: Any) -> List[Entry]:
    """Return a collection with the matching entry patched."""
    return [entry.with_updates(**changes) if entry.id == entry_id else entry for entry in entries]


def delete_by_id(entries: List[Entry], entry_id: int) -> List[Entry]:
    return [entry for entry in entries if entry.id != entry_id]


def find_by_id(entries: List[Entry], entry_id: int) -> Optional[Entry]:
    return next((entry for entry in entries if entry.id == entry_id), None)


def find_image_path_by_id(entries: List[Entry], entry_id: int) -> Optional[str]:
    """Return the stored image path of an entry, or None when absent or empty."""
    entry = find_by_id(entries, entry_id)
    if entry is None or not entry.image:
        return None
    return entry.image
