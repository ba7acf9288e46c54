from __future__ import annotations

import json
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, List


@dataclass(frozen=True)
class Entry:
    """One record of the published index file.

    Attributes:
        id: Positive, unique and monotonically assigned identifier.
        image: Site-relative image path (e.g. ``/images/2024/12/1_a.webp``).
        title: Free text, may be empty.
        datetime: Calendar date in ``YYYY-MM-DD`` form.
        link: Absolute URL or empty string.
    """

    id: int
    image: str
    title: str = ""
    datetime: str = ""
    link: str = ""

    def with_updates(self, **changes: Any) -> "Entry":
        """Return a copy with the given known fields replaced."""
        known = {key: value for key, value in changes.items() if key in _FIELDS and key != "id"}
        return replace(self, **known)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entry":
        return cls(
            id=int(data["id"]),
            image=str(data.get("image") or ""),
            title=str(data.get("title") or ""),
            datetime=str(data.get("datetime") or ""),
            link=str(data.get("link") or ""),
        )


_FIELDS = ("id", "image", "title", "datetime", "link")


def encode_entries(entries: List[Entry]) -> str:
    """Serialize the collection the way it is stored in the repository."""
    return json.dumps([asdict(entry) for entry in entries], ensure_ascii=False, indent=2)


def decode_entries(text: str) -> List[Entry]:
    """Parse the index file content.

    Raises:
        ValueError: If the content is not a JSON array of entry objects.
    """
    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError("Index file must contain a JSON array.")
    try:
        return [Entry.from_dict(item) for item in data]
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Index file contains a malformed entry: {exc!r}") from exc
