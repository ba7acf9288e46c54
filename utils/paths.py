"""Conversions between repository paths and the site paths stored in the index."""

from __future__ import annotations

import hashlib
import re
from pathlib import PurePosixPath

MIN_STEM_LENGTH = 3

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


def with_trailing_slash(path: str) -> str:
    return path if path.endswith("/") else f"{path}/"


def to_site_image_path(image_base: str, relative_path: str) -> str:
    """``("public/images/", "2024/12/a.webp")`` -> ``"/images/2024/12/a.webp"``."""
    base = re.sub(r"^public/", "", with_trailing_slash(image_base))
    return f"/{base}{relative_path.lstrip('/')}"


def to_repo_image_path(image_base: str, site_path: str) -> str:
    """Map a stored image path back to its path inside the repository.

    Accepts site paths (``/images/2024/12/a.webp``), repository paths
    (``public/images/...``) and bare relative paths (``2024/12/a.webp``).
    """
    base = with_trailing_slash(image_base)
    public_less = re.sub(r"^public/", "", base)
    path = site_path.lstrip("/")

    if path.startswith(base):
        return path
    if public_less != base and path.startswith(public_less):
        return f"public/{path}"
    return f"{base}{path}"


def sanitize_file_name(name: str) -> str:
    """Keep ASCII letters, digits, ``-`` and ``_`` in the stem; hash it if too little survives."""
    pure = PurePosixPath(name or "")
    stem, suffix = pure.stem, pure.suffix
    cleaned = _UNSAFE.sub("", stem)
    if len(cleaned) < MIN_STEM_LENGTH:
        digest = hashlib.sha1(stem.encode("utf-8")).hexdigest()[:8]
        cleaned = f"file_{digest}"
    return f"{cleaned}{suffix}"


def build_image_file_name(display_name: str, timestamp_ms: int, extension: str = ".webp") -> str:
    """``{timestamp}_{sanitized stem}{extension}``."""
    stem = PurePosixPath(sanitize_file_name(display_name)).stem
    return f"{timestamp_ms}_{stem}{extension}"


def build_relative_image_path(normalized_date: str, file_name: str) -> str:
    """Partition by ``YYYY/MM`` taken from a ``YYYY/MM/DD`` date."""
    year, month, _ = normalized_date.split("/")
    return f"{year}/{month}/{file_name}"
