"""Runtime configuration read from the environment (optionally a .env file)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

REQUIRED = ("SLACK_BOT_TOKEN", "GITHUB_TOKEN", "GITHUB_OWNER", "GITHUB_REPO")


@dataclass(frozen=True)
class Settings:
    slack_bot_token: str
    github_token: str
    github_owner: str
    github_repo: str
    slack_signing_secret: str = ""
    github_branch: str = "main"
    image_path: str = "public/images/"
    json_path: str = "public/data/entries.json"
    site_base_url: str = ""
    database_dir: str = "./database"
    session_active_ttl: int = 3_600
    session_completed_ttl: int = 604_800
    dedup_capacity: int = 1000
    image_max_size: int = 1600
    commit_retries: int = 3

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``environ`` (defaults to ``os.environ`` after ``load_dotenv``).

        Raises:
            RuntimeError: If a required variable is missing or a number is malformed.
        """
        if environ is None:
            load_dotenv()  # Load environment variables from .env file if present
            environ = os.environ

        missing = [name for name in REQUIRED if not (environ.get(name) or "").strip()]
        if missing:
            raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

        def _int(name: str, default: int) -> int:
            raw = environ.get(name)
            if raw is None or not raw.strip():
                return default
            try:
                return int(raw)
            except ValueError as exc:
                raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc

        return cls(
            slack_bot_token=environ["SLACK_BOT_TOKEN"].strip(),
            github_token=environ["GITHUB_TOKEN"].strip(),
            github_owner=environ["GITHUB_OWNER"].strip(),
            github_repo=environ["GITHUB_REPO"].strip(),
            slack_signing_secret=(environ.get("SLACK_SIGNING_SECRET") or "").strip(),
            github_branch=(environ.get("GITHUB_BRANCH") or "main").strip(),
            image_path=environ.get("IMAGE_PATH") or cls.image_path,
            json_path=environ.get("JSON_PATH") or cls.json_path,
            site_base_url=(environ.get("SITE_BASE_URL") or "").rstrip("/"),
            database_dir=environ.get("DATABASE_DIR") or cls.database_dir,
            session_active_ttl=_int("SESSION_ACTIVE_TTL", cls.session_active_ttl),
            session_completed_ttl=_int("SESSION_COMPLETED_TTL", cls.session_completed_ttl),
            dedup_capacity=_int("DEDUP_CAPACITY", cls.dedup_capacity),
            image_max_size=_int("IMAGE_MAX_SIZE", cls.image_max_size),
            commit_retries=_int("GITHUB_COMMIT_RETRIES", cls.commit_retries),
        )
