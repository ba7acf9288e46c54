"""All-or-nothing multi-file commits on top of the git-data API.

GitHub has no multi-file transaction, so each operation builds a complete
tree first and only then moves the branch ref. The ref update is the single
visible step: if any earlier call fails the branch still points at the last
consistent commit, and the blobs/trees/commits created so far are unreachable
garbage for the host to collect.

The ref is fast-forwarded with ``force: false``. A writer that raced us is
reported as ``RefConflictError``; re-reading and retrying is the caller's job.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from models.entry import Entry, decode_entries, encode_entries
from services.github.content_client import ContentRepositoryClient
from utils.errors import RemoteHostError

LOGGER = logging.getLogger(__name__)

BLOB_MODE = "100644"
DEFAULT_IDENTITY = {"name": "image-entry-bot", "email": "image-entry-bot@users.noreply.github.com"}


@dataclass
class TreeChangeSet:
    """Tree items to submit as exactly one commit.

    ``base_tree`` set means a sparse merge onto that tree; ``None`` means the
    items are the complete new tree (needed for removals).
    """

    items: List[Dict[str, str]] = field(default_factory=list)
    base_tree: Optional[str] = None

    def put_blob(self, path: str, sha: str) -> None:
        self.items = [item for item in self.items if item["path"] != path]
        self.items.append({"path": path, "mode": BLOB_MODE, "type": "blob", "sha": sha})

    def paths(self) -> List[str]:
        return [item["path"] for item in self.items]


@dataclass(frozen=True)
class _Head:
    commit_sha: str
    tree_sha: str


class AtomicCommitEngine:
    """Compose ``ContentRepositoryClient`` calls into single-commit change sets.

    Args:
        client: Repository client.
        branch: Target branch.
        index_path: Repository path of the JSON index file.
        identity: Author/committer used for every commit.
    """

    def __init__(
        self,
        client: ContentRepositoryClient,
        branch: str,
        index_path: str,
        identity: Optional[Dict[str, str]] = None,
    ) -> None:
        self.client = client
        self.branch = branch
        self.index_path = index_path
        self.identity = identity or dict(DEFAULT_IDENTITY)

    async def read_entries(self) -> List[Entry]:
        """Fetch and decode the index.

        A missing file bootstraps an empty collection. Empty content or text
        that is not JSON also yields ``[]`` so the wizard keeps working.

        Raises:
            RemoteHostError: If the JSON parses but is not a list of entries;
                writing over it would drop rows.
        """
        raw = await self.client.get_file(self.index_path, ref=self.branch)
        if raw is None:
            LOGGER.info("Index %s not found, starting with an empty collection", self.index_path)
            return []
        text = raw.decode("utf-8", errors="replace").strip()
        if not text:
            return []
        try:
            return decode_entries(text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Index %s is not JSON (%s); treating it as empty", self.index_path, exc)
            return []
        except ValueError as exc:
            LOGGER.error("Index %s has malformed entries: %s", self.index_path, exc)
            raise RemoteHostError("read index", None, str(exc)) from exc

    async def commit_with_image(self, image_path: str, image_bytes: bytes, entries: List[Entry], message: str) -> str:
        """Add the image and replace the index in one commit. Returns the new commit sha."""
        head = await self._read_head()
        image_sha = await self.client.create_blob(image_bytes, step="create image blob")
        index_sha = await self._create_index_blob(entries)

        changes = TreeChangeSet(base_tree=head.tree_sha)
        changes.put_blob(image_path, image_sha)
        changes.put_blob(self.index_path, index_sha)
        return await self._commit(head, changes, message)

    async def commit_index(self, entries: List[Entry], message: str) -> str:
        """Replace only the index file in one commit."""
        head = await self._read_head()
        index_sha = await self._create_index_blob(entries)

        changes = TreeChangeSet(base_tree=head.tree_sha)
        changes.put_blob(self.index_path, index_sha)
        return await self._commit(head, changes, message)

    async def commit_delete(self, image_path: Optional[str], entries: List[Entry], message: str) -> str:
        """Remove ``image_path`` (if present) and replace the index in one commit.

        A removal cannot be expressed as a sparse merge, so the full recursive
        listing is rebuilt without the target blob and submitted as a new tree.
        """
        head = await self._read_head()
        listing = await self.client.get_tree(head.tree_sha, recursive=True)
        if listing.get("truncated"):
            raise RemoteHostError("get tree", 200, "recursive tree listing truncated; refusing to rebuild")

        index_sha = await self._create_index_blob(entries)

        changes = TreeChangeSet(base_tree=None)
        removed = False
        for item in listing.get("tree", []):
            if item.get("type") == "tree":
                # directories are recreated from the blob paths
                continue
            if image_path and item["path"] == image_path:
                removed = True
                continue
            changes.items.append(
                {"path": item["path"], "mode": item["mode"], "type": item["type"], "sha": item["sha"]}
            )
        changes.put_blob(self.index_path, index_sha)

        if image_path and not removed:
            LOGGER.warning("Image %s not present in tree; updating index only", image_path)
        return await self._commit(head, changes, message)

    async def _read_head(self) -> _Head:
        commit_sha = await self.client.get_ref_sha(self.branch)
        commit = await self.client.get_commit(commit_sha)
        return _Head(commit_sha=commit_sha, tree_sha=commit["tree"]["sha"])

    async def _create_index_blob(self, entries: List[Entry]) -> str:
        payload = encode_entries(entries).encode("utf-8")
        return await self.client.create_blob(payload, step="create index blob")

    async def _commit(self, head: _Head, changes: TreeChangeSet, message: str) -> str:
        tree_sha = await self.client.create_tree(changes.items, base_tree=changes.base_tree)
        commit_sha = await self.client.create_commit(message, tree_sha, [head.commit_sha], self.identity)
        await self.client.update_ref(self.branch, commit_sha, force=False)
        LOGGER.info("Committed %s on %s (%d paths): %s", commit_sha[:7], self.branch, len(changes.items), message)
        return commit_sha
