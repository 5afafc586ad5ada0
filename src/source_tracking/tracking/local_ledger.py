"""Local change ledger: a committed snapshot of the project's tracked files.

The working tree (restricted to the configured package directories) is
compared against the snapshot, never against the remote.  Each tracked
path stores a content fingerprint and the time it was last committed.

State file layout (``<project>/<state_dir>/orgs/<org_id>/local_snapshot.json``)::

    {
      "version": 1,
      "org_id": "00D...",
      "project": "/work/app",
      "last_commit": "2026-01-01T00:00:00+00:00",
      "last_message": "via resetLocalTracking",
      "entries": {
        "force-app/main/default/classes/Foo.cls": {
          "fingerprint": "<sha256>",
          "synced_at": "2026-01-01T00:00:00+00:00"
        }
      }
    }

A scan caches its ``LocalStatus`` until the next commit or an explicit
``get_status(refresh=True)``.
"""

from __future__ import annotations

import fnmatch
import hashlib
import logging
import os
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Iterator, Sequence

from ..core.async_utils import run_sync
from .errors import LedgerPersistenceError
from .models import LocalStatus
from .persistence import read_json, remove_tree, write_json_atomic

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
SNAPSHOT_FILENAME = "local_snapshot.json"


def fingerprint(path: Path) -> str:
    """Return a normalised SHA-256 hex digest of the file at *path*.

    A UTF-8 BOM is stripped and CRLF line endings become LF before hashing
    so checkouts on different platforms fingerprint the same.

    Raises:
        OSError: If the file cannot be read.
    """
    data = path.read_bytes()
    if data.startswith(b"\xef\xbb\xbf"):
        data = data[3:]
    data = data.replace(b"\r\n", b"\n")
    return hashlib.sha256(data).hexdigest()


def project_relative(project_path: Path, filename: str) -> str | None:
    """Return *filename* as a project-relative POSIX path.

    Absolute paths are also matched with symlinks resolved, so a project
    reached through a linked directory still maps onto its files.
    Returns ``None`` for paths outside *project_path*.
    """
    path = Path(filename)
    if not path.is_absolute():
        rel = PurePosixPath(os.path.normpath(path.as_posix()))
        if rel.parts and rel.parts[0] == "..":
            return None
        return rel.as_posix()
    for candidate in (path, path.resolve()):
        for root in (project_path, project_path.resolve()):
            if candidate.is_relative_to(root):
                return candidate.relative_to(root).as_posix()
    return None


class LocalChangeLedger:
    """Detect drift between the working tree and the last committed snapshot.

    Use ``await LocalChangeLedger.create(...)`` to get a loaded instance.

    Args:
        org_id: Remote org identity the snapshot belongs to.
        project_path: Absolute project directory.
        package_directories: Package folders relative to *project_path*.
        state_dir: Tracking state folder relative to *project_path*.
        ignore: Glob patterns (matched against the project-relative path
            and the file name) excluded from scans.
    """

    def __init__(
        self,
        org_id: str,
        project_path: Path,
        package_directories: Sequence[str],
        state_dir: str = ".source_tracking",
        ignore: Sequence[str] = (),
    ) -> None:
        self.org_id = org_id
        self.project_path = project_path
        self.package_directories = list(package_directories)
        self._state_root = PurePosixPath(Path(state_dir).as_posix())
        self._ignore = list(ignore)
        self._state_path = (
            project_path / state_dir / "orgs" / org_id / SNAPSHOT_FILENAME
        )
        self._snapshot: dict = self._empty_snapshot()
        self._status: LocalStatus | None = None

    @classmethod
    async def create(
        cls,
        org_id: str,
        project_path: Path,
        package_directories: Sequence[str],
        state_dir: str = ".source_tracking",
        ignore: Sequence[str] = (),
    ) -> LocalChangeLedger:
        """Build a ledger and load its snapshot (empty on first use)."""
        ledger = cls(
            org_id, project_path, package_directories, state_dir, ignore
        )
        await ledger.load()
        return ledger

    @property
    def state_path(self) -> Path:
        return self._state_path

    @property
    def tracked_filenames(self) -> list[str]:
        return sorted(self._snapshot.get("entries", {}))

    async def load(self) -> None:
        """(Re)load the snapshot from disk and drop any cached status."""
        self._snapshot = await run_sync(
            read_json, self.state_path, self._empty_snapshot()
        )
        self._status = None
        logger.debug(
            "Loaded local snapshot with %d entries from %s",
            len(self._snapshot.get("entries", {})),
            self.state_path,
        )

    # ------------------------------------------------------------------
    # Status queries
    # ------------------------------------------------------------------

    async def get_status(self, refresh: bool = False) -> LocalStatus:
        """Scan the working tree, or return the cached scan."""
        if self._status is None or refresh:
            self._status = await run_sync(self._scan)
        return self._status

    async def get_add_filenames(self) -> list[str]:
        return list((await self.get_status()).added)

    async def get_modify_filenames(self) -> list[str]:
        return list((await self.get_status()).modified)

    async def get_delete_filenames(self) -> list[str]:
        return list((await self.get_status()).deleted)

    async def get_unchanged_filenames(self) -> list[str]:
        return list((await self.get_status()).unchanged)

    async def get_moved_filenames(self) -> list[tuple[str, str]]:
        return list((await self.get_status()).moved)

    async def get_non_delete_filenames(
        self, include_unchanged: bool = False
    ) -> list[str]:
        """Added and modified paths, plus unchanged ones when requested."""
        status = await self.get_status()
        filenames = [*status.added, *status.modified]
        if include_unchanged:
            filenames.extend(status.unchanged)
        return filenames

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def commit_changes(
        self,
        deployed_files: Sequence[str] | None = None,
        deleted_files: Sequence[str] | None = None,
        message: str | None = None,
    ) -> None:
        """Record *deployed_files* at their current fingerprint and forget
        *deleted_files*, then persist.

        The snapshot is only replaced after the new state is durably
        written.  Calling with nothing to commit is a no-op.

        Raises:
            LedgerPersistenceError: If a deployed file exists but cannot be
                read, or the snapshot cannot be written.
        """
        if not deployed_files and not deleted_files:
            logger.debug("commit_changes: nothing to commit")
            return
        await run_sync(
            self._commit,
            list(deployed_files or []),
            list(deleted_files or []),
            message,
        )
        self._status = None

    async def delete(self) -> str:
        """Remove all persisted local tracking state for this org."""
        description = await run_sync(remove_tree, self._state_path)
        self._snapshot = self._empty_snapshot()
        self._status = None
        return description

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _empty_snapshot(self) -> dict:
        return {
            "version": SNAPSHOT_VERSION,
            "org_id": self.org_id,
            "project": str(self.project_path),
            "last_commit": None,
            "last_message": None,
            "entries": {},
        }

    def _commit(
        self, deployed: list[str], deleted: list[str], message: str | None
    ) -> None:
        now = datetime.now(timezone.utc).isoformat()
        entries = dict(self._snapshot.get("entries", {}))

        for filename in deployed:
            rel = self._normalize(filename)
            if rel is None:
                continue
            abs_path = self.project_path / rel
            if not abs_path.is_file():
                logger.warning(
                    "Deployed file %s no longer exists; dropping it from the snapshot",
                    rel,
                )
                entries.pop(rel, None)
                continue
            try:
                entries[rel] = {
                    "fingerprint": fingerprint(abs_path),
                    "synced_at": now,
                }
            except OSError as exc:
                raise LedgerPersistenceError(
                    f"Cannot fingerprint deployed file {rel}: {exc}"
                ) from exc

        for filename in deleted:
            rel = self._normalize(filename)
            if rel is not None:
                entries.pop(rel, None)

        snapshot = {
            **self._snapshot,
            "last_commit": now,
            "last_message": message,
            "entries": entries,
        }
        write_json_atomic(self.state_path, snapshot)
        self._snapshot = snapshot
        logger.info(
            "Committed %d deployed and %d deleted file(s) to local tracking",
            len(deployed),
            len(deleted),
        )

    def _normalize(self, filename: str) -> str | None:
        rel = project_relative(self.project_path, filename)
        if rel is None:
            logger.warning(
                "Ignoring %s: outside project %s", filename, self.project_path
            )
        return rel

    def _is_ignored(self, rel: PurePosixPath) -> bool:
        if rel.is_relative_to(self._state_root):
            return True
        rel_str = str(rel)
        return any(
            fnmatch.fnmatch(rel_str, pattern)
            or fnmatch.fnmatch(rel.name, pattern)
            for pattern in self._ignore
        )

    def _walk(self) -> Iterator[str]:
        seen: set[str] = set()
        for package_dir in self.package_directories:
            root = self.project_path / package_dir
            if not root.is_dir():
                logger.warning("Package directory %s does not exist", root)
                continue
            for path in sorted(root.rglob("*")):
                if not path.is_file():
                    continue
                rel = PurePosixPath(
                    path.relative_to(self.project_path).as_posix()
                )
                if self._is_ignored(rel) or str(rel) in seen:
                    continue
                seen.add(str(rel))
                yield str(rel)

    def _scan(self) -> LocalStatus:
        entries: dict = self._snapshot.get("entries", {})
        current: dict[str, str] = {}
        errors: dict[str, str] = {}

        for rel in self._walk():
            try:
                current[rel] = fingerprint(self.project_path / rel)
            except OSError as exc:
                logger.warning("Unable to read %s: %s", rel, exc)
                errors[rel] = str(exc)

        added = sorted(p for p in current if p not in entries)
        modified = sorted(
            p
            for p in current
            if p in entries and entries[p].get("fingerprint") != current[p]
        )
        unchanged = sorted(
            p
            for p in current
            if p in entries and entries[p].get("fingerprint") == current[p]
        )
        deleted = sorted(
            p for p in entries if p not in current and p not in errors
        )

        deleted_by_fingerprint: dict[str, str] = {}
        for p in deleted:
            deleted_by_fingerprint.setdefault(
                entries[p].get("fingerprint", ""), p
            )
        moved: list[tuple[str, str]] = []
        for p in added:
            old = deleted_by_fingerprint.pop(current[p], None)
            if old is not None:
                moved.append((old, p))

        logger.debug(
            "Local scan: %d added, %d modified, %d deleted, %d unreadable",
            len(added),
            len(modified),
            len(deleted),
            len(errors),
        )
        return LocalStatus(
            added=added,
            modified=modified,
            deleted=deleted,
            unchanged=unchanged,
            moved=moved,
            errors=errors,
            scanned_at=datetime.now(timezone.utc).isoformat(),
        )
