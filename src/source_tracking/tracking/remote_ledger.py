"""Remote change ledger: per-org revision table for remote metadata.

Each remote identity (keyed by ``get_metadata_key``) has a
``MemberRevision`` recording the highest revision seen on the remote and
the revision at the last sync point.  A member is *outstanding* until the
orchestrator confirms its files were deployed or retrieved.

State file layout (``<state_root>/orgs/<org_id>/remote_revisions.json``)::

    {
      "version": 1,
      "org_id": "00D...",
      "username": "user@example.com",
      "server_max_revision": 42,
      "members": {
        "ApexClass__Foo": {
          "member_type": "ApexClass",
          "member_name": "Foo",
          "server_revision_counter": 42,
          "last_retrieved_from_server": 40,
          "is_name_obsolete": false,
          "synced": false
        }
      }
    }

Instances are process-wide singletons per org id.  ``get_instance``
collapses concurrent first-use calls into a single construction; it is
not a lock around later calls.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Sequence

from pydantic import ValidationError

from ..core.async_utils import run_sync, run_sync_limited
from .errors import LedgerPersistenceError, MetadataKeyError
from .keys import get_key_from_object, get_metadata_key
from .models import (
    ComponentStatus,
    FileResponse,
    MemberRevision,
    RemoteChangeElement,
    SourceMemberRecord,
)
from .persistence import read_json, remove_tree, write_json_atomic

if TYPE_CHECKING:
    from ..core.client import OrgClient

logger = logging.getLogger(__name__)

STATE_VERSION = 1
STATE_FILENAME = "remote_revisions.json"

_instances: dict[str, RemoteChangeLedger] = {}
_init_locks: dict[str, asyncio.Lock] = {}


def _state_path(state_root: Path, org_id: str) -> Path:
    return state_root / "orgs" / org_id / STATE_FILENAME


def clear_instances() -> None:
    """Forget every registered ledger (does not touch persisted state)."""
    _instances.clear()
    _init_locks.clear()


class RemoteChangeLedger:
    """Track the last known revision of every remote identity for one org.

    Use ``await RemoteChangeLedger.get_instance(...)`` rather than the
    constructor.

    Args:
        username: User the tracking state belongs to.
        org_id: Remote org identity.
        client: Client used to query remote change records.
        state_root: Directory holding the ``orgs/`` state tree.
    """

    def __init__(
        self,
        username: str,
        org_id: str,
        client: OrgClient,
        state_root: Path,
    ) -> None:
        self.username = username
        self.org_id = org_id
        self._client = client
        self.state_path = _state_path(state_root, org_id)
        self._server_max_revision = 0
        self._members: dict[str, MemberRevision] = {}
        self._polled = False

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    @classmethod
    async def get_instance(
        cls,
        username: str,
        org_id: str,
        client: OrgClient,
        state_root: Path,
    ) -> RemoteChangeLedger:
        """Return the ledger for *org_id*, loading it on first use."""
        existing = _instances.get(org_id)
        if existing is not None:
            return existing

        lock = _init_locks.setdefault(org_id, asyncio.Lock())
        async with lock:
            existing = _instances.get(org_id)
            if existing is None:
                existing = cls(username, org_id, client, state_root)
                await existing.load()
                _instances[org_id] = existing
                logger.debug("Created remote ledger for org %s", org_id)
        return existing

    @classmethod
    async def delete(cls, org_id: str, state_root: Path) -> str:
        """Remove the persisted state for *org_id* and its registry entry."""
        _instances.pop(org_id, None)
        _init_locks.pop(org_id, None)
        return await run_sync(
            remove_tree, _state_path(state_root, org_id)
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def members(self) -> dict[str, MemberRevision]:
        return dict(self._members)

    def get_member(self, key: str) -> MemberRevision | None:
        return self._members.get(key)

    def get_server_max_revision(self) -> int:
        return self._server_max_revision

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Load the revision table from disk (empty on first use).

        Raises:
            LedgerPersistenceError: If the state file is unreadable or
                malformed.
        """
        data = await run_sync(read_json, self.state_path, {})
        try:
            members = {
                key: MemberRevision.model_validate(value)
                for key, value in data.get("members", {}).items()
            }
            max_revision = int(data.get("server_max_revision", 0))
        except (ValidationError, TypeError, ValueError) as exc:
            raise LedgerPersistenceError(
                f"Malformed remote tracking state {self.state_path}: {exc}"
            ) from exc
        self._members = members
        self._server_max_revision = max_revision

    async def _persist(
        self, members: dict[str, MemberRevision], max_revision: int
    ) -> None:
        # Swap in-memory state only after the write succeeded
        data = {
            "version": STATE_VERSION,
            "org_id": self.org_id,
            "username": self.username,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "server_max_revision": max_revision,
            "members": {
                key: member.model_dump() for key, member in members.items()
            },
        }
        await run_sync(write_json_atomic, self.state_path, data)
        self._members = members
        self._server_max_revision = max_revision

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def retrieve_updates(
        self, cache: bool = True
    ) -> list[RemoteChangeElement]:
        """Poll the remote and return every change not yet synced.

        Args:
            cache: Reuse this instance's earlier poll when there was one.
                ``False`` always queries the remote.

        Raises:
            RemoteQueryError: If the query fails.  The revision table is
                left untouched.
        """
        if not (cache and self._polled):
            records = await run_sync_limited(
                self._client.query_source_members,
                from_revision=self._server_max_revision,
            )
            logger.debug(
                "Remote query from revision %d returned %d record(s)",
                self._server_max_revision,
                len(records),
            )
            members, max_revision = self._merge(records, mark_synced=False)
            await self._persist(members, max_revision)
            self._polled = True
        return self._outstanding()

    def _merge(
        self, records: Iterable[SourceMemberRecord], mark_synced: bool
    ) -> tuple[dict[str, MemberRevision], int]:
        members = dict(self._members)
        max_revision = self._server_max_revision
        for record in records:
            key = get_metadata_key(record.member_type, record.member_name)
            max_revision = max(max_revision, record.revision_counter)
            current = members.get(key)
            if current is not None:
                if record.revision_counter < current.server_revision_counter:
                    logger.debug(
                        "Ignoring revision regression for %s (%d < %d)",
                        key,
                        record.revision_counter,
                        current.server_revision_counter,
                    )
                    continue
                if (
                    record.revision_counter
                    == current.server_revision_counter
                    and not mark_synced
                ):
                    continue
            members[key] = MemberRevision(
                member_type=record.member_type,
                member_name=record.member_name,
                server_revision_counter=record.revision_counter,
                last_retrieved_from_server=(
                    record.revision_counter
                    if mark_synced
                    else (current.last_retrieved_from_server if current else None)
                ),
                is_name_obsolete=record.is_name_obsolete,
                synced=mark_synced,
            )
        return members, max_revision

    def _outstanding(self) -> list[RemoteChangeElement]:
        return [
            member.to_change_element()
            for _, member in sorted(self._members.items())
            if not member.synced
        ]

    # ------------------------------------------------------------------
    # Sync points
    # ------------------------------------------------------------------

    async def sync_specified_elements(
        self, file_responses: Sequence[FileResponse]
    ) -> None:
        """Mark the identities referenced by *file_responses* as synced.

        Failed responses are ignored.  A response without type and name is
        logged and skipped without failing the batch.
        """
        members = dict(self._members)
        synced = 0
        for response in file_responses:
            if response.state == ComponentStatus.FAILED:
                continue
            try:
                key = get_key_from_object(response)
            except MetadataKeyError as exc:
                logger.warning("Skipping sync for %s: %s", response.filename, exc)
                continue
            member = members.get(key)
            if member is None:
                logger.debug("No remote revision tracked for %s", key)
                continue
            if member.synced:
                continue
            members[key] = member.model_copy(
                update={
                    "synced": True,
                    "last_retrieved_from_server": member.server_revision_counter,
                }
            )
            synced += 1

        if synced:
            await self._persist(members, self._server_max_revision)
        logger.debug("Marked %d remote member(s) as synced", synced)

    async def reset(
        self, server_revision: int | None = None
    ) -> list[MemberRevision]:
        """Declare remote members synced without transferring files.

        Re-queries the remote from the beginning (bounded to revisions
        ``<= server_revision`` when given) and marks every member at or
        below that revision as synced.

        Returns:
            The members that were reset.
        """
        records = await run_sync_limited(
            self._client.query_source_members,
            to_revision=server_revision,
        )
        members, max_revision = self._merge(records, mark_synced=True)

        reset_keys = {
            get_metadata_key(r.member_type, r.member_name)
            for r in records
            if server_revision is None or r.revision_counter <= server_revision
        }
        for key, member in members.items():
            if server_revision is not None and (
                member.server_revision_counter > server_revision
            ):
                continue
            if not member.synced:
                members[key] = member.model_copy(
                    update={
                        "synced": True,
                        "last_retrieved_from_server": member.server_revision_counter,
                    }
                )
            reset_keys.add(key)

        await self._persist(members, max_revision)
        # A bounded reset has not seen revisions above server_revision
        if server_revision is None:
            self._polled = True
        logger.info(
            "Reset %d remote member(s)%s",
            len(reset_keys),
            f" up to revision {server_revision}" if server_revision is not None else "",
        )
        return [members[key] for key in sorted(reset_keys) if key in members]
