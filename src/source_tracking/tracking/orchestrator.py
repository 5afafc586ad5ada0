"""Tracking orchestrator: composes the local and remote ledgers.

``SourceTracking`` lazily initialises both ledgers, converts their output
into ``ChangeResult`` records, bridges path identity and (type, name)
identity, and computes conflicts.  Data flows one way from each ledger
into the orchestrator; the ledgers never call each other and the
orchestrator never writes ledger storage directly.

Conflict detection (``get_conflicts``):

1. Ensure both ledgers (concurrently).
2. Gather local ``changed`` and ``add`` results (concurrently).
3. Gather remote ``changed`` results and resolve their local filenames.
4. Index remote results by filename.
5. Collect a copy of the remote result for every local filename found in
   the index, de-duplicated on structural value.

A remote addition has no local file, so it can never conflict.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from ..core.async_utils import gather_limited, run_sync
from .errors import ConflictError, UnresolvableComponentError
from .identity import populate_file_paths, populate_types_and_names
from .local_ledger import LocalChangeLedger, project_relative
from .metadata import MetadataResolver, PatternMetadataResolver
from .models import (
    ChangeOrigin,
    ChangeResult,
    ChangeState,
    ComponentStatus,
    FileResponse,
    RemoteChangeElement,
    partition_file_responses,
)
from .remote_ledger import RemoteChangeLedger

if TYPE_CHECKING:
    from ..config_schema import UnifiedConfig
    from ..core.client import OrgClient

logger = logging.getLogger(__name__)

_LOCAL_STATES = {
    ChangeState.ADD,
    ChangeState.CHANGED,
    ChangeState.DELETE,
    ChangeState.UNCHANGED,
    ChangeState.MOVED,
}
_REMOTE_STATES = {ChangeState.CHANGED, ChangeState.DELETE}


class SourceTracking:
    """Answer what changed locally, what changed remotely, and what collides.

    Args:
        org_id: Remote org identity.
        username: User the remote tracking state belongs to.
        project_path: Absolute project directory.
        package_directories: Package folders relative to *project_path*.
        client: Client used by the remote ledger.
        resolver: Metadata-schema resolver; defaults to a
            ``PatternMetadataResolver`` over the package directories.
        state_dir: Tracking state folder relative to *project_path*.
        ignore: Glob patterns excluded from local scans.
    """

    def __init__(
        self,
        org_id: str,
        username: str,
        project_path: Path,
        package_directories: Sequence[str],
        client: OrgClient,
        resolver: MetadataResolver | None = None,
        state_dir: str = ".source_tracking",
        ignore: Sequence[str] = (),
    ) -> None:
        self.org_id = org_id
        self.username = username
        self.project_path = project_path
        self.package_directories = list(package_directories)
        self.client = client
        self.resolver = resolver or PatternMetadataResolver(
            project_path, self.package_directories
        )
        self.state_dir = state_dir
        self.ignore = list(ignore)

        # Ledgers stay unset until first use
        self._local: LocalChangeLedger | None = None
        self._remote: RemoteChangeLedger | None = None
        self._local_init_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls, unified: UnifiedConfig, client: OrgClient
    ) -> SourceTracking:
        """Build a tracker from the unified config and a connected client."""
        project_path = Path(unified.project.path).expanduser().resolve()
        return cls(
            org_id=client.config.org_id,
            username=client.config.username,
            project_path=project_path,
            package_directories=unified.project.package_directories,
            client=client,
            resolver=PatternMetadataResolver(
                project_path,
                unified.project.package_directories,
                unified.metadata_types,
            ),
            state_dir=unified.project.state_dir,
            ignore=unified.project.ignore,
        )

    @property
    def state_root(self) -> Path:
        return self.project_path / self.state_dir

    # ------------------------------------------------------------------
    # Change queries
    # ------------------------------------------------------------------

    async def get_changes(
        self, origin: ChangeOrigin | str, state: ChangeState | str
    ) -> list[ChangeResult]:
        """Get local or remote changes in one state.

        Local supports ``add``, ``changed``, ``delete``, ``unchanged`` and
        ``moved`` (one result per ``(old, new)`` pair).  Remote supports
        ``changed`` and ``delete``.

        Raises:
            ValueError: For unsupported origin/state combinations.
        """
        origin = ChangeOrigin(origin)
        state = ChangeState(state)

        if origin == ChangeOrigin.LOCAL and state in _LOCAL_STATES:
            await self.ensure_local_tracking()
            assert self._local is not None
            if state == ChangeState.MOVED:
                return [
                    ChangeResult(origin=origin, filenames=[old, new])
                    for old, new in await self._local.get_moved_filenames()
                ]
            filenames = await {
                ChangeState.ADD: self._local.get_add_filenames,
                ChangeState.CHANGED: self._local.get_modify_filenames,
                ChangeState.DELETE: self._local.get_delete_filenames,
                ChangeState.UNCHANGED: self._local.get_unchanged_filenames,
            }[state]()
            return [
                ChangeResult(
                    origin=origin,
                    filenames=[filename],
                    deleted=True if state == ChangeState.DELETE else None,
                )
                for filename in filenames
            ]

        if origin == ChangeOrigin.REMOTE and state in _REMOTE_STATES:
            remote_changes = await self.get_remote_changes()
            logger.debug("remoteChanges: %s", remote_changes)
            want_deleted = state == ChangeState.DELETE
            return [
                change.to_change_result()
                for change in remote_changes
                if change.deleted == want_deleted
            ]

        raise ValueError(
            f"Unsupported change query: origin={origin.value}, state={state.value}"
        )

    async def get_remote_changes(self) -> list[RemoteChangeElement]:
        await self.ensure_remote_tracking()
        assert self._remote is not None
        return await self._remote.retrieve_updates()

    async def get_conflicts(self) -> list[ChangeResult]:
        """Return remote changes that collide with local changes or adds."""
        await gather_limited(
            [self.ensure_remote_tracking(), self.ensure_local_tracking()]
        )

        changed, added = await gather_limited(
            [
                self.get_changes(ChangeOrigin.LOCAL, ChangeState.CHANGED),
                self.get_changes(ChangeOrigin.LOCAL, ChangeState.ADD),
            ]
        )
        local_changes = [*changed, *added]

        # Remote adds have no local filename and drop out here
        remote_changes = await run_sync(
            self.populate_file_paths,
            await self.get_changes(ChangeOrigin.REMOTE, ChangeState.CHANGED),
        )

        filename_index: dict[str, ChangeResult] = {}
        for change in remote_changes:
            for filename in change.filenames or []:
                filename_index[filename] = change

        conflicts: dict[tuple, ChangeResult] = {}
        for change in local_changes:
            for filename in change.filenames or []:
                match = filename_index.get(filename)
                if match is not None:
                    copy = match.model_copy()
                    conflicts.setdefault(copy.structural_key(), copy)

        if conflicts:
            logger.info("Found %d conflict(s)", len(conflicts))
        return list(conflicts.values())

    async def ensure_no_conflicts(self, force_overwrite: bool = False) -> None:
        """Guard a destructive sync: raise if any conflicts exist.

        Raises:
            ConflictError: When conflicts exist and *force_overwrite* is
                not set.
        """
        if force_overwrite:
            logger.info("Skipping conflict check (force_overwrite)")
            return
        conflicts = await self.get_conflicts()
        if conflicts:
            raise ConflictError(conflicts)

    # ------------------------------------------------------------------
    # Tracking updates
    # ------------------------------------------------------------------

    async def update_local_tracking(
        self,
        files: Sequence[str] | None = None,
        deleted_files: Sequence[str] | None = None,
    ) -> None:
        """Commit deployed/retrieved *files* and *deleted_files* locally."""
        await self.ensure_local_tracking()
        assert self._local is not None
        await self._local.commit_changes(
            deployed_files=[self._ensure_relative(f) for f in files or []],
            deleted_files=[
                self._ensure_relative(f) for f in deleted_files or []
            ],
        )

    async def update_remote_tracking(
        self, file_responses: Sequence[FileResponse]
    ) -> None:
        """Mark the remote identities in *file_responses* as synced.

        Polls without the cache first so revisions created by the deploy
        itself are known before they are marked synced.  Responses that
        carry only a filename get their type and name from the resolver.
        """
        await self.ensure_remote_tracking()
        assert self._remote is not None
        await self._remote.retrieve_updates(cache=False)
        await self._remote.sync_specified_elements(
            self._with_identities(file_responses)
        )

    async def update_tracking_from_responses(
        self, file_responses: Sequence[FileResponse]
    ) -> None:
        """Record a completed deploy/retrieve on both ledgers."""
        files, deleted_files = partition_file_responses(file_responses)
        await self.update_local_tracking(files, deleted_files)
        await self.update_remote_tracking(file_responses)

    # ------------------------------------------------------------------
    # Lazy initialisation
    # ------------------------------------------------------------------

    async def ensure_local_tracking(self) -> None:
        """Create the local ledger once and cache its first status.

        Useful before parallel operations.
        """
        if self._local is not None:
            return
        async with self._local_init_lock:
            if self._local is not None:
                return
            local = await LocalChangeLedger.create(
                org_id=self.org_id,
                project_path=self.project_path,
                package_directories=self.package_directories,
                state_dir=self.state_dir,
                ignore=self.ignore,
            )
            await local.get_status()
            self._local = local

    async def ensure_remote_tracking(
        self, initialize_with_query: bool = False
    ) -> None:
        """Obtain the org's remote ledger, optionally polling it once."""
        if self._remote is not None:
            logger.debug("ensure_remote_tracking: remote tracking already exists")
            return
        logger.debug(
            "ensure_remote_tracking: remote tracking does not exist yet; getting instance"
        )
        remote = await RemoteChangeLedger.get_instance(
            username=self.username,
            org_id=self.org_id,
            client=self.client,
            state_root=self.state_root,
        )
        self._remote = remote
        if initialize_with_query:
            await remote.retrieve_updates()

    # ------------------------------------------------------------------
    # Clear / reset
    # ------------------------------------------------------------------

    async def clear_local_tracking(self) -> str:
        """Delete the local snapshot; returns what was removed."""
        await self.ensure_local_tracking()
        assert self._local is not None
        return await self._local.delete()

    async def reset_local_tracking(self) -> list[str]:
        """Commit every local change so the status is clean.

        Returns:
            The deleted and non-deleted paths that were committed.
        """
        await self.ensure_local_tracking()
        assert self._local is not None
        deletes, non_deletes = await gather_limited(
            [
                self._local.get_delete_filenames(),
                self._local.get_non_delete_filenames(),
            ]
        )
        await self._local.commit_changes(
            deployed_files=non_deletes,
            deleted_files=deletes,
            message="via resetLocalTracking",
        )
        return [*deletes, *non_deletes]

    async def clear_remote_tracking(self) -> str:
        """Delete the org's remote tracking state."""
        self._remote = None
        return await RemoteChangeLedger.delete(self.org_id, self.state_root)

    async def reset_remote_tracking(
        self, server_revision: int | None = None
    ) -> int:
        """Mark remote members synced; returns how many were reset."""
        await self.ensure_remote_tracking()
        assert self._remote is not None
        reset_members = await self._remote.reset(server_revision)
        return len(reset_members)

    # ------------------------------------------------------------------
    # Identity bridge
    # ------------------------------------------------------------------

    def populate_file_paths(
        self, elements: Sequence[ChangeResult]
    ) -> list[ChangeResult]:
        """Translate remote (type, name) results into local file paths."""
        return populate_file_paths(elements, self.resolver)

    def populate_types_and_names(
        self,
        elements: Sequence[ChangeResult],
        exclude_unresolvable: bool = False,
    ) -> list[ChangeResult]:
        """Translate local filename results into (type, name) results."""
        return populate_types_and_names(
            elements,
            self.resolver,
            exclude_unresolvable=exclude_unresolvable,
            relativize=self._ensure_relative,
        )

    def _ensure_relative(self, file_path: str) -> str:
        rel = project_relative(self.project_path, file_path)
        if rel is not None:
            return rel
        # Outside the project: keep a relative form the resolver rejects
        path = Path(file_path)
        if not path.is_absolute():
            return path.as_posix()
        return Path(os.path.relpath(path, self.project_path)).as_posix()

    def _with_identities(
        self, file_responses: Sequence[FileResponse]
    ) -> list[FileResponse]:
        completed = []
        for response in file_responses:
            if (response.type and response.name) or (
                response.state == ComponentStatus.FAILED
            ):
                completed.append(response)
                continue
            try:
                identity = self.resolver.resolve_identity_for_path(
                    self._ensure_relative(response.filename)
                )
            except UnresolvableComponentError as exc:
                logger.warning("unable to resolve %s: %s", response.filename, exc)
                identity = None
            if identity is not None:
                response = response.model_copy(
                    update={"type": identity.type, "name": identity.name}
                )
            completed.append(response)
        return completed
