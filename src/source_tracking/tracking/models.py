"""Pydantic models for the tracking layer.

Defines the data contracts shared by the ledgers, the identity bridge and
the orchestrator:

- ``ChangeOrigin`` / ``ChangeState`` / ``ComponentStatus``: enums.
- ``ChangeResult``: the uniform change record for both sides.
- ``RemoteChangeElement``: one outstanding remote change.
- ``MemberRevision``: persisted revision entry for one remote identity.
- ``SourceMemberRecord``: one row of the remote change query.
- ``FileResponse``: per-file outcome reported by the deploy/retrieve transport.
- ``LocalStatus``: result of a working-tree scan.

All models are frozen (immutable); updated copies are made with
``model_copy(update=...)``.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field


class ChangeOrigin(str, Enum):
    """Which side a change was observed on."""

    LOCAL = "local"
    REMOTE = "remote"


class ChangeState(str, Enum):
    """Kinds of change that can be queried."""

    ADD = "add"
    CHANGED = "changed"
    DELETE = "delete"
    UNCHANGED = "unchanged"
    MOVED = "moved"


class ComponentStatus(str, Enum):
    """Per-file outcome of a deploy or retrieve."""

    CREATED = "created"
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    FAILED = "failed"


class ChangeResult(BaseModel):
    """Summary record supporting both local and remote changes.

    Local results start with ``filenames`` only; remote results start with
    ``type``/``name`` only.  The identity bridge fills in the other half.

    Attributes:
        origin: Side the change was observed on.
        type: Metadata type, when resolved.
        name: Component name, when resolved.
        filenames: Project-relative paths, descriptor first when known.
        deleted: True for deletions.
        modified: True once a remote change is matched to local files.
    """

    origin: ChangeOrigin
    type: str | None = None
    name: str | None = None
    filenames: list[str] | None = None
    deleted: bool | None = None
    modified: bool | None = None

    model_config = {"frozen": True}

    @property
    def has_identity(self) -> bool:
        return bool(self.type and self.name)

    def structural_key(self) -> tuple:
        """Hashable value covering every field, for keyed de-duplication."""
        return (
            self.origin.value,
            self.type,
            self.name,
            tuple(self.filenames) if self.filenames is not None else None,
            self.deleted,
            self.modified,
        )


class RemoteChangeElement(BaseModel):
    """A remote identity with changes not yet synced."""

    type: str
    name: str
    deleted: bool = False
    modified: bool = True

    model_config = {"frozen": True}

    def to_change_result(self) -> ChangeResult:
        return ChangeResult(
            origin=ChangeOrigin.REMOTE,
            type=self.type,
            name=self.name,
            deleted=self.deleted,
            modified=self.modified,
        )


class MemberRevision(BaseModel):
    """Revision bookkeeping for one remote identity.

    Attributes:
        member_type: Metadata type.
        member_name: Component name.
        server_revision_counter: Highest revision seen from the remote.
            Never decreases.
        last_retrieved_from_server: Revision at the last sync point.
        is_name_obsolete: True when the remote reports a deletion.
        synced: True once the change up to ``server_revision_counter``
            has been incorporated locally.
    """

    member_type: str
    member_name: str
    server_revision_counter: int = 0
    last_retrieved_from_server: int | None = None
    is_name_obsolete: bool = False
    synced: bool = False

    model_config = {"frozen": True}

    def to_change_element(self) -> RemoteChangeElement:
        return RemoteChangeElement(
            type=self.member_type,
            name=self.member_name,
            deleted=self.is_name_obsolete,
        )


class SourceMemberRecord(BaseModel):
    """One row returned by the remote change query."""

    member_type: str = Field(alias="MemberType")
    member_name: str = Field(alias="MemberName")
    revision_counter: int = Field(alias="RevisionCounter")
    is_name_obsolete: bool = Field(default=False, alias="IsNameObsolete")

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class FileResponse(BaseModel):
    """Outcome of deploying or retrieving one local file.

    Attributes:
        filename: Path of the file (absolute or project-relative).
        state: What happened to the file.
        type: Metadata type of the owning component, when known.
        name: Name of the owning component, when known.
        error: Failure description for ``state == failed``.
    """

    filename: str
    state: ComponentStatus
    type: str | None = None
    name: str | None = None
    error: str | None = None

    model_config = {"frozen": True}


class LocalStatus(BaseModel):
    """Drift between the working tree and the committed snapshot.

    Attributes:
        added: Paths in the working tree but not the snapshot.
        modified: Paths in both whose fingerprint differs.
        deleted: Paths in the snapshot but not the working tree.
        unchanged: Paths in both with matching fingerprints.
        moved: ``(old, new)`` pairs where a deleted and an added path
            share a fingerprint.  Both paths also appear in
            ``deleted``/``added``.
        errors: Unreadable paths mapped to the failure message.
        scanned_at: ISO 8601 timestamp of the scan.
    """

    added: list[str] = []
    modified: list[str] = []
    deleted: list[str] = []
    unchanged: list[str] = []
    moved: list[tuple[str, str]] = []
    errors: dict[str, str] = {}
    scanned_at: str | None = None

    model_config = {"frozen": True}

    @property
    def is_clean(self) -> bool:
        return not (self.added or self.modified or self.deleted)


def partition_file_responses(
    responses: Iterable[FileResponse],
) -> tuple[list[str], list[str]]:
    """Split transport outcomes into ``(deployed, deleted)`` filenames.

    Failed files are dropped: they did not reach a sync point.
    """
    deployed: list[str] = []
    deleted: list[str] = []
    for response in responses:
        if response.state == ComponentStatus.FAILED:
            continue
        if response.state == ComponentStatus.DELETED:
            deleted.append(response.filename)
        else:
            deployed.append(response.filename)
    return deployed, deleted
