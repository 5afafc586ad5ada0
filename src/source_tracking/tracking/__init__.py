"""Source tracking for a project bound to a remote org.

Public API for answering "what changed locally", "what changed remotely"
and "what collides" since the last sync point.

Architecture
------------
Two independent ledgers, each compared only against its own baseline:

- the **local ledger** snapshots fingerprints of files under the package
  directories and diffs the working tree against that snapshot;
- the **remote ledger** keeps a per-org revision table fed by polling the
  remote's change records.

The orchestrator combines them, and the identity bridge translates
between file paths and remote ``(type, name)`` identity.  A conflict is a
remote change whose local files also changed or were added locally.

Modules:

- ``orchestrator`` -- ``SourceTracking``: lazy ledger setup, change
  queries, tracking updates and conflict detection.
- ``local_ledger`` -- ``LocalChangeLedger``: working-tree snapshot.
- ``remote_ledger`` -- ``RemoteChangeLedger``: per-org revision table.
- ``identity``  -- ``populate_file_paths`` / ``populate_types_and_names``.
- ``metadata``  -- ``MetadataResolver`` protocol and the rule-driven
  ``PatternMetadataResolver``.
- ``keys``      -- metadata key construction and parsing.
- ``models``    -- ``ChangeResult``, ``MemberRevision``, ``FileResponse``
  and friends.
- ``persistence`` -- atomic JSON state files.
- ``errors``    -- exception hierarchy.

Usage example
-------------
::

    from source_tracking.tracking import SourceTracking

    tracking = SourceTracking(
        org_id="00D000000000001",
        username="dev@example.com",
        project_path=Path("/work/project"),
        package_directories=["force-app"],
        client=org_client,
    )

    await tracking.ensure_no_conflicts()
    # ... deploy ...
    await tracking.update_tracking_from_responses(file_responses)
"""

from .errors import (
    ComponentSetMismatchError,
    ConflictError,
    LedgerPersistenceError,
    MetadataKeyError,
    RemoteQueryError,
    SourceTrackingError,
    UnresolvableComponentError,
)
from .keys import get_key_from_object, get_metadata_key, parse_metadata_key
from .local_ledger import LocalChangeLedger
from .metadata import (
    DEFAULT_METADATA_RULES,
    ComponentIdentity,
    ComponentPaths,
    MetadataResolver,
    MetadataTypeRule,
    PatternMetadataResolver,
)
from .models import (
    ChangeOrigin,
    ChangeResult,
    ChangeState,
    ComponentStatus,
    FileResponse,
    LocalStatus,
    MemberRevision,
    RemoteChangeElement,
    SourceMemberRecord,
)
from .orchestrator import SourceTracking
from .remote_ledger import RemoteChangeLedger

__all__ = [
    "ChangeOrigin",
    "ChangeResult",
    "ChangeState",
    "ComponentIdentity",
    "ComponentPaths",
    "ComponentSetMismatchError",
    "ComponentStatus",
    "ConflictError",
    "DEFAULT_METADATA_RULES",
    "FileResponse",
    "LedgerPersistenceError",
    "LocalChangeLedger",
    "LocalStatus",
    "MemberRevision",
    "MetadataKeyError",
    "MetadataResolver",
    "MetadataTypeRule",
    "PatternMetadataResolver",
    "RemoteChangeElement",
    "RemoteChangeLedger",
    "RemoteQueryError",
    "SourceMemberRecord",
    "SourceTracking",
    "SourceTrackingError",
    "UnresolvableComponentError",
    "get_key_from_object",
    "get_metadata_key",
    "parse_metadata_key",
]
