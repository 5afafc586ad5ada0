"""Exception types raised by the tracking layer.

Per-item resolution gaps (``UnresolvableComponentError``) are logged and
skipped by the identity bridge.  Everything that threatens the integrity
of a persisted ledger, or a stated invariant, is raised to the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ChangeResult


class SourceTrackingError(Exception):
    """Base class for all tracking errors."""


class MetadataKeyError(SourceTrackingError, ValueError):
    """An element lacks the type or name needed to build a metadata key."""


class ComponentSetMismatchError(SourceTrackingError):
    """The resolver accounted for fewer identities than were requested."""


class UnresolvableComponentError(SourceTrackingError):
    """A path could not be classified as a metadata component."""


class LedgerPersistenceError(SourceTrackingError):
    """A ledger state file could not be read or written."""


class RemoteQueryError(SourceTrackingError):
    """A remote change query failed.

    Attributes:
        status_code: HTTP status of the failed response, when known.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConflictError(SourceTrackingError):
    """Components changed both locally and remotely since the last sync.

    Raised before a destructive operation (e.g. a deploy without
    ``force_overwrite``).  ``name`` is always ``"conflict"``.
    """

    name = "conflict"

    def __init__(self, conflicts: list[ChangeResult]):
        self.conflicts = conflicts
        labels = ", ".join(
            f"{c.name}({c.type})" if c.name else ",".join(c.filenames or [])
            for c in conflicts
        )
        super().__init__(
            f"{len(conflicts)} conflict(s) detected: {labels}"
        )

    @property
    def message(self) -> str:
        return str(self)
