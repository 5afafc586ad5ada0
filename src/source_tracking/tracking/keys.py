"""Metadata keys: the string identity of a remote (type, name) pair.

Keys look like ``ApexClass__Foo``.  Underscores and percent signs in the
type are percent-escaped, so the first ``__`` in a key is always the
separator and ``parse_metadata_key`` is an exact inverse.
"""

from __future__ import annotations

from typing import Protocol

from .errors import MetadataKeyError

SEPARATOR = "__"


class _HasIdentity(Protocol):
    type: str | None
    name: str | None


def _escape_type(metadata_type: str) -> str:
    return metadata_type.replace("%", "%25").replace("_", "%5F")


def _unescape_type(escaped: str) -> str:
    return escaped.replace("%5F", "_").replace("%25", "%")


def get_metadata_key(metadata_type: str, name: str) -> str:
    """Build the metadata key for *metadata_type* and *name*.

    Raises:
        MetadataKeyError: If either part is empty.
    """
    if not metadata_type or not name:
        raise MetadataKeyError(
            f"Cannot build metadata key from type={metadata_type!r}, name={name!r}"
        )
    return f"{_escape_type(metadata_type)}{SEPARATOR}{name}"


def parse_metadata_key(key: str) -> tuple[str, str]:
    """Split a key built by ``get_metadata_key`` into ``(type, name)``."""
    escaped, sep, name = key.partition(SEPARATOR)
    if not sep or not escaped or not name:
        raise MetadataKeyError(f"Malformed metadata key: {key!r}")
    return _unescape_type(escaped), name


def get_key_from_object(element: _HasIdentity) -> str:
    """Return the metadata key for any object with ``type`` and ``name``.

    Raises:
        MetadataKeyError: If the element lacks a type or a name.
    """
    if element.type and element.name:
        return get_metadata_key(element.type, element.name)
    raise MetadataKeyError(f"unable to complete key from {element!r}")
