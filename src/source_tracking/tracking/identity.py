"""Identity bridge between path identity and (type, name) identity.

Two pure functions over a ``MetadataResolver``:

- ``populate_file_paths`` -- remote results carry ``type``/``name``; attach
  the local files of each matching component.
- ``populate_types_and_names`` -- local results carry ``filenames``; attach
  the owning component's ``type``/``name`` and merge results that belong
  to the same component.

Both de-duplicate through explicit keyed mappings, never object identity.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from .errors import ComponentSetMismatchError, UnresolvableComponentError
from .keys import get_key_from_object, get_metadata_key
from .metadata import MetadataResolver
from .models import ChangeResult

logger = logging.getLogger(__name__)


def populate_file_paths(
    elements: Sequence[ChangeResult],
    resolver: MetadataResolver,
) -> list[ChangeResult]:
    """Translate remote (type, name) results into local file paths.

    Components found locally come back with ``modified=True`` and
    ``filenames`` set (descriptor first).  Components with no local files
    are returned unchanged.

    Raises:
        MetadataKeyError: If an element lacks a type or name.
        ComponentSetMismatchError: If fewer distinct identities than
            elements were requested (duplicate or malformed identities).
    """
    if not elements:
        return []

    logger.debug("populate_file_paths for %d change elements", len(elements))

    element_map: dict[str, ChangeResult] = {}
    for element in elements:
        element_map.setdefault(get_key_from_object(element), element)

    logger.debug(" the requested component set has %d items", len(element_map))
    if len(element_map) < len(elements):
        raise ComponentSetMismatchError(
            "unable to generate complete component set for "
            + ",".join(f"{e.name}({e.type})" for e in elements)
        )

    matched = 0
    for key, element in element_map.items():
        paths = resolver.resolve_paths_for_identity(
            element.type or "", element.name or ""
        )
        if paths.is_empty:
            continue
        filenames = paths.all_paths()
        logger.debug(
            "%s|%s matches %s", element.name, element.type, filenames
        )
        element_map[key] = element.model_copy(
            update={"modified": True, "filenames": filenames}
        )
        matched += 1

    logger.debug(
        " local source-backed component set has %d items from remote",
        matched,
    )
    return list(element_map.values())


def populate_types_and_names(
    elements: Sequence[ChangeResult],
    resolver: MetadataResolver,
    exclude_unresolvable: bool = False,
    relativize: Callable[[str], str] | None = None,
) -> list[ChangeResult]:
    """Translate local filename-only results into (type, name) results.

    All results whose files belong to one component merge into a single
    result carrying the union of their filenames.  Paths that do not
    resolve are logged and skipped.

    Args:
        elements: Change results carrying ``filenames``.
        resolver: Metadata-schema resolver.
        exclude_unresolvable: Drop results that end up without a type and
            name (probably not source components).
        relativize: Converts a filename to project-relative form before
            resolving; identity when omitted.

    Returns:
        Resolved results (in first-seen order), followed by unresolved ones
        unless *exclude_unresolvable* is set.
    """
    if not elements:
        return []

    logger.debug("populate_types_and_names for %d change elements", len(elements))
    to_relative = relativize or (lambda filename: filename)

    resolved: dict[str, ChangeResult] = {}
    unresolved: dict[tuple, ChangeResult] = {}

    for element in elements:
        filenames = [to_relative(f) for f in element.filenames or []]
        identity = None
        for filename in filenames:
            try:
                identity = resolver.resolve_identity_for_path(filename)
            except UnresolvableComponentError as exc:
                logger.warning("unable to resolve %s: %s", filename, exc)
                continue
            if identity is not None:
                break
            logger.warning("unable to resolve %s", filename)

        if identity is None:
            candidate = element.model_copy(update={"filenames": filenames})
            unresolved.setdefault(candidate.structural_key(), candidate)
            continue

        key = get_metadata_key(identity.type, identity.name)
        existing = resolved.get(key)
        if existing is None:
            resolved[key] = element.model_copy(
                update={
                    "type": identity.type,
                    "name": identity.name,
                    "filenames": list(dict.fromkeys(filenames)),
                }
            )
        else:
            resolved[key] = _merge(existing, filenames, element)

    logger.debug(
        " matching components have %d items from local", len(resolved)
    )
    results = list(resolved.values())
    if not exclude_unresolvable:
        results.extend(unresolved.values())
    return results


def _merge(
    existing: ChangeResult, filenames: list[str], other: ChangeResult
) -> ChangeResult:
    merged = list(dict.fromkeys([*(existing.filenames or []), *filenames]))
    return existing.model_copy(
        update={
            "filenames": merged,
            "deleted": _both(existing.deleted, other.deleted),
            "modified": _either(existing.modified, other.modified),
        }
    )


def _either(a: bool | None, b: bool | None) -> bool | None:
    if a is None and b is None:
        return None
    return bool(a) or bool(b)


def _both(a: bool | None, b: bool | None) -> bool | None:
    if a is None and b is None:
        return None
    return bool(a) and bool(b)