"""MCP tool handlers for source tracking.

Defines five tools:

- ``source_status`` -- local and remote changes since the last sync.
- ``source_conflicts`` -- remote changes colliding with local edits.
- ``source_tracking_update`` -- record a completed deploy or retrieve.
- ``source_tracking_reset`` -- declare one or both sides in sync.
- ``source_tracking_clear`` -- delete tracking state.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import mcp.types as types
from pydantic import ValidationError

from ...core.async_utils import gather_limited
from ...tracking.errors import ConflictError
from ...tracking.models import (
    ChangeOrigin,
    ChangeState,
    ComponentStatus,
    FileResponse,
)
from .errors import change_to_json, format_change
from .registry import ADMIN_PERMISSION, VIEW_PERMISSION, ToolSpec

if TYPE_CHECKING:
    from ...tracking.orchestrator import SourceTracking

logger = logging.getLogger(__name__)

_SIDES = ("local", "remote", "both")

_SIDE_SCHEMA = {
    "type": "string",
    "enum": list(_SIDES),
    "default": "both",
    "description": "Which ledger to act on",
}


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


TRACKING_TOOLS: list[types.Tool] = [
    types.Tool(
        name="source_status",
        description=(
            "Show local and remote changes since the last sync point. "
            "Local changes are grouped as add/changed/delete/moved; remote "
            "changes as changed/delete."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "include_remote": {
                    "type": "boolean",
                    "default": True,
                    "description": "Also poll the org for remote changes",
                },
                "resolve_types": {
                    "type": "boolean",
                    "default": False,
                    "description": (
                        "Group local files into metadata components (type/name)"
                    ),
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="source_conflicts",
        description=(
            "List components changed both locally and remotely since the "
            "last sync. Use before deploying to avoid overwriting remote work."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "fail_on_conflict": {
                    "type": "boolean",
                    "default": False,
                    "description": (
                        "Return an error response named 'conflict' when any exist"
                    ),
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="source_tracking_update",
        description=(
            "Record the per-file outcome of a completed deploy or retrieve "
            "so both ledgers treat those files as synced."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "file_responses": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "filename": {"type": "string"},
                            "state": {
                                "type": "string",
                                "enum": [
                                    "created",
                                    "changed",
                                    "unchanged",
                                    "deleted",
                                    "failed",
                                ],
                            },
                            "type": {"type": "string"},
                            "name": {"type": "string"},
                            "error": {"type": "string"},
                        },
                        "required": ["filename", "state"],
                    },
                    "description": "One entry per transferred file",
                },
            },
            "required": ["file_responses"],
        },
    ),
    types.Tool(
        name="source_tracking_reset",
        description=(
            "Declare tracking in sync without transferring files. Local "
            "reset commits every local change; remote reset marks remote "
            "changes (optionally up to a revision) as synced."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "side": _SIDE_SCHEMA,
                "revision": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "Only reset remote members at or below this revision",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="source_tracking_clear",
        description="Delete tracking state so it is rebuilt from scratch.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"side": _SIDE_SCHEMA},
            "required": [],
        },
    ),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_side(args: dict[str, Any]) -> str:
    side = args.get("side", "both")
    if side not in _SIDES:
        raise ValueError(
            f"Invalid side '{side}': expected one of {', '.join(_SIDES)}"
        )
    return side


def _section(title: str, changes: list) -> list[str]:
    if not changes:
        return []
    return [f"{title} ({len(changes)}):"] + [
        f"  - {format_change(c)}" for c in changes
    ]


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


async def _handle_status(
    tracker: SourceTracking, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``source_status`` tool."""
    include_remote = args.get("include_remote", True)
    resolve_types = args.get("resolve_types", False)

    local_states = [
        ChangeState.ADD,
        ChangeState.CHANGED,
        ChangeState.DELETE,
        ChangeState.MOVED,
    ]
    local_results = await gather_limited(
        [tracker.get_changes(ChangeOrigin.LOCAL, s) for s in local_states]
    )
    local = dict(zip((s.value for s in local_states), local_results))
    if resolve_types:
        for state in ("add", "changed", "delete"):
            local[state] = tracker.populate_types_and_names(local[state])

    remote: dict[str, list] = {}
    if include_remote:
        # One poll covers both remote buckets
        remote = {"changed": [], "delete": []}
        for change in await tracker.get_remote_changes():
            bucket = "delete" if change.deleted else "changed"
            remote[bucket].append(change.to_change_result())

    lines: list[str] = []
    for state, changes in local.items():
        lines.extend(_section(f"Local {state}", changes))
    for state, changes in remote.items():
        lines.extend(_section(f"Remote {state}", changes))
    text = "\n".join(lines) if lines else "No changes since the last sync."

    structured = {
        "local": {
            state: [change_to_json(c) for c in changes]
            for state, changes in local.items()
        },
        "remote": {
            state: [change_to_json(c) for c in changes]
            for state, changes in remote.items()
        },
    }
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


async def _handle_conflicts(
    tracker: SourceTracking, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``source_conflicts`` tool."""
    conflicts = await tracker.get_conflicts()
    if conflicts and args.get("fail_on_conflict", False):
        raise ConflictError(conflicts)

    if conflicts:
        text = "\n".join(_section("Conflicts", conflicts))
    else:
        text = "No conflicts."
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={
            "conflicts": [change_to_json(c) for c in conflicts]
        },
    )


async def _handle_update(
    tracker: SourceTracking, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``source_tracking_update`` tool."""
    raw = args.get("file_responses")
    if not isinstance(raw, list):
        raise ValueError("file_responses must be a list of objects")
    try:
        responses = [FileResponse.model_validate(item) for item in raw]
    except ValidationError as e:
        raise ValueError(f"Invalid file response: {e}") from e

    await tracker.update_tracking_from_responses(responses)

    failed = [r.filename for r in responses if r.state == ComponentStatus.FAILED]
    recorded = len(responses) - len(failed)
    text = f"Recorded {recorded} file(s) as synced."
    if failed:
        text += f" Skipped {len(failed)} failed file(s)."
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={"recorded": recorded, "failed": failed},
    )


async def _handle_reset(
    tracker: SourceTracking, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``source_tracking_reset`` tool."""
    side = _get_side(args)
    revision = args.get("revision")
    if revision is not None and (
        not isinstance(revision, int) or revision < 0
    ):
        raise ValueError("revision must be a non-negative integer")

    structured: dict[str, Any] = {}
    lines = []
    if side in ("local", "both"):
        files = await tracker.reset_local_tracking()
        structured["local_files"] = len(files)
        lines.append(f"Reset local tracking ({len(files)} file(s) committed).")
    if side in ("remote", "both"):
        count = await tracker.reset_remote_tracking(revision)
        structured["remote_members"] = count
        suffix = f" up to revision {revision}" if revision is not None else ""
        lines.append(f"Reset remote tracking ({count} member(s){suffix}).")

    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent=structured,
    )


async def _handle_clear(
    tracker: SourceTracking, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``source_tracking_clear`` tool."""
    side = _get_side(args)
    cleared = []
    if side in ("local", "both"):
        cleared.append(await tracker.clear_local_tracking())
    if side in ("remote", "both"):
        cleared.append(await tracker.clear_remote_tracking())
    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(cleared))],
        structuredContent={"cleared": cleared},
    )


# ToolSpec list for registry-based dispatch
TRACKING_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=TRACKING_TOOLS[0],
        permissions=frozenset({VIEW_PERMISSION}),
        handler=_handle_status,
    ),
    ToolSpec(
        tool=TRACKING_TOOLS[1],
        permissions=frozenset({VIEW_PERMISSION}),
        handler=_handle_conflicts,
    ),
    ToolSpec(
        tool=TRACKING_TOOLS[2],
        permissions=frozenset({ADMIN_PERMISSION}),
        handler=_handle_update,
    ),
    ToolSpec(
        tool=TRACKING_TOOLS[3],
        permissions=frozenset({ADMIN_PERMISSION}),
        handler=_handle_reset,
    ),
    ToolSpec(
        tool=TRACKING_TOOLS[4],
        permissions=frozenset({ADMIN_PERMISSION}),
        handler=_handle_clear,
    ),
]
