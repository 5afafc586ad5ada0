"""Error response builders and shared formatting for MCP tool handlers.

Structured error responses carry a corrective action so AI agents can
recover without human intervention.
"""

from typing import Any

import mcp.types as types

from ...tracking.errors import ConflictError
from ...tracking.models import ChangeResult


def build_error_response(
    error_type: str,
    message: str,
    corrective_action: str,
    structured: dict[str, Any] | None = None,
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (conflict, remote_error, state_error,
            validation_error, server_error, unknown_tool)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error
        structured: Optional machine-readable payload

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("remote_error", "Query failed (401)", "Refresh the access token.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        structuredContent=structured,
        isError=True,
    )


def change_to_json(change: ChangeResult) -> dict[str, Any]:
    """Serialize a ChangeResult for ``structuredContent``."""
    return change.model_dump(mode="json", exclude_none=True)


def format_change(change: ChangeResult) -> str:
    """One-line human-readable form of a ChangeResult."""
    files = ", ".join(change.filenames or [])
    if change.type and change.name:
        label = f"{change.type}:{change.name}"
        return f"{label} ({files})" if files else label
    return files


def build_conflict_response(error: ConflictError) -> types.CallToolResult:
    """Translate a ConflictError into an error response listing conflicts."""
    lines = [f"  - {format_change(c)}" for c in error.conflicts]
    return build_error_response(
        error.name,
        error.message + "\n" + "\n".join(lines),
        "Retrieve the remote changes first, or retry with force_overwrite=true "
        "to overwrite them.",
        structured={
            "name": error.name,
            "conflicts": [change_to_json(c) for c in error.conflicts],
        },
    )
