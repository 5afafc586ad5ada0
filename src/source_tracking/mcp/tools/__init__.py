"""MCP tool handlers for source tracking.

This package contains MCP tool implementations that wrap the tracking
orchestrator with async handlers and structured error responses.
"""

from .errors import build_conflict_response, build_error_response
from .registry import ToolRegistry, ToolSpec, load_permissions_file
from .tracking import TRACKING_SPECS, TRACKING_TOOLS

ALL_SPECS: list[ToolSpec] = list(TRACKING_SPECS)

__all__ = [
    "build_error_response",
    "build_conflict_response",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    "load_permissions_file",
    # Spec lists
    "ALL_SPECS",
    "TRACKING_SPECS",
    "TRACKING_TOOLS",
]
