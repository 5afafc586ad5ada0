"""Core remote access functionality shared between the tracking layer and the MCP server."""

from .async_utils import run_sync
from .client import OrgClient

__all__ = ["OrgClient", "run_sync"]
