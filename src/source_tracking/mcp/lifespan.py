"""Lifespan management for MCP server startup and shutdown."""

import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from ..config import load_config
from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import UnifiedConfig, build_config
from ..core.async_utils import init_semaphore, run_sync
from ..core.client import OrgClient
from ..tracking.orchestrator import SourceTracking

logger = logging.getLogger(__name__)

_CREDENTIAL_HINT = (
    "Ensure ORG_INSTANCE_URL, ORG_USERNAME, ORG_ACCESS_TOKEN, ORG_ID are set."
)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config files if present, looking in the --project directory
      before the working directory (org section as fallback values)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Create OrgClient and validate connection
    - Build the SourceTracking orchestrator for the configured project
    - Fail fast if the org is unreachable

    Args:
        config_overrides: Optional dict with config values from CLI
            (instance_url, username, access_token, org_id, insecure, project_path)

    Yields:
        Dict with 'client' and 'tracker' keys

    Raises:
        RuntimeError: If configuration is invalid or the org connection fails.
    """
    logger.info("MCP server starting...")
    _stderr_print("Source Tracking MCP Server starting...")

    overrides = config_overrides or {}
    try:
        # .env first so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        unified = UnifiedConfig()
        yaml_fallbacks: dict[str, Any] | None = None
        sources = []

        # --project also selects which project config file applies
        project_dir = overrides.get("project_path")
        config_files = discover_config_files(project_dir)
        if config_files:
            unified = build_config(load_hierarchical_config(project_dir))
            yaml_fallbacks = {
                k: v
                for k, v in unified.org.model_dump().items()
                if v is not None
            }
            sources.append(f"config file: {config_files[0]}")

        if (
            unified.logging.level
            and not os.getenv("LOG_LEVEL")
            and not overrides.get("debug")
        ):
            logging.getLogger().setLevel(unified.logging.level.upper())

        if project_dir:
            unified = unified.model_copy(
                update={
                    "project": unified.project.model_copy(
                        update={"path": project_dir}
                    )
                }
            )

        config = load_config(
            instance_url=overrides.get("instance_url"),
            username=overrides.get("username"),
            access_token=overrides.get("access_token"),
            org_id=overrides.get("org_id"),
            insecure=overrides.get("insecure", False),
            debug=overrides.get("debug", False),
            yaml_fallbacks=yaml_fallbacks,
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        logger.info("Instance URL: %s", config.instance_url)
        _stderr_print(f"  Instance URL: {config.instance_url}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print(f"  {_CREDENTIAL_HINT}")
        raise RuntimeError(
            f"Configuration error: {e}. {_CREDENTIAL_HINT}"
        ) from e

    logger.info("Validating org connection...")
    _stderr_print("  Validating org connection...")
    try:
        client = OrgClient(config)
        version = await run_sync(client.validate_connection)
        logger.info("Successfully connected to org API version %s", version)
        _stderr_print(f"  Connected to org API version {version}")
        init_semaphore(config.max_parallel_requests)
        _stderr_print(f"  Parallel requests: {config.max_parallel_requests}")
    except Exception as e:
        logger.error("Failed to connect to org: %s", e)
        _stderr_print("ERROR: Org connection failed.")
        _stderr_print(f"  {e}")
        raise RuntimeError(
            f"Org connection failed: {e}. Check ORG_INSTANCE_URL and ORG_ACCESS_TOKEN."
        ) from e

    tracker = SourceTracking.from_config(unified, client)
    logger.info(
        "Tracking project %s (packages: %s)",
        tracker.project_path,
        ", ".join(tracker.package_directories),
    )
    _stderr_print(f"  Project: {tracker.project_path}")
    _stderr_print("Server ready. Waiting for MCP client connection...")

    yield {"client": client, "tracker": tracker}

    logger.info("MCP server shutting down")
    _stderr_print("Source Tracking MCP Server shutting down.")
