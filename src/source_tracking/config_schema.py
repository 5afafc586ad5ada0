"""Unified configuration schema for source_tracking.

Defines Pydantic models for the unified config structure with dedicated
sections for the org connection, the project layout, metadata type rules
and logging. The org section only supplies fallbacks: ``config.load_config``
layers CLI arguments and environment variables over it.

Usage:
    from source_tracking.config_schema import build_config

    unified = build_config(load_hierarchical_config(project_dir))
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator

from .tracking.metadata import DEFAULT_METADATA_RULES, MetadataTypeRule

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class OrgConfig(BaseModel):
    """Remote org connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    instance_url: str | None = Field(
        default=None, description="Org instance URL"
    )
    username: str | None = Field(
        default=None, description="User the tracking state belongs to"
    )
    access_token: str | None = Field(
        default=None, description="OAuth access token"
    )
    org_id: str | None = Field(default=None, description="Org identity")
    api_version: str = Field(default="60.0", description="API version")
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum concurrent requests to the org (1-100)",
    )

    model_config = {"frozen": True}


class ProjectConfig(BaseModel):
    """Local project layout.

    Attributes:
        path: Project directory (``~`` is expanded).
        package_directories: Package folders relative to ``path``.
        state_dir: Folder holding tracking state, relative to ``path``.
        ignore: Glob patterns excluded from local scans.
    """

    path: str = Field(default=".", description="Project directory")
    package_directories: list[str] = Field(
        default_factory=lambda: ["force-app"],
        description="Package folders relative to the project",
    )
    state_dir: str = Field(
        default=".source_tracking",
        description="Tracking state folder relative to the project",
    )
    ignore: list[str] = Field(
        default_factory=list, description="Glob patterns to skip"
    )

    model_config = {"frozen": True}

    @field_validator("package_directories")
    @classmethod
    def _at_least_one_package(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("package_directories must not be empty")
        return value


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL),
            applied when LOG_LEVEL is unset.
    """

    level: str | None = Field(default=None, description="Log level")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    org: OrgConfig = Field(default_factory=OrgConfig)
    project: ProjectConfig = Field(default_factory=ProjectConfig)
    metadata_types: list[MetadataTypeRule] = Field(
        default_factory=lambda: list(DEFAULT_METADATA_RULES)
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully: anything absent gets defaults.
    A ``metadata_types`` list replaces the built-in rules entirely.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
