"""Remote org connection settings.

Reads org connection settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    ORG_INSTANCE_URL: Org instance URL (required)
    ORG_USERNAME: Username the tracking state belongs to (required)
    ORG_ACCESS_TOKEN: OAuth access token (required)
    ORG_ID: Org identity (required)
    ORG_API_VERSION: API version (optional, default: 60.0)
    ORG_INSECURE: Skip SSL verification (optional, default: false)
    ORG_MAX_PARALLEL_REQUESTS: Max parallel remote requests (optional, default: 5)
"""

import logging
import os
import re
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_API_VERSION_PATTERN = re.compile(r"^\d+\.\d$")


@dataclass
class Config:
    instance_url: str
    username: str
    access_token: str
    org_id: str
    api_version: str = "60.0"
    insecure: bool = False
    debug: bool = False
    max_parallel_requests: int = 5


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If URL or API version format is invalid or
            credentials are empty.
    """
    config.instance_url = config.instance_url.strip()

    if not config.instance_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid instance URL '{config.instance_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.instance_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid instance URL '{config.instance_url}': URL must include a hostname"
        )

    config.instance_url = config.instance_url.removesuffix("/")

    if not config.username.strip():
        raise ValueError(
            "Username cannot be empty. Set ORG_USERNAME environment variable."
        )

    if not config.access_token.strip():
        raise ValueError(
            "Access token cannot be empty. Set ORG_ACCESS_TOKEN environment variable."
        )

    if not config.org_id.strip():
        raise ValueError(
            "Org id cannot be empty. Set ORG_ID environment variable."
        )

    if not _API_VERSION_PATTERN.match(config.api_version):
        raise ValueError(
            f"Invalid API version '{config.api_version}': expected a value like 60.0"
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _require(
    value: str | None, label: str, env_var: str, yaml_key: str
) -> str:
    if not value:
        raise ValueError(
            f"{label} not found. Set {env_var} environment variable, "
            f"pass --{yaml_key.replace('_', '-')} CLI argument, or add "
            f"'{yaml_key}' to config.yml."
        )
    return value.strip()


def load_config(
    instance_url: str | None = None,
    username: str | None = None,
    access_token: str | None = None,
    org_id: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        instance_url: Override instance URL.
        username: Override username.
        access_token: Override access token.
        org_id: Override org id.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Values from the YAML config file ``org`` section.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If required config is missing after checking all
            sources, or a value is invalid.
    """
    fb = yaml_fallbacks or {}

    final_url = _require(
        instance_url or os.getenv("ORG_INSTANCE_URL") or fb.get("instance_url"),
        "Instance URL",
        "ORG_INSTANCE_URL",
        "instance_url",
    )
    final_username = _require(
        username or os.getenv("ORG_USERNAME") or fb.get("username"),
        "Username",
        "ORG_USERNAME",
        "username",
    )
    final_token = _require(
        access_token
        or os.getenv("ORG_ACCESS_TOKEN")
        or fb.get("access_token"),
        "Access token",
        "ORG_ACCESS_TOKEN",
        "access_token",
    )
    final_org_id = _require(
        org_id or os.getenv("ORG_ID") or fb.get("org_id"),
        "Org id",
        "ORG_ID",
        "org_id",
    )

    final_api_version = str(
        os.getenv("ORG_API_VERSION") or fb.get("api_version") or "60.0"
    ).strip()

    if insecure:
        final_insecure = True
    else:
        env_insecure = _get_bool_env("ORG_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("ORG_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    max_parallel_raw = os.getenv("ORG_MAX_PARALLEL_REQUESTS")
    if max_parallel_raw is not None:
        try:
            final_max_parallel = int(max_parallel_raw)
        except ValueError:
            raise ValueError(
                f"Invalid ORG_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': must be a number between 1 and 100"
            ) from None
        if not (1 <= final_max_parallel <= 100):
            raise ValueError(
                f"Invalid ORG_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': must be a number between 1 and 100"
            )
    elif "max_parallel_requests" in fb:
        final_max_parallel = int(fb["max_parallel_requests"])
    else:
        final_max_parallel = 5

    config = Config(
        instance_url=final_url,
        username=final_username,
        access_token=final_token,
        org_id=final_org_id,
        api_version=final_api_version,
        insecure=final_insecure,
        debug=final_debug,
        max_parallel_requests=final_max_parallel,
    )

    validate_config(config)

    return config
