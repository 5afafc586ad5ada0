"""
YAML configuration files for source_tracking.

A tracked project keeps its settings next to its tracking state, in
``<project>/.source_tracking/config.yml``. A per-user file under
``~/.config/source_tracking/`` supplies defaults shared by every project,
and ``SOURCE_TRACKING_CONFIG`` points at a file that outranks both.

Files may pull in other files with ``!include`` (handy for sharing one
``metadata_types`` list across projects) and reference environment
variables as ``${VAR}`` or ``${VAR:-default}``.

Usage:
    from source_tracking.config_loader import load_hierarchical_config

    raw = load_hierarchical_config("/work/my-project")
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SOURCE_TRACKING_CONFIG"
PROJECT_CONFIG_DIR = ".source_tracking"
CONFIG_NAMES = ("config.yml", "config.yaml")

# ${VAR} or ${VAR:-default}
_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` references in *value*.

    An unset or empty variable expands to its ``:-`` default, or to the
    empty string when there is none. Unterminated ``${`` is kept as is.
    """
    return _ENV_REF.sub(
        lambda m: os.environ.get(m.group(1)) or m.group(2) or "", value
    )


def _expand(node: Any) -> Any:
    if isinstance(node, str):
        return interpolate_env_vars(node)
    if isinstance(node, list):
        return [_expand(item) for item in node]
    if isinstance(node, dict):
        return {key: _expand(item) for key, item in node.items()}
    return node


class _IncludeLoader(yaml.SafeLoader):
    """SafeLoader that understands ``!include``.

    Registered on this subclass only, so plain ``yaml.safe_load`` elsewhere
    is unaffected. ``chain`` holds the files being loaded, outermost first.
    """

    chain: tuple[Path, ...] = ()


def _construct_include(loader: _IncludeLoader, node: yaml.ScalarNode) -> Any:
    including = loader.chain[-1]
    target = Path(loader.construct_scalar(node)).expanduser()
    if not target.is_absolute():
        target = including.parent / target
    target = target.resolve()

    if target in loader.chain:
        cycle = " -> ".join(str(p) for p in (*loader.chain, target))
        raise ValueError(f"Circular include detected: {cycle}")
    if not target.is_file():
        raise FileNotFoundError(
            f"Include file not found: {target} (referenced from {including})"
        )
    return _load_yaml_with_includes(target, chain=loader.chain)


_IncludeLoader.add_constructor("!include", _construct_include)


def _load_yaml_with_includes(
    path: Path, *, chain: tuple[Path, ...] = ()
) -> Any:
    path = path.resolve()
    with open(path, encoding="utf-8") as fh:
        loader = _IncludeLoader(fh)
        loader.chain = (*chain, path)
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


def discover_config_files(project_path: str | Path | None = None) -> list[Path]:
    """Return the config files that exist, highest precedence first.

    Looked up in order:
        1. the file named by ``SOURCE_TRACKING_CONFIG``
        2. ``.source_tracking/config.yml`` (or ``.yaml``) in *project_path*,
           defaulting to the current directory
        3. ``~/.config/source_tracking/config.yml``
    """
    candidates: list[Path] = []

    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())

    project = Path(project_path).expanduser() if project_path else Path.cwd()
    candidates.extend(project / PROJECT_CONFIG_DIR / name for name in CONFIG_NAMES)
    candidates.append(Path.home() / ".config" / "source_tracking" / CONFIG_NAMES[0])

    return [p for p in candidates if p.is_file()]


def load_hierarchical_config(
    project_path: str | Path | None = None,
) -> dict[str, Any]:
    """Merge every discovered config file into one dict.

    Lower-precedence files load first; a later file's top-level sections
    replace earlier ones wholesale, so a project ``org:`` section hides
    the user-level one entirely. Environment references are expanded
    after the merge. No files at all yields ``{}``.

    Raises:
        OSError, ValueError, yaml.YAMLError: A file could not be read.
    """
    paths = discover_config_files(project_path)
    if not paths:
        logger.debug("No config files found, using zero-config defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = _load_yaml_with_includes(path)
        except (OSError, ValueError, yaml.YAMLError):
            logger.exception("Failed to load config file %s", path)
            raise

        if data is None:
            continue
        if not isinstance(data, dict):
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )
            continue
        merged.update(data)

    return _expand(merged)
