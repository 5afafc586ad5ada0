"""JSON persistence shared by the local and remote ledgers.

Key design choices:

* **Atomic writes** -- ``write_json_atomic()`` writes to a temp file in the
  target directory then calls ``os.replace()`` so readers never see partial
  data.
* **Per-path write lock** -- writes run in worker threads, so each target
  path has a process-wide ``threading.Lock`` that serialises writers.
* **Loud failures** -- unreadable or corrupt state raises
  ``LedgerPersistenceError`` instead of silently starting over.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Any

from .errors import LedgerPersistenceError

logger = logging.getLogger(__name__)

_write_locks: dict[Path, threading.Lock] = {}
_write_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    with _write_locks_guard:
        return _write_locks.setdefault(path.resolve(), threading.Lock())


def read_json(path: Path, default: dict[str, Any]) -> dict[str, Any]:
    """Load a JSON object from *path*.

    Returns:
        The parsed dict, or *default* when the file does not exist.

    Raises:
        LedgerPersistenceError: If the file cannot be read or is not a
            JSON object.
    """
    if not path.exists():
        return default
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as exc:
        raise LedgerPersistenceError(
            f"Failed to read tracking state {path}: {exc}"
        ) from exc
    if not isinstance(data, dict):
        raise LedgerPersistenceError(
            f"Tracking state {path} has non-object root ({type(data).__name__})"
        )
    return data


def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Persist *data* to *path* atomically.

    Creates the parent directory if needed.

    Raises:
        LedgerPersistenceError: If the write fails.
    """
    with _lock_for(path):
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(path.parent), suffix=".tmp"
            )
        except OSError as exc:
            raise LedgerPersistenceError(
                f"Failed to write tracking state {path}: {exc}"
            ) from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True)
            os.replace(tmp_path, path)
        except BaseException as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            if isinstance(exc, OSError):
                raise LedgerPersistenceError(
                    f"Failed to write tracking state {path}: {exc}"
                ) from exc
            raise
    logger.debug("Wrote tracking state %s", path)


def remove_tree(path: Path) -> str:
    """Delete a ledger directory and describe what was removed.

    Raises:
        LedgerPersistenceError: If the directory exists but cannot be removed.
    """
    if not path.exists():
        return f"No tracking state found at {path}"
    try:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
    except OSError as exc:
        raise LedgerPersistenceError(
            f"Failed to delete tracking state {path}: {exc}"
        ) from exc
    logger.info("Deleted tracking state %s", path)
    return f"Deleted {path}"
