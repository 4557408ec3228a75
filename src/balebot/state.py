"""Caller-side persistence for the update offset.

The receiver keeps its cursor in memory only. Callers that want to resume
after a restart register a commit observer that calls `save_offset()` after
every batch, and seed the next run with `load_offset()`.

The state file is a small versioned JSON object:
`{"version": 1, "offset": <int>}`. Writes replace the file atomically.
"""

from __future__ import annotations

import json
import tempfile
from pathlib import Path

_OFFSET_STATE_VERSION = 1


def load_offset(path: Path) -> int | None:
    """Return the persisted offset, or `None` if `path` does not exist.

    Raises:
        ValueError: If the file is invalid JSON or has an invalid schema.
    """

    if not path.exists():
        return None

    with path.open("r", encoding="utf-8") as f:
        try:
            payload = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON at {path}: {e}") from e

    if not isinstance(payload, dict):
        raise ValueError(f"Invalid offset state at {path}: expected JSON object")
    version = payload.get("version")
    if version != _OFFSET_STATE_VERSION:
        raise ValueError(
            f"Invalid offset state version at {path}: "
            f"expected {_OFFSET_STATE_VERSION}, got {version!r}"
        )

    offset = payload.get("offset")
    if not isinstance(offset, int) or isinstance(offset, bool):
        raise ValueError(f"Invalid offset state at {path}: offset must be an integer")
    return offset


def save_offset(path: Path, offset: int) -> None:
    """Persist `offset` atomically (temporary file + rename).

    Creates parent directories for `path`.
    """

    if not isinstance(offset, int) or isinstance(offset, bool):
        raise ValueError(f"Invalid offset: {offset!r}")

    payload = {"version": _OFFSET_STATE_VERSION, "offset": offset}

    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as tf:
        tmp_path = Path(tf.name)
        tf.write(json.dumps(payload, separators=(",", ":")))
        tf.write("\n")

    tmp_path.replace(path)
