"""The update cursor: the next offset to request from `getUpdates`.

Single writer (the polling engine), many readers. The offset is a plain int
attribute, so reads are atomic snapshots and need no locking.
"""

from __future__ import annotations

from logging import getLogger

logger = getLogger(__name__)


class CursorStore:
    def __init__(self, offset: int = 0) -> None:
        self._offset = offset

    def current(self) -> int:
        return self._offset

    def advance(self, max_seen_id: int) -> int:
        """Move past `max_seen_id` and return the new offset.

        The offset never decreases here; a `max_seen_id` below the current
        offset leaves it unchanged.
        """

        candidate = max_seen_id + 1
        if candidate > self._offset:
            logger.debug("cursor advanced: %d -> %d", self._offset, candidate)
            self._offset = candidate
        return self._offset

    def reset(self, new_offset: int) -> None:
        """Overwrite the offset. Callers must ensure no loop is running."""

        logger.info("cursor reset: %d -> %d", self._offset, new_offset)
        self._offset = new_offset

    def __repr__(self) -> str:
        return f"CursorStore(offset={self._offset})"
