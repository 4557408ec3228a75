from collections.abc import Callable, Iterable
from typing import Any

import anyio
import pytest

from balebot import Update, UpdateType


def message_payload(text: str = "hi", *, chat_id: int = 1) -> dict[str, Any]:
    return {
        "message_id": 10,
        "date": 1_700_000_000,
        "chat": {"id": chat_id, "type": "private"},
        "from": {"id": 42, "first_name": "Alice"},
        "text": text,
    }


def inline_query_payload(query: str = "cats") -> dict[str, Any]:
    return {
        "id": "q-1",
        "from": {"id": 42, "first_name": "Alice"},
        "query": query,
        "offset": "",
    }


def make_update(update_id: int, **variants: Any) -> Update:
    return Update.model_validate({"update_id": update_id, **variants})


def msg(update_id: int, text: str = "hi") -> Update:
    return make_update(update_id, message=message_payload(text))


class ScriptedSource:
    """In-memory `UpdateSource` replaying a script of batches and errors.

    Each `get_updates` call consumes one step: a list is returned as the
    batch, an exception is raised. Once the script is exhausted the
    `when_exhausted` callback runs (typically a stop request) and an empty
    batch is returned.
    """

    def __init__(
        self,
        steps: Iterable[list[Update] | Exception],
        *,
        when_exhausted: Callable[[], None] | None = None,
    ) -> None:
        self.steps = list(steps)
        self.when_exhausted = when_exhausted
        self.calls: list[dict[str, Any]] = []

    async def get_updates(
        self,
        *,
        offset: int,
        limit: int,
        timeout_seconds: int,
        allowed_updates: Iterable[UpdateType] | None,
    ) -> list[Update]:
        self.calls.append(
            {
                "offset": offset,
                "limit": limit,
                "timeout_seconds": timeout_seconds,
                "allowed_updates": allowed_updates,
            }
        )
        await anyio.sleep(0)
        if not self.steps:
            if self.when_exhausted is not None:
                self.when_exhausted()
            return []
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        return step

    @property
    def offsets(self) -> list[int]:
        return [c["offset"] for c in self.calls]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
