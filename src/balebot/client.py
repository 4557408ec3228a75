"""`BotClient`: the Bot API plus one update receiver.

Example:

    client = BotClient.from_settings(Settings())

    @client.on(UpdateType.MESSAGE)
    async def echo(update: Update) -> None:
        ...

    @client.on_error
    def log_error(report: ErrorReport) -> None:
        kind, message, is_fatal = report

    await client.run(PollingConfiguration(timeout_seconds=30))
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from anyio.abc import TaskGroup

from .api import BotApi
from .config import Settings
from .dispatch import EventDispatcher, UpdateHandler
from .errors import ErrorReport
from .polling import PollingConfiguration
from .receiver import UpdateReceiver
from .types import EngineState, RunningState, UpdateType

_H = TypeVar("_H", bound=Callable[..., object])


class BotClient:
    def __init__(
        self,
        api: BotApi,
        *,
        initial_offset: int = 0,
        state_listener: Callable[[EngineState], None] | None = None,
    ) -> None:
        self.api = api
        self.dispatcher = EventDispatcher()
        self.receiver = UpdateReceiver(
            api,
            self.dispatcher,
            initial_offset=initial_offset,
            state_listener=state_listener,
        )

    @classmethod
    def from_settings(cls, settings: Settings, *, initial_offset: int = 0) -> BotClient:
        return cls(settings.build_api(), initial_offset=initial_offset)

    # Registration

    def on(self, category: UpdateType) -> Callable[[_H], _H]:
        """Decorator registering a handler for one update category."""

        def decorator(handler: _H) -> _H:
            self.dispatcher.register(category, handler)
            return handler

        return decorator

    def add_handler(self, category: UpdateType, handler: UpdateHandler) -> None:
        self.dispatcher.register(category, handler)

    def on_update(self, handler: _H) -> _H:
        """Register a handler for every update, called before category handlers."""

        self.dispatcher.register_any(handler)
        return handler

    def on_error(self, handler: _H) -> _H:
        self.dispatcher.register_error(handler)
        return handler

    def on_commit(self, handler: _H) -> _H:
        """Register an observer of the offset committed after each batch."""

        self.dispatcher.register_commit(handler)
        return handler

    # Lifecycle

    def start(
        self,
        task_group: TaskGroup,
        configuration: PollingConfiguration | None = None,
    ) -> None:
        self.receiver.start(task_group, configuration)

    def stop(self) -> None:
        self.receiver.stop()

    async def wait_stopped(self) -> None:
        await self.receiver.wait_stopped()

    async def run(self, configuration: PollingConfiguration | None = None) -> None:
        await self.receiver.run(configuration)

    @asynccontextmanager
    async def receiving(
        self, configuration: PollingConfiguration | None = None
    ) -> AsyncIterator[BotClient]:
        async with self.receiver.receiving(configuration):
            yield self

    def status(self) -> RunningState:
        return self.receiver.status()

    def current_offset(self) -> int:
        return self.receiver.current_offset()

    def reset_offset(self, offset: int) -> None:
        self.receiver.reset_offset(offset)

    @property
    def is_receiving(self) -> bool:
        return self.receiver.is_running

    @property
    def last_fatal_error(self) -> ErrorReport | None:
        return self.receiver.last_fatal_error

