"""Lifecycle supervision for the polling engine.

`UpdateReceiver` owns the cursor and guarantees at most one live
`PollingEngine` at a time. The engine runs as a single task in an anyio task
group supplied by the caller (`start`), or in one the receiver opens itself
(`run`, `receiving`).

Running state:

    STOPPED --start()--> RUNNING --stop()--> STOP_REQUESTED --loop exits--> STOPPED
                         RUNNING --fatal error--> STOPPED
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from logging import getLogger

import anyio
from anyio.abc import TaskGroup

from .cursor import CursorStore
from .dispatch import EventDispatcher
from .errors import AlreadyRunningError, ErrorReport, ReceiverStateError
from .polling import PollingConfiguration, PollingEngine, UpdateSource
from .types import EngineState, RunningState

logger = getLogger(__name__)


class UpdateReceiver:
    def __init__(
        self,
        source: UpdateSource,
        dispatcher: EventDispatcher | None = None,
        *,
        initial_offset: int = 0,
        state_listener: Callable[[EngineState], None] | None = None,
    ) -> None:
        self._source = source
        self.dispatcher = dispatcher if dispatcher is not None else EventDispatcher()
        self._cursor = CursorStore(initial_offset)
        self._state_listener = state_listener
        self._state = RunningState.STOPPED
        self._engine: PollingEngine | None = None
        self._stop_event: anyio.Event | None = None
        self._stopped_event: anyio.Event | None = None
        self._has_started = False
        self.last_fatal_error: ErrorReport | None = None

    def status(self) -> RunningState:
        return self._state

    def current_offset(self) -> int:
        return self._cursor.current()

    @property
    def is_running(self) -> bool:
        return self._state is not RunningState.STOPPED

    @property
    def engine_state(self) -> EngineState:
        if self._engine is None:
            return EngineState.STOPPED
        return self._engine.state

    def reset_offset(self, offset: int) -> None:
        """Move the cursor explicitly; only allowed while stopped."""

        if self._state is not RunningState.STOPPED:
            raise ReceiverStateError(
                f"cannot reset offset while {self._state.value}; stop first"
            )
        self._cursor.reset(offset)

    def start(
        self,
        task_group: TaskGroup,
        configuration: PollingConfiguration | None = None,
    ) -> None:
        """Launch the polling loop as a task in `task_group`.

        Raises:
            AlreadyRunningError: If a loop is already active (including one
                that was asked to stop but has not exited yet).
        """

        if self._state is not RunningState.STOPPED:
            raise AlreadyRunningError(f"update receiver is {self._state.value}")

        if configuration is None:
            configuration = PollingConfiguration()
        if not self._has_started and configuration.start_offset is not None:
            self._cursor.reset(configuration.start_offset)
        self._has_started = True

        self._stop_event = anyio.Event()
        self._stopped_event = anyio.Event()
        self._engine = PollingEngine(
            self._source,
            self._cursor,
            self.dispatcher,
            configuration,
            self._stop_event,
            state_listener=self._state_listener,
        )
        self.last_fatal_error = None
        self._state = RunningState.RUNNING
        logger.info(
            "update receiver started: offset=%d timeout=%ds limit=%d",
            self._cursor.current(),
            configuration.timeout_seconds,
            configuration.limit,
        )
        task_group.start_soon(
            self._run_engine, self._engine, self._stopped_event, name="balebot-polling"
        )

    async def _run_engine(self, engine: PollingEngine, stopped: anyio.Event) -> None:
        try:
            fatal = await engine.run()
            if fatal is not None:
                self.last_fatal_error = fatal
        finally:
            self._state = RunningState.STOPPED
            stopped.set()
            logger.info("update receiver stopped: offset=%d", self._cursor.current())

    def stop(self) -> None:
        """Request the loop to stop at its next state boundary.

        Returns immediately; use `wait_stopped()` to join. No-op unless running.
        """

        if self._state is not RunningState.RUNNING:
            return
        self._state = RunningState.STOP_REQUESTED
        if self._stop_event is not None:
            self._stop_event.set()

    async def wait_stopped(self) -> None:
        if self._stopped_event is not None:
            await self._stopped_event.wait()

    async def run(self, configuration: PollingConfiguration | None = None) -> None:
        """Run the loop in the foreground until it stops."""

        async with anyio.create_task_group() as tg:
            self.start(tg, configuration)

    @asynccontextmanager
    async def receiving(
        self, configuration: PollingConfiguration | None = None
    ) -> AsyncIterator[UpdateReceiver]:
        """Poll in the background for the duration of the `async with` block.

        Leaving the block requests a stop and waits for the loop to exit,
        which can take up to the long-poll timeout.
        """

        async with anyio.create_task_group() as tg:
            self.start(tg, configuration)
            try:
                yield self
            finally:
                self.stop()
