"""The long-polling engine.

One `PollingEngine.run()` call drives the whole receive cycle on the calling
task:

    IDLE -> ACQUIRING -> DISPATCHING -> IDLE -> ...
                 \\-> BACKOFF -> ACQUIRING
    any boundary -> STOPPED

Invariants:
- Updates are dispatched in strictly increasing `update_id` order, across
  batches too, and no id is dispatched twice within one run.
- The cursor moves only after every update of a batch was handed to the
  dispatcher, and only past ids that were actually dispatched.
- A failed `getUpdates` never moves the cursor.
- Stop requests are honored at state boundaries only. The in-flight remote
  call is never interrupted; the backoff wait is.
- Nothing raised inside the loop reaches the caller. Failures are delivered
  as `ErrorReport`s through the dispatcher's error channel; `run()` returns
  the fatal report that ended the loop, if any.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from logging import getLogger
from typing import Protocol

import anyio
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .classify import classify, is_ambiguous, is_undecoded
from .cursor import CursorStore
from .dispatch import EventDispatcher
from .errors import ErrorKind, ErrorReport
from .retry import FixedDelayRetryPolicy, RetryPolicy
from .types import EngineState, Update, UpdateType

logger = getLogger(__name__)


class UpdateSource(Protocol):
    """Anything that can fetch a batch of updates; `BotApi` is the real one."""

    async def get_updates(
        self,
        *,
        offset: int,
        limit: int,
        timeout_seconds: int,
        allowed_updates: Iterable[UpdateType] | None,
    ) -> list[Update]: ...


class PollingConfiguration(BaseModel):
    """Immutable settings for one polling run.

    `start_offset` seeds the cursor at the first start of a receiver only;
    later starts resume from wherever the cursor is.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    timeout_seconds: int = Field(default=30, ge=0)
    limit: int = Field(default=100, ge=1, le=100)
    allowed_updates: tuple[UpdateType, ...] | None = None
    retry_policy: RetryPolicy = Field(default_factory=FixedDelayRetryPolicy)
    start_offset: int | None = None

    @field_validator("allowed_updates")
    @classmethod
    def _reject_unknown_type(
        cls, value: tuple[UpdateType, ...] | None
    ) -> tuple[UpdateType, ...] | None:
        if value is not None and UpdateType.UNKNOWN in value:
            raise ValueError("allowed_updates must not contain 'unknown'")
        return value


class PollingEngine:
    def __init__(
        self,
        source: UpdateSource,
        cursor: CursorStore,
        dispatcher: EventDispatcher,
        configuration: PollingConfiguration,
        stop_event: anyio.Event,
        *,
        state_listener: Callable[[EngineState], None] | None = None,
    ) -> None:
        self._source = source
        self._cursor = cursor
        self._dispatcher = dispatcher
        self._configuration = configuration
        self._stop_event = stop_event
        self._state_listener = state_listener
        self._state = EngineState.IDLE

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def configuration(self) -> PollingConfiguration:
        return self._configuration

    def _set_state(self, state: EngineState) -> None:
        self._state = state
        if self._state_listener is None:
            return
        try:
            self._state_listener(state)
        except Exception:
            logger.exception("engine state listener failed on %s", state.name)

    def _stop_requested(self) -> bool:
        return self._stop_event.is_set()

    async def run(self) -> ErrorReport | None:
        try:
            return await self._loop()
        except Exception as e:
            report = ErrorReport(
                kind=ErrorKind.INTERNAL,
                message=f"polling loop crashed: {type(e).__name__}: {e}",
                is_fatal=True,
                exception=e,
            )
            logger.exception("polling loop crashed")
            await self._dispatcher.report(report)
            return report
        finally:
            self._set_state(EngineState.STOPPED)

    async def _loop(self) -> ErrorReport | None:
        policy = self._configuration.retry_policy
        attempt = 0
        self._set_state(EngineState.IDLE)

        while not self._stop_requested():
            self._set_state(EngineState.ACQUIRING)
            offset = self._cursor.current()
            try:
                batch = await self._source.get_updates(
                    offset=offset,
                    limit=self._configuration.limit,
                    timeout_seconds=self._configuration.timeout_seconds,
                    allowed_updates=self._configuration.allowed_updates,
                )
            except Exception as e:
                if policy.is_fatal(e):
                    report = ErrorReport.from_exception(e, is_fatal=True)
                    logger.error(
                        "getUpdates failed fatally at offset=%d: %s", offset, e
                    )
                    await self._dispatcher.report(report)
                    return report

                attempt += 1
                delay = policy.delay_seconds(e, attempt)
                logger.warning(
                    "getUpdates failed at offset=%d (attempt %d), retry in %.1fs: %s",
                    offset,
                    attempt,
                    delay,
                    e,
                )
                await self._dispatcher.report(
                    ErrorReport.from_exception(e, is_fatal=False)
                )
                if self._stop_requested():
                    break
                self._set_state(EngineState.BACKOFF)
                if await self._backoff(delay):
                    break
                continue

            attempt = 0
            if self._stop_requested():
                # Not yet confirmed server-side: the cursor did not move, so
                # this batch is fetched again on the next start.
                logger.debug("stop requested; leaving %d fetched updates", len(batch))
                break

            self._set_state(EngineState.DISPATCHING)
            await self._dispatch_batch(batch)
            self._set_state(EngineState.IDLE)

        return None

    async def _backoff(self, delay: float) -> bool:
        """Wait `delay` seconds or until stop is requested; True if stopped."""

        with anyio.move_on_after(max(delay, 0.0)):
            await self._stop_event.wait()
        return self._stop_requested()

    def _fresh_updates(self, batch: list[Update]) -> list[Update]:
        """Sort by id and drop ids already behind the cursor or repeated."""

        floor = self._cursor.current()
        fresh: list[Update] = []
        last_id: int | None = None
        for update in sorted(batch, key=lambda u: u.update_id):
            if update.update_id < floor or update.update_id == last_id:
                logger.warning(
                    "dropping already-seen update_id=%d (cursor=%d)",
                    update.update_id,
                    floor,
                )
                continue
            fresh.append(update)
            last_id = update.update_id
        return fresh

    async def _dispatch_batch(self, batch: list[Update]) -> None:
        updates = self._fresh_updates(batch)
        if not updates:
            return

        for update in updates:
            category = classify(update)
            if is_ambiguous(update):
                types = ", ".join(t.value for t in update.populated_types())
                await self._dispatcher.report(
                    ErrorReport(
                        kind=ErrorKind.PROTOCOL,
                        message=f"update_id={update.update_id} has several "
                        f"variants ({types}); classified as unknown",
                        is_fatal=False,
                    )
                )
            elif is_undecoded(update):
                await self._dispatcher.report(
                    ErrorReport(
                        kind=ErrorKind.PROTOCOL,
                        message=f"update_id={update.update_id} does not match the "
                        "update schema; delivered as unknown",
                        is_fatal=False,
                    )
                )
            await self._dispatcher.dispatch(category, update)

        offset = self._cursor.advance(updates[-1].update_id)
        logger.debug("dispatched %d updates; offset=%d", len(updates), offset)
        await self._dispatcher.commit(offset)
