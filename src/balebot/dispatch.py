"""Observer registry and fan-out for classified updates.

Handlers run one after another, in registration order, on the caller's task
(the polling loop). A handler may be a plain function or return an awaitable,
which is awaited before the next handler runs. There is no per-handler
timeout: a slow handler delays the next `getUpdates` call.

Failure isolation:
- An update handler that raises is wrapped in :class:`HandlerError` and
  reported on the error channel; remaining handlers still run.
- An error observer that raises is logged and skipped.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from logging import getLogger
from typing import Any, TypeAlias

from .errors import ErrorKind, ErrorReport, HandlerError
from .types import Update, UpdateType

logger = getLogger(__name__)

UpdateHandler: TypeAlias = Callable[[Update], Awaitable[Any] | Any]
ErrorHandler: TypeAlias = Callable[[ErrorReport], Awaitable[Any] | Any]
CommitHandler: TypeAlias = Callable[[int], Awaitable[Any] | Any]


async def _invoke(handler: Callable[..., Any], arg: Any) -> None:
    result = handler(arg)
    if inspect.isawaitable(result):
        await result


class EventDispatcher:
    def __init__(self) -> None:
        self._handlers: dict[UpdateType, list[UpdateHandler]] = {}
        self._any_handlers: list[UpdateHandler] = []
        self._error_handlers: list[ErrorHandler] = []
        self._commit_handlers: list[CommitHandler] = []

    def register(self, category: UpdateType, handler: UpdateHandler) -> None:
        self._handlers.setdefault(UpdateType(category), []).append(handler)

    def unregister(self, category: UpdateType, handler: UpdateHandler) -> None:
        handlers = self._handlers.get(UpdateType(category), [])
        if handler in handlers:
            handlers.remove(handler)

    def register_any(self, handler: UpdateHandler) -> None:
        """Observe every update regardless of category."""

        self._any_handlers.append(handler)

    def register_error(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)

    def register_commit(self, handler: CommitHandler) -> None:
        """Observe the new offset after each batch is committed."""

        self._commit_handlers.append(handler)

    def handlers_for(self, category: UpdateType) -> list[UpdateHandler]:
        return list(self._handlers.get(UpdateType(category), []))

    async def dispatch(self, category: UpdateType, update: Update) -> int:
        """Deliver `update` to the any-observers, then the `category` observers.

        Returns the number of handlers that raised.
        """

        failures = 0
        for handler in list(self._any_handlers):
            failures += await self._run_handler(handler, None, update)
        for handler in self.handlers_for(category):
            failures += await self._run_handler(handler, category, update)
        return failures

    async def _run_handler(
        self,
        handler: UpdateHandler,
        category: UpdateType | None,
        update: Update,
    ) -> int:
        try:
            await _invoke(handler, update)
        except Exception as e:
            error = HandlerError(update, category, handler, e)
            logger.warning("%s", error, exc_info=True)
            await self.report(
                ErrorReport(
                    kind=ErrorKind.HANDLER,
                    message=str(error),
                    is_fatal=False,
                    exception=error,
                )
            )
            return 1
        return 0

    async def report(self, report: ErrorReport) -> None:
        for handler in list(self._error_handlers):
            try:
                await _invoke(handler, report)
            except Exception:
                logger.exception("error observer %r failed", handler)

    async def commit(self, offset: int) -> None:
        for handler in list(self._commit_handlers):
            try:
                await _invoke(handler, offset)
            except Exception as e:
                logger.warning("commit observer %r failed", handler, exc_info=True)
                await self.report(
                    ErrorReport(
                        kind=ErrorKind.HANDLER,
                        message=f"commit observer failed at offset={offset}: "
                        f"{type(e).__name__}: {e}",
                        is_fatal=False,
                        exception=e,
                    )
                )
