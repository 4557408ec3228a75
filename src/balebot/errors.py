"""Error taxonomy for the Bot API client and the update receiver.

Remote-call failures derive from :class:`ApiError`:

- :class:`TransportError`: the request never produced a response (network
  error, socket timeout).
- :class:`ServiceError`: the service answered with `ok=false`; `kind` is
  derived from `error_code`.
- :class:`ProtocolError`: the response could not be decoded or violates the
  expected shape.

:class:`HandlerError` wraps an observer failure during dispatch. Lifecycle
misuse (:class:`AlreadyRunningError`, :class:`ReceiverStateError`) is raised
directly to the caller; everything else that happens inside the polling loop
is delivered as an :class:`ErrorReport` on the error-observer channel.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .types import Update, UpdateType


class ErrorKind(StrEnum):
    TRANSPORT = "transport"
    RATE_LIMITED = "rate_limited"
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    SERVER = "server"
    SERVICE = "service"
    PROTOCOL = "protocol"
    HANDLER = "handler"
    INTERNAL = "internal"


_KIND_BY_ERROR_CODE: dict[int, ErrorKind] = {
    400: ErrorKind.BAD_REQUEST,
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    429: ErrorKind.RATE_LIMITED,
}


def error_kind_for_code(error_code: int | None) -> ErrorKind:
    """Map a Bot API `error_code` to an :class:`ErrorKind`."""

    if error_code is None:
        return ErrorKind.SERVICE
    kind = _KIND_BY_ERROR_CODE.get(error_code)
    if kind is not None:
        return kind
    if 500 <= error_code < 600:
        return ErrorKind.SERVER
    return ErrorKind.SERVICE


class BotError(Exception):
    """Base class for all errors raised by this package."""


class ApiError(BotError):
    """A remote call failed."""

    kind: ErrorKind = ErrorKind.SERVICE

    def __init__(self, message: str, *, method: str | None = None) -> None:
        super().__init__(message)
        self.method = method


class TransportError(ApiError):
    """Network failure or timeout before a response was received."""

    kind = ErrorKind.TRANSPORT


class ProtocolError(ApiError):
    """The response was received but is not a valid Bot API payload."""

    kind = ErrorKind.PROTOCOL


class ServiceError(ApiError):
    """The service answered with `ok=false`.

    `retry_after` and `migrate_to_chat_id` come from the response
    `parameters` object when present.
    """

    def __init__(
        self,
        message: str,
        *,
        method: str | None = None,
        error_code: int | None = None,
        description: str | None = None,
        retry_after: float | None = None,
        migrate_to_chat_id: int | None = None,
    ) -> None:
        super().__init__(message, method=method)
        self.error_code = error_code
        self.description = description
        self.retry_after = retry_after
        self.migrate_to_chat_id = migrate_to_chat_id
        self.kind = error_kind_for_code(error_code)

    @classmethod
    def from_payload(
        cls,
        method: str,
        payload: dict[str, Any],
        *,
        http_status: int | None = None,
    ) -> ServiceError:
        """Build from an `{"ok": false, ...}` response body.

        `http_status` is used as `error_code` when the body carries none.
        """

        raw_code = payload.get("error_code")
        error_code = raw_code if isinstance(raw_code, int) else http_status
        raw_desc = payload.get("description")
        description = raw_desc if isinstance(raw_desc, str) and raw_desc else None

        retry_after: float | None = None
        migrate_to_chat_id: int | None = None
        params = payload.get("parameters")
        if isinstance(params, dict):
            raw_retry = params.get("retry_after")
            if isinstance(raw_retry, (int, float)) and not isinstance(raw_retry, bool):
                retry_after = float(raw_retry)
            raw_migrate = params.get("migrate_to_chat_id")
            if isinstance(raw_migrate, int):
                migrate_to_chat_id = raw_migrate

        message = f"{method} failed"
        if error_code is not None:
            message += f": {error_code}"
        if description is not None:
            message += f" {description}"
        return cls(
            message,
            method=method,
            error_code=error_code,
            description=description,
            retry_after=retry_after,
            migrate_to_chat_id=migrate_to_chat_id,
        )


class HandlerError(BotError):
    """An update observer raised while handling an update."""

    def __init__(
        self,
        update: Update,
        category: UpdateType | None,
        handler: Any,
        original: BaseException,
    ) -> None:
        name = getattr(handler, "__qualname__", None) or repr(handler)
        where = category.value if category is not None else "any"
        super().__init__(
            f"handler {name} failed for update_id={update.update_id} ({where}): "
            f"{type(original).__name__}: {original}"
        )
        self.update = update
        self.category = category
        self.handler = handler
        self.original = original


class AlreadyRunningError(BotError):
    """`start()` was called while a polling loop is active for this client."""


class ReceiverStateError(BotError):
    """An operation is not permitted in the receiver's current running state."""


@dataclass(frozen=True, slots=True)
class ErrorReport:
    """One entry on the error-observer channel.

    Unpacks as the `(kind, message, is_fatal)` triple; the originating
    exception, when there is one, is kept on `exception`.
    """

    kind: ErrorKind
    message: str
    is_fatal: bool
    exception: BaseException | None = None

    def __iter__(self) -> Iterator[Any]:
        yield self.kind
        yield self.message
        yield self.is_fatal

    @classmethod
    def from_exception(cls, exc: BaseException, *, is_fatal: bool) -> ErrorReport:
        if isinstance(exc, ApiError):
            kind = exc.kind
        elif isinstance(exc, HandlerError):
            kind = ErrorKind.HANDLER
        else:
            kind = ErrorKind.INTERNAL
        message = str(exc) or type(exc).__name__
        return cls(kind=kind, message=message, is_fatal=is_fatal, exception=exc)
