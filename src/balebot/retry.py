"""Retry policies for the polling loop.

A policy decides two things about a failed `getUpdates` call: whether the
failure is fatal (stop the loop) and, if not, how long to wait before the next
attempt. `attempt` counts consecutive failures starting at 1 and resets after
a successful call.
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from .errors import ServiceError

DEFAULT_FATAL_ERROR_CODES: frozenset[int] = frozenset({401, 403, 404})


@runtime_checkable
class RetryPolicy(Protocol):
    def is_fatal(self, error: Exception) -> bool: ...

    def delay_seconds(self, error: Exception, attempt: int) -> float: ...


def _is_fatal_service_error(error: Exception, fatal_codes: Collection[int]) -> bool:
    return isinstance(error, ServiceError) and error.error_code in fatal_codes


def _retry_after(error: Exception) -> float | None:
    if isinstance(error, ServiceError) and error.retry_after is not None:
        return max(0.0, error.retry_after)
    return None


@dataclass(frozen=True, slots=True)
class FixedDelayRetryPolicy:
    """Wait a fixed delay between attempts.

    Authorization failures (`401`, and `403`/`404`, which the service returns
    for revoked or malformed tokens) are fatal by default. A rate-limit
    response carrying `retry_after` waits that long instead of the fixed
    delay when `honor_retry_after` is set.
    """

    delay: float = 1.0
    fatal_error_codes: frozenset[int] = field(default=DEFAULT_FATAL_ERROR_CODES)
    honor_retry_after: bool = True

    def __post_init__(self) -> None:
        if self.delay < 0:
            raise ValueError(f"delay must be >= 0; got {self.delay}")

    def is_fatal(self, error: Exception) -> bool:
        return _is_fatal_service_error(error, self.fatal_error_codes)

    def delay_seconds(self, error: Exception, attempt: int) -> float:
        if self.honor_retry_after:
            retry_after = _retry_after(error)
            if retry_after is not None:
                return retry_after
        return self.delay


@dataclass(frozen=True, slots=True)
class ExponentialBackoffRetryPolicy:
    """Multiply the delay by `factor` per consecutive failure, capped at `max_delay`."""

    initial: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0
    fatal_error_codes: frozenset[int] = field(default=DEFAULT_FATAL_ERROR_CODES)
    honor_retry_after: bool = True

    def __post_init__(self) -> None:
        if self.initial < 0:
            raise ValueError(f"initial must be >= 0; got {self.initial}")
        if self.factor < 1:
            raise ValueError(f"factor must be >= 1; got {self.factor}")
        if self.max_delay < self.initial:
            raise ValueError(
                f"max_delay must be >= initial; got {self.max_delay} < {self.initial}"
            )

    def is_fatal(self, error: Exception) -> bool:
        return _is_fatal_service_error(error, self.fatal_error_codes)

    def delay_seconds(self, error: Exception, attempt: int) -> float:
        # Exponent is clamped so long outages cannot overflow the float.
        exponent = min(max(attempt - 1, 0), 64)
        computed = min(self.initial * self.factor**exponent, self.max_delay)
        if self.honor_retry_after:
            retry_after = _retry_after(error)
            if retry_after is not None:
                return max(retry_after, computed)
        return computed
