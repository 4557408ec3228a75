"""Telegram-compatible Bot API client with a long-polling update receiver.

The receiver repeatedly calls `getUpdates`, advances an in-memory offset
after each fully dispatched batch, classifies every update and fans it out to
registered handlers. Failures inside the loop are reported on an error
channel instead of being raised:

- network errors, rate limits and server errors are retried with backoff
- authorization failures stop the loop and leave the offset untouched
- handler exceptions are isolated per handler

Design notes / boundaries:
- Polling only; webhook delivery is not handled here.
- The offset is not persisted. Callers that need to resume across restarts
  save it from a commit observer (see :mod:`balebot.state`).
"""

from __future__ import annotations

from .api import DEFAULT_API_BASE_URL, BotApi
from .classify import (
    classify,
    is_ambiguous,
    is_undecoded,
    populated_types,
    primary_type,
)
from .client import BotClient
from .config import Settings
from .cursor import CursorStore
from .dispatch import EventDispatcher
from .errors import (
    AlreadyRunningError,
    ApiError,
    BotError,
    ErrorKind,
    ErrorReport,
    HandlerError,
    ProtocolError,
    ReceiverStateError,
    ServiceError,
    TransportError,
)
from .polling import PollingConfiguration, PollingEngine, UpdateSource
from .receiver import UpdateReceiver
from .retry import ExponentialBackoffRetryPolicy, FixedDelayRetryPolicy, RetryPolicy
from .state import load_offset, save_offset
from .types import (
    CallbackQuery,
    Chat,
    ChosenInlineResult,
    EngineState,
    InlineQuery,
    Message,
    PreCheckoutQuery,
    RunningState,
    ShippingQuery,
    Update,
    UpdateType,
    User,
)

__all__ = [
    "DEFAULT_API_BASE_URL",
    "AlreadyRunningError",
    "ApiError",
    "BotApi",
    "BotClient",
    "BotError",
    "CallbackQuery",
    "Chat",
    "ChosenInlineResult",
    "CursorStore",
    "EngineState",
    "ErrorKind",
    "ErrorReport",
    "EventDispatcher",
    "ExponentialBackoffRetryPolicy",
    "FixedDelayRetryPolicy",
    "HandlerError",
    "InlineQuery",
    "Message",
    "PollingConfiguration",
    "PollingEngine",
    "PreCheckoutQuery",
    "ProtocolError",
    "ReceiverStateError",
    "RetryPolicy",
    "RunningState",
    "ServiceError",
    "Settings",
    "ShippingQuery",
    "TransportError",
    "Update",
    "UpdateReceiver",
    "UpdateSource",
    "UpdateType",
    "User",
    "classify",
    "is_ambiguous",
    "is_undecoded",
    "load_offset",
    "populated_types",
    "primary_type",
    "save_offset",
]
