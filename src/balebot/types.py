"""Pydantic models for inbound updates.

Only the envelope and the fields the receiver and common handlers rely on are
modelled; every model keeps unknown wire fields (`extra="allow"`) so newer
service fields survive a round trip through `model_dump(by_alias=True)`.

Invariant:
    A well-formed `Update` has exactly one populated variant field among
    `UPDATE_VARIANT_FIELDS`. Zero or several are tolerated here and resolved
    by :mod:`balebot.classify`.
"""

from __future__ import annotations

from enum import Enum, StrEnum
from typing import TYPE_CHECKING, Any, Final

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from .classify import UpdatePayload


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class User(_WireModel):
    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: str | None = None
    username: str | None = None


class Chat(_WireModel):
    id: int
    type: str = "private"
    title: str | None = None
    username: str | None = None


class Message(_WireModel):
    message_id: int
    date: int = 0
    chat: Chat
    from_user: User | None = Field(default=None, alias="from")
    text: str | None = None
    caption: str | None = None
    edit_date: int | None = None


class InlineQuery(_WireModel):
    id: str
    from_user: User = Field(alias="from")
    query: str = ""
    offset: str = ""


class ChosenInlineResult(_WireModel):
    result_id: str
    from_user: User = Field(alias="from")
    query: str = ""
    inline_message_id: str | None = None


class CallbackQuery(_WireModel):
    id: str
    from_user: User = Field(alias="from")
    message: Message | None = None
    inline_message_id: str | None = None
    chat_instance: str | None = None
    data: str | None = None


class ShippingQuery(_WireModel):
    id: str
    from_user: User = Field(alias="from")
    invoice_payload: str
    shipping_address: dict[str, Any] | None = None


class PreCheckoutQuery(_WireModel):
    id: str
    from_user: User = Field(alias="from")
    currency: str
    total_amount: int
    invoice_payload: str


class UpdateType(StrEnum):
    """Update categories, valued by their wire field names."""

    MESSAGE = "message"
    EDITED_MESSAGE = "edited_message"
    CHANNEL_POST = "channel_post"
    EDITED_CHANNEL_POST = "edited_channel_post"
    INLINE_QUERY = "inline_query"
    CHOSEN_INLINE_RESULT = "chosen_inline_result"
    CALLBACK_QUERY = "callback_query"
    SHIPPING_QUERY = "shipping_query"
    PRE_CHECKOUT_QUERY = "pre_checkout_query"
    UNKNOWN = "unknown"


# Fixed classification priority order.
UPDATE_VARIANT_FIELDS: Final[tuple[UpdateType, ...]] = (
    UpdateType.MESSAGE,
    UpdateType.EDITED_MESSAGE,
    UpdateType.CHANNEL_POST,
    UpdateType.EDITED_CHANNEL_POST,
    UpdateType.INLINE_QUERY,
    UpdateType.CHOSEN_INLINE_RESULT,
    UpdateType.CALLBACK_QUERY,
    UpdateType.SHIPPING_QUERY,
    UpdateType.PRE_CHECKOUT_QUERY,
)


class Update(_WireModel):
    update_id: int
    message: Message | None = None
    edited_message: Message | None = None
    channel_post: Message | None = None
    edited_channel_post: Message | None = None
    inline_query: InlineQuery | None = None
    chosen_inline_result: ChosenInlineResult | None = None
    callback_query: CallbackQuery | None = None
    shipping_query: ShippingQuery | None = None
    pre_checkout_query: PreCheckoutQuery | None = None

    def populated_types(self) -> list[UpdateType]:
        """Return the populated variant fields in priority order."""

        return [t for t in UPDATE_VARIANT_FIELDS if getattr(self, t.value) is not None]

    @property
    def type(self) -> UpdateType:
        from .classify import classify

        return classify(self)

    @property
    def payload(self) -> UpdatePayload | None:
        """The single active variant, or `None` for unknown/ambiguous updates."""

        kind = self.type
        if kind is UpdateType.UNKNOWN:
            return None
        return getattr(self, kind.value)


class RunningState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    STOP_REQUESTED = "stop_requested"


class EngineState(Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    DISPATCHING = "dispatching"
    BACKOFF = "backoff"
    STOPPED = "stopped"
