"""Update classification.

`classify()` maps an update envelope to exactly one :class:`UpdateType`. It is
total and never raises: anything it cannot place with certainty (no variant,
several variants, not an envelope at all) is `UpdateType.UNKNOWN`.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeAlias

from .types import (
    UPDATE_VARIANT_FIELDS,
    CallbackQuery,
    ChosenInlineResult,
    InlineQuery,
    Message,
    PreCheckoutQuery,
    ShippingQuery,
    Update,
    UpdateType,
)

UpdatePayload: TypeAlias = (
    Message
    | InlineQuery
    | ChosenInlineResult
    | CallbackQuery
    | ShippingQuery
    | PreCheckoutQuery
)


def populated_types(update: Update | Mapping[str, Any]) -> list[UpdateType]:
    """Return populated variant fields of `update` in priority order.

    Raw mappings count a field as populated when its value is not `None`.
    """

    if isinstance(update, Update):
        return update.populated_types()
    if isinstance(update, Mapping):
        return [t for t in UPDATE_VARIANT_FIELDS if update.get(t.value) is not None]
    return []


def classify(update: Update | Mapping[str, Any]) -> UpdateType:
    """Return the single populated category of `update`, else `UNKNOWN`."""

    found = populated_types(update)
    if len(found) != 1:
        return UpdateType.UNKNOWN
    return found[0]


def primary_type(update: Update | Mapping[str, Any]) -> UpdateType:
    """Tie-break reading: the first populated variant in priority order."""

    found = populated_types(update)
    return found[0] if found else UpdateType.UNKNOWN


def is_ambiguous(update: Update | Mapping[str, Any]) -> bool:
    """True when more than one variant field is populated."""

    return len(populated_types(update)) > 1


def is_undecoded(update: Update) -> bool:
    """True for an update kept only as its `raw` wire object.

    The API client produces these when an item's variant payload does not
    match the models.
    """

    extra = update.model_extra or {}
    return isinstance(extra.get("raw"), dict) and not update.populated_types()
