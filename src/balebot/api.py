"""Bot API client.

Each public coroutine performs exactly one remote call. The HTTP layer is
stdlib `urllib` (blocking), run in a worker thread through
`anyio.to_thread` so the polling loop stays async-friendly. Worker calls are
not abandoned on cancellation: an in-flight request always finishes or times
out on its own.

Error mapping:
- URL/socket errors and timeouts -> :class:`TransportError`
- `{"ok": false, ...}` bodies, including those carried by HTTP 4xx/5xx
  responses -> :class:`ServiceError`; an error response whose body is not
  such an object keeps its HTTP status as `error_code`
- bodies that are not a JSON object with the expected `result`
  -> :class:`ProtocolError`

Never log or print request URLs; they embed the bot token.
"""

from __future__ import annotations

import http.client
import json
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from functools import partial
from logging import getLogger
from typing import Any, Final, TypeAlias

import anyio.to_thread as to_thread
from pydantic import ValidationError

from .errors import ProtocolError, ServiceError, TransportError
from .types import Update, UpdateType, User

logger = getLogger(__name__)

DEFAULT_API_BASE_URL: Final[str] = "https://tapi.bale.ai"
# Client-side socket timeout must exceed the server-side long-poll timeout.
_LONG_POLL_MARGIN_SECONDS: Final[int] = 15

_ApiObserver: TypeAlias = Callable[[str, dict[str, Any]], None]


def _encode_param(value: Any) -> Any:
    # Bot API form fields take JSON for structured and boolean values.
    if isinstance(value, (bool, list, dict)):
        return json.dumps(value, separators=(",", ":"))
    return value


@dataclass(slots=True)
class BotApi:
    """Minimal Bot API client.

    `on_request(method, params)` runs before every call and
    `on_response(method, payload)` after every decoded response, including
    `ok=false` ones. Observer failures are logged, never raised.
    """

    token: str
    base_url: str = DEFAULT_API_BASE_URL
    request_timeout_seconds: float = 10.0
    on_request: _ApiObserver | None = None
    on_response: _ApiObserver | None = None

    def __post_init__(self) -> None:
        if not self.token.strip():
            raise ValueError("token must not be empty")
        self.base_url = self.base_url.rstrip("/")

    @property
    def bot_id(self) -> int | None:
        """The numeric bot id encoded in the token prefix, if any."""

        head, sep, _ = self.token.partition(":")
        if not sep:
            return None
        try:
            return int(head)
        except ValueError:
            return None

    def _method_url(self, method: str) -> str:
        return f"{self.base_url}/bot{self.token}/{method}"

    def _notify(self, hook: _ApiObserver | None, *args: Any) -> None:
        if hook is None:
            return
        try:
            hook(*args)
        except Exception:
            logger.exception("api observer %r failed", hook)

    def _call_sync(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> Any:
        params = {k: v for k, v in (params or {}).items() if v is not None}
        self._notify(self.on_request, method, dict(params))

        encoded = {k: _encode_param(v) for k, v in params.items()}
        data = urllib.parse.urlencode(encoded).encode("utf-8")
        request = urllib.request.Request(
            self._method_url(method), data=data, method="POST"
        )
        request.add_header("Content-Type", "application/x-www-form-urlencoded")

        timeout = (
            self.request_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        http_status: int | None = None
        try:
            with urllib.request.urlopen(request, timeout=timeout) as resp:  # noqa: S310
                raw = resp.read()
        except urllib.error.HTTPError as e:
            # Non-2xx responses usually carry the `ok=false` JSON body; when they
            # do not, the HTTP status stands in for `error_code`.
            http_status = e.code
            try:
                raw = e.read()
            except (OSError, http.client.HTTPException):
                raw = b""
            finally:
                e.close()
            if not raw:
                raise self._http_status_error(method, e.code) from e
        except (urllib.error.URLError, OSError, http.client.HTTPException) as e:
            reason = getattr(e, "reason", None) or type(e).__name__
            raise TransportError(
                f"{method} failed: network error ({reason})", method=method
            ) from e

        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            if http_status is not None:
                raise self._http_status_error(method, http_status) from e
            raise ProtocolError(f"{method} failed: invalid JSON", method=method) from e

        if not isinstance(payload, dict):
            if http_status is not None:
                raise self._http_status_error(method, http_status)
            raise ProtocolError(f"{method} failed: expected JSON object", method=method)
        self._notify(self.on_response, method, payload)

        if payload.get("ok") is not True:
            raise ServiceError.from_payload(method, payload, http_status=http_status)
        if "result" not in payload:
            raise ProtocolError(f"{method} failed: missing result", method=method)
        return payload["result"]

    @staticmethod
    def _http_status_error(method: str, status: int) -> ServiceError:
        return ServiceError(
            f"{method} failed: HTTP {status}", method=method, error_code=status
        )

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> Any:
        """Invoke any Bot API `method` and return its raw `result`."""

        return await to_thread.run_sync(
            partial(self._call_sync, method, params, timeout_seconds=timeout_seconds)
        )

    def _get_updates_sync(
        self,
        *,
        offset: int,
        limit: int,
        timeout_seconds: int,
        allowed_updates: Iterable[UpdateType] | None,
    ) -> list[Update]:
        params: dict[str, Any] = {
            "offset": offset,
            "limit": limit,
            "timeout": timeout_seconds,
        }
        if allowed_updates is not None:
            params["allowed_updates"] = [
                UpdateType(t).value
                for t in allowed_updates
                if UpdateType(t) is not UpdateType.UNKNOWN
            ]

        result = self._call_sync(
            "getUpdates",
            params,
            timeout_seconds=max(
                self.request_timeout_seconds,
                timeout_seconds + _LONG_POLL_MARGIN_SECONDS,
            ),
        )
        if not isinstance(result, list):
            raise ProtocolError(
                "getUpdates failed: missing result list", method="getUpdates"
            )

        updates: list[Update] = []
        for item in result:
            if not isinstance(item, dict):
                logger.warning("getUpdates: skipping non-object item")
                continue
            update_id = item.get("update_id")
            if not isinstance(update_id, int) or isinstance(update_id, bool):
                logger.warning("getUpdates: skipping item without integer update_id")
                continue
            updates.append(_decode_update(item))
        return updates

    async def get_updates(
        self,
        *,
        offset: int,
        limit: int = 100,
        timeout_seconds: int = 0,
        allowed_updates: Iterable[UpdateType] | None = None,
    ) -> list[Update]:
        """Long-poll `getUpdates`."""

        return await to_thread.run_sync(
            partial(
                self._get_updates_sync,
                offset=offset,
                limit=limit,
                timeout_seconds=timeout_seconds,
                allowed_updates=allowed_updates,
            )
        )

    async def get_me(self) -> User:
        result = await self.call("getMe")
        try:
            return User.model_validate(result)
        except ValidationError as e:
            raise ProtocolError(
                "getMe failed: invalid user object", method="getMe"
            ) from e

    async def test_api(self) -> bool:
        """Return whether the token is accepted by the service."""

        try:
            await self.get_me()
        except ServiceError as e:
            if e.error_code in (401, 404):
                return False
            raise
        return True

    async def send_message(
        self,
        *,
        chat_id: int | str,
        text: str,
        parse_mode: str | None = None,
        reply_to_message_id: int | None = None,
        disable_notification: bool | None = None,
    ) -> dict[str, Any]:
        result = await self.call(
            "sendMessage",
            {
                "chat_id": chat_id,
                "text": text,
                "parse_mode": parse_mode,
                "reply_to_message_id": reply_to_message_id,
                "disable_notification": disable_notification,
            },
        )
        if not isinstance(result, dict):
            raise ProtocolError(
                "sendMessage failed: missing result object", method="sendMessage"
            )
        return result

    async def delete_webhook(self) -> bool:
        """Remove any webhook so `getUpdates` polling can be used."""

        return bool(await self.call("deleteWebhook"))

    async def get_webhook_info(self) -> dict[str, Any]:
        result = await self.call("getWebhookInfo")
        if not isinstance(result, dict):
            raise ProtocolError(
                "getWebhookInfo failed: missing result object", method="getWebhookInfo"
            )
        return result


def _decode_update(item: dict[str, Any]) -> Update:
    """Decode one update object.

    An item whose variant payload does not match the models is still
    delivered, as an update with no typed variant; the raw object is kept
    under the `raw` extra field so handlers can inspect it.
    """

    try:
        return Update.model_validate(item)
    except ValidationError as e:
        logger.warning(
            "getUpdates: update_id=%s does not match the update schema (%d errors)",
            item["update_id"],
            e.error_count(),
        )
        return Update.model_validate({"update_id": item["update_id"], "raw": item})

