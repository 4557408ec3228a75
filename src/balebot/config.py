"""Runtime settings.

Loaded from constructor kwargs and `BALEBOT_*` environment variables, e.g.
`BALEBOT_TOKEN`, `BALEBOT_API_BASE_URL`, `BALEBOT_POLL_TIMEOUT_SECONDS`.
"""

from __future__ import annotations

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .api import DEFAULT_API_BASE_URL, BotApi
from .polling import PollingConfiguration
from .retry import FixedDelayRetryPolicy
from .types import UpdateType


class Settings(BaseSettings):
    """Client and polling settings.

    Invariant:
        `api_base_url` never ends with `/`.
        An empty `allowed_updates` means "all update types".
    """

    model_config = SettingsConfigDict(env_prefix="BALEBOT_")

    token: SecretStr
    api_base_url: str = DEFAULT_API_BASE_URL
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    poll_timeout_seconds: int = Field(default=30, ge=0)
    poll_limit: int = Field(default=100, ge=1, le=100)
    allowed_updates: list[UpdateType] = Field(default_factory=list)
    retry_delay_seconds: float = Field(default=1.0, ge=0)

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("api_base_url must not be empty")
        return value

    @field_validator("allowed_updates")
    @classmethod
    def _reject_unknown(cls, value: list[UpdateType]) -> list[UpdateType]:
        if UpdateType.UNKNOWN in value:
            raise ValueError("allowed_updates must not contain 'unknown'")
        return value

    def build_api(self) -> BotApi:
        return BotApi(
            token=self.token.get_secret_value(),
            base_url=self.api_base_url,
            request_timeout_seconds=self.request_timeout_seconds,
        )

    def to_polling_configuration(
        self, *, start_offset: int | None = None
    ) -> PollingConfiguration:
        return PollingConfiguration(
            timeout_seconds=self.poll_timeout_seconds,
            limit=self.poll_limit,
            allowed_updates=tuple(self.allowed_updates) or None,
            retry_policy=FixedDelayRetryPolicy(delay=self.retry_delay_seconds),
            start_offset=start_offset,
        )
