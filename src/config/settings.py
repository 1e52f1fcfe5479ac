"""Process-wide settings, built once at start-up and read-only afterwards.

Values come from environment variables with defaults. The resulting
``Settings`` object is passed explicitly to the dispatcher, event store,
state machine and proof bridge at construction time.
"""

from __future__ import annotations

from typing import Mapping

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeliverySettings(BaseSettings):
    """``WEBHOOK_*`` variables."""

    max_attempts: int = Field(5, ge=1)
    base_delay: float = Field(1.0, ge=0)
    max_delay: float = Field(3600.0, ge=0)
    jitter: float = Field(0.2, ge=0, lt=1)
    timeout_seconds: float = Field(10.0, gt=0, validation_alias="WEBHOOK_TIMEOUT")
    batch_size: int = Field(50, ge=1)
    visibility_timeout: float = Field(60.0, gt=0)
    workers: int = Field(8, ge=1)
    poll_interval: float = Field(1.0, ge=0)
    # consecutive terminal failures per endpoint
    deactivate_after: int = Field(3, ge=1)
    non_retryable_codes: frozenset[int] = frozenset({400, 401, 403, 410})

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOK_", env_ignore_empty=True, populate_by_name=True, frozen=True, extra="ignore"
    )

    @model_validator(mode="after")
    def _check_delays(self) -> DeliverySettings:
        if self.max_delay < self.base_delay:
            raise ValueError("delays must satisfy 0 <= base_delay <= max_delay")
        return self


class ChainSettings(BaseSettings):
    """``ARC_*`` variables, plus the proof registry address."""

    chain_id: int = 1243
    rpc_url: str = "https://rpc-testnet.arc.network"
    explorer_url: str = "https://testnet-explorer.arc.network/tx"
    registry_address: str = Field("", validation_alias="PAYMENT_REGISTRY_ADDRESS")

    model_config = SettingsConfigDict(
        env_prefix="ARC_", env_ignore_empty=True, populate_by_name=True, frozen=True, extra="ignore"
    )

    def explorer_link(self, tx_hash: str) -> str:
        return f"{self.explorer_url.rstrip('/')}/{tx_hash}"


class Settings(BaseSettings):
    delivery: DeliverySettings = Field(default_factory=DeliverySettings)
    chain: ChainSettings = Field(default_factory=ChainSettings)
    payment_expiry_minutes: int = Field(30, gt=0)

    model_config = SettingsConfigDict(env_ignore_empty=True, frozen=True, extra="ignore")


def _from_mapping(cls: type[BaseSettings], env: Mapping[str, str], **values) -> BaseSettings:
    prefix = cls.model_config.get("env_prefix", "")
    for name, field in cls.model_fields.items():
        key = field.validation_alias if isinstance(field.validation_alias, str) else f"{prefix}{name}".upper()
        if env.get(key, "") != "":
            values.setdefault(name, env[key])
    # model_validate skips the environment sources, so only ``env`` is read
    return cls.model_validate(values)


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build settings from ``os.environ``, or from ``environ`` alone when given.

    Invalid values raise ``pydantic.ValidationError`` (a ``ValueError``).
    """
    if environ is None:
        return Settings()
    return _from_mapping(
        Settings,
        environ,
        delivery=_from_mapping(DeliverySettings, environ),
        chain=_from_mapping(ChainSettings, environ),
    )
