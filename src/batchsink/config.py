"""
Sink configuration models.

Settings are validated once when a sink is built and never re-checked at runtime.
"""

from __future__ import annotations

import os
import typing as t

import structlog
from dotenv import load_dotenv
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveInt,
    ValidationError,
    field_validator,
)

from batchsink.exceptions import ConfigurationError

log = structlog.get_logger(__name__)

ENV_PREFIX = "BATCHSINK_"


class BufferConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    size_threshold: PositiveInt = Field(
        default=10, description="flush as soon as this many messages are queued"
    )
    timeout_ms: NonNegativeInt = Field(
        default=5000,
        description="flush this many milliseconds after the first message of a batch was queued",
    )
    max_retries: NonNegativeInt = Field(
        default=2, description="additional attempts after a failed bulk put"
    )
    retry_backoff_ms: NonNegativeInt = Field(
        default=0,
        description="optional, base delay doubled after each failed attempt. 0 retries immediately",
    )


class TransportConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    endpoint: str | None = Field(
        default=None, description="base URL of the bulk ingestion endpoint"
    )
    timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP request timeout")
    headers: dict[str, str] = Field(
        default_factory=dict, description="optional, extra headers sent with every request"
    )


class SinkConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    stream_name: str = Field(description="name of the destination stream")
    object_mode: bool = Field(
        default=False,
        description="accept already-structured messages instead of JSON encoded raw input",
    )
    partition_key: str | t.Callable[..., str] | None = Field(
        default=None,
        description="optional, fixed key or key function. A random key per message when unset",
    )
    buffer: BufferConfig = Field(default_factory=BufferConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)

    @field_validator("stream_name")
    @classmethod
    def stream_name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("stream_name cannot be blank")
        return value

    @classmethod
    def load(
        cls,
        data: SinkConfig | t.Mapping[str, t.Any] | None = None,
        **overrides: t.Any,
    ) -> SinkConfig:
        """
        Build a validated configuration.

        Parameters
        ----------
        data : SinkConfig | typing.Mapping[str, typing.Any] | None
            Base configuration.
        **overrides : typing.Any
            Top-level fields replacing those of ``data``.

        Returns
        -------
        SinkConfig
            Validated configuration.

        Raises
        ------
        ConfigurationError
            When a required field is missing or a value is invalid. The error
            names the offending field.
        """
        if isinstance(data, SinkConfig):
            merged: dict[str, t.Any] = {**data.model_dump(), **overrides}
        else:
            merged = {**(data or {}), **overrides}
        try:
            return cls.model_validate(merged)
        except ValidationError as error:
            first = error.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or "config"
            if first["type"] == "missing":
                message = "is required"
            else:
                message = first["msg"]
            log.error(event="Invalid sink configuration", field=field, reason=message)
            raise ConfigurationError(field=field, message=message) from error

    @classmethod
    def from_env(cls, **overrides: t.Any) -> SinkConfig:
        """
        Build a configuration from ``BATCHSINK_*`` environment variables.

        A ``.env`` file is loaded first when present. Keyword overrides win
        over the environment.
        """
        load_dotenv()
        buffer = {
            "size_threshold": os.getenv(f"{ENV_PREFIX}SIZE_THRESHOLD"),
            "timeout_ms": os.getenv(f"{ENV_PREFIX}TIMEOUT_MS"),
            "max_retries": os.getenv(f"{ENV_PREFIX}MAX_RETRIES"),
            "retry_backoff_ms": os.getenv(f"{ENV_PREFIX}RETRY_BACKOFF_MS"),
        }
        transport = {"endpoint": os.getenv(f"{ENV_PREFIX}ENDPOINT")}
        data: dict[str, t.Any] = {
            "stream_name": os.getenv(f"{ENV_PREFIX}STREAM_NAME"),
            "object_mode": os.getenv(f"{ENV_PREFIX}OBJECT_MODE"),
            "partition_key": os.getenv(f"{ENV_PREFIX}PARTITION_KEY"),
            "buffer": {k: v for k, v in buffer.items() if v is not None},
            "transport": {k: v for k, v in transport.items() if v is not None},
        }
        data = {k: v for k, v in data.items() if v is not None}
        return cls.load(data, **overrides)
