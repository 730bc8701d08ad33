"""Configuration settings for systemosc.

Values come from the environment and an optional ``.env`` file in the working
directory, e.g. ``OSC_HOST=192.168.1.20`` or ``HTTP_ENABLED=true``.
"""

from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from systemosc.errors import ConfigurationError
from systemosc.models import SinkKind

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """Runtime configuration, validated by pydantic."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OSC over UDP
    osc_enabled: bool = Field(default=True, description="Send snapshots over OSC/UDP")
    osc_host: str = Field(default="localhost", min_length=1, description="OSC target host")
    osc_port: int = Field(default=9877, ge=1, le=65535, description="OSC target port")

    # HTTP pull endpoint
    http_enabled: bool = Field(default=False, description="Serve snapshots over HTTP")
    http_host: str = Field(default="0.0.0.0", description="HTTP bind address")
    http_port: int = Field(default=3000, ge=1, le=65535, description="HTTP port")

    # Scheduling
    interval_ms: int = Field(default=10000, description="Cycle interval in milliseconds")
    sink_timeout_seconds: float = Field(default=5.0, gt=0, description="Per-sink send timeout")

    # Logging
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR, CRITICAL")
    log_file: Path | None = Field(default=None, description="Rotating JSON log file")

    @field_validator("interval_ms")
    @classmethod
    def clamp_interval(cls, v: int) -> int:
        """Enforce a minimum interval of 1 ms."""
        return max(1, v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}. Must be one of {sorted(_VALID_LOG_LEVELS)}")
        return level

    def enabled_sinks(self) -> list[SinkKind]:
        kinds = []
        if self.osc_enabled:
            kinds.append(SinkKind.OSC)
        if self.http_enabled:
            kinds.append(SinkKind.HTTP)
        return kinds

    def uses_default_osc_target(self) -> bool:
        """True when neither OSC_HOST nor OSC_PORT was set explicitly."""
        return not ({"osc_host", "osc_port"} & self.model_fields_set)


def load_settings(**overrides) -> Settings:
    """
    Load and validate settings.

    Raises:
        ConfigurationError: Any value is invalid.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']).upper()}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from exc
