import json
import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    if raw == "*":
        return ["*"]

    # JSON list is the documented format; a bare comma separated list is
    # accepted as well.
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]

    origins: list[str] = []
    for part in re.split(r"[,\s]+", raw):
        if not part:
            continue
        if part == "*":
            return ["*"]
        if part not in origins:
            origins.append(part)
    return origins


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - includes exception messages in 500 responses
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # CORS settings
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    # Simulation defaults (used when a query parameter is absent or unusable)
    sim_default_delay_ms: int = 1500
    sim_default_error_status: int = 500
    sim_default_limit: int = 5
    sim_default_window_ms: int = 60000

    # Minimum hold time for mode=timeout
    sim_timeout_floor_ms: int = 12000
    # Upper bound for any requested delayMs. It is applied before the timeout
    # floor, so it also caps how long mode=timeout holds a request.
    sim_max_delay_ms: int = 120000

    # Rate limit table housekeeping
    rate_limit_max_entries: int | None = 10000  # LRU cap, None = unbounded
    rate_limit_sweep_interval_seconds: int = 60  # 0 disables the sweeper

    @field_validator("sim_default_limit", "sim_default_window_ms")
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("sim_default_delay_ms", "sim_timeout_floor_ms", "sim_max_delay_ms")
    @classmethod
    def validate_delay_non_negative(cls, v: int) -> int:
        """Validate delays are not negative."""
        if v < 0:
            raise ValueError("Delay values must not be negative")
        return v

    @field_validator("sim_default_error_status")
    @classmethod
    def validate_error_status(cls, v: int) -> int:
        if not 400 <= v <= 599:
            raise ValueError("sim_default_error_status must be between 400 and 599")
        return v

    @field_validator("rate_limit_max_entries")
    @classmethod
    def validate_max_entries(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("rate_limit_max_entries must be at least 1")
        return v

    @field_validator("rate_limit_sweep_interval_seconds")
    @classmethod
    def validate_sweep_interval(cls, v: int) -> int:
        if v < 0:
            raise ValueError("rate_limit_sweep_interval_seconds must not be negative")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
