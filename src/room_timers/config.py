"""Service configuration read from the environment."""

import os

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "ROOM_TIMERS_"


class Settings(BaseModel):
    database_url: str = Field("sqlite:///room_timers.db", min_length=1)
    tick_period: float = Field(0.1, gt=0, le=60, description="Seconds between ticks")
    tick_increment: float = Field(0.1, gt=0, description="Count added per tick")
    store_timeout: float = Field(5.0, gt=0, le=300, description="Upper bound on one store call")
    host: str = "127.0.0.1"
    port: int = Field(3001, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level {v!r}")
        return level

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """Build settings from ``ROOM_TIMERS_*`` variables, falling back to defaults."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            key = ENV_PREFIX + name.upper()
            if key in environ:
                values[name] = environ[key]
        return cls(**values)
