# backend/mathbridge/core/config.py
"""
Runtime configuration for the MathBridge scheduling core.

Values come from the process environment (and an optional ``.env`` file next to
the backend) and are exposed through the module-level ``settings`` singleton.
"""

import logging
import os
from pathlib import Path
from typing import Annotated, Literal, Tuple

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_BACKEND_ROOT = Path(__file__).resolve().parents[2]

load_dotenv(_BACKEND_ROOT / ".env", override=False)

logger = logging.getLogger(__name__)


def is_running_tests() -> bool:
    """PYTEST_CURRENT_TEST is set by pytest for the duration of each test."""
    return os.getenv("PYTEST_CURRENT_TEST") is not None


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development", description="Deployment environment name"
    )

    # Database
    database_url: str = Field(
        default="sqlite+pysqlite:///./mathbridge.db",
        description="SQLAlchemy URL for the scheduling store",
    )
    db_pool_size: int = Field(default=5, ge=1)
    db_max_overflow: int = Field(default=5, ge=0)
    db_pool_timeout_s: float = Field(
        default=5.0, gt=0, description="Seconds to wait for a pooled connection"
    )
    db_statement_timeout_ms: int = Field(
        default=15000, gt=0, description="PostgreSQL statement_timeout applied per connection"
    )

    # Redis / scheduling mutex
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_socket_timeout_s: float = Field(default=1.0, gt=0)
    redis_retry_interval_s: float = Field(
        default=10.0, ge=0, description="Seconds to skip Redis after a failed connect"
    )
    lock_namespace: str = Field(default="mathbridge")
    scheduling_lock_enabled: bool = Field(
        default=True, description="Guard contract, child and tutor mutations with a Redis mutex"
    )
    scheduling_lock_ttl_s: int = Field(default=30, ge=1)

    # Scheduling policy
    session_duration_minutes: int = Field(
        default=90, gt=0, description="Fixed length of every lesson session"
    )
    reschedule_start_times: Annotated[Tuple[str, ...], NoDecode] = Field(
        default=("16:00",),
        description=(
            "Start times (HH:MM) a reschedule request may target. The product has also "
            "offered 16:00,17:30,19:00,20:30"
        ),
    )

    slow_operation_threshold_s: float = Field(default=1.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="MATHBRIDGE_",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("reschedule_start_times", mode="before")
    @classmethod
    def _split_start_times(cls, value):
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("reschedule_start_times")
    @classmethod
    def _check_start_times(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        if not value:
            raise ValueError("at least one reschedule start time is required")
        for item in value:
            hours, sep, minutes = item.partition(":")
            if not sep or not (hours.isdigit() and minutes.isdigit()):
                raise ValueError(f"invalid start time {item!r}, expected HH:MM")
            if int(hours) > 23 or int(minutes) > 59:
                raise ValueError(f"invalid start time {item!r}, expected HH:MM")
        return value

    @property
    def is_postgres(self) -> bool:
        return self.database_url.startswith("postgresql")


settings = Settings()
