"""Configuration models using Pydantic."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from pomocop.config.paths import get_database_path
from pomocop.pomo.retry import RetryConfig
from pomocop.pomo.types import (
    DEFAULT_CYCLE_LENGTH,
    DEFAULT_LONG_BREAK_MINUTES,
    DEFAULT_SHORT_BREAK_MINUTES,
    DEFAULT_WORK_MINUTES,
    PhaseConfig,
)


class PhasesConfig(BaseModel):
    """Default phase lengths, overridable per session at start time."""

    work_minutes: float = Field(default=DEFAULT_WORK_MINUTES, gt=0)
    short_break_minutes: float = Field(default=DEFAULT_SHORT_BREAK_MINUTES, gt=0)
    long_break_minutes: float = Field(default=DEFAULT_LONG_BREAK_MINUTES, gt=0)
    # Work phases between long breaks
    cycle_length: int = Field(default=DEFAULT_CYCLE_LENGTH, ge=1)

    def to_phase_config(self) -> PhaseConfig:
        return PhaseConfig.from_minutes(
            work=self.work_minutes,
            short_break=self.short_break_minutes,
            long_break=self.long_break_minutes,
            cycle_length=self.cycle_length,
        )


class StoreConfig(BaseModel):
    """Configuration for the session store."""

    database_path: Path = Field(default_factory=get_database_path)


class RetrySettings(BaseModel):
    """Backoff for store writes made by timers and recovery."""

    max_retries: int = Field(default=5, ge=0)
    base_delay_ms: int = Field(default=500, ge=0)
    max_delay_ms: int = Field(default=30000, ge=0)

    def to_retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
        )


class SchedulerConfig(BaseModel):
    """Configuration for the session scheduler."""

    notify_timeout_seconds: float = Field(default=10.0, gt=0)
    # Upper bound on phases replayed for one channel during restart recovery
    recovery_max_iterations: int = Field(default=100_000, ge=1)
    retry: RetrySettings = Field(default_factory=RetrySettings)


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
    log_to_file: bool = False
    retention_days: int = Field(default=7, ge=1)


class ConfigError(Exception):
    """Configuration error."""

    pass


class PomocopConfig(BaseModel):
    """Root configuration model."""

    phases: PhasesConfig = Field(default_factory=PhasesConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
