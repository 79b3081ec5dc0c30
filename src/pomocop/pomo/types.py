"""Pomodoro session types.

Public types:
- PhaseKind / Phase: one timed segment of a session
- PhaseConfig: phase durations and long-break cadence for a session
- Lifecycle: running/stopped flag for a session
- EventKind / PhaseEvent: what the scheduler hands to notifiers
- StatusView: read-only snapshot returned by status queries
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

DEFAULT_WORK_MINUTES = 25
DEFAULT_SHORT_BREAK_MINUTES = 5
DEFAULT_LONG_BREAK_MINUTES = 15
DEFAULT_CYCLE_LENGTH = 4


def strict_int(value: Any, name: str) -> int:
    """Return ``value`` if it is a real integer, else raise ``ValueError``.

    Snapshots store counters as JSON integers; floats or booleans there mean
    the record was edited or damaged and must not be truncated.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return value


class PhaseKind(StrEnum):
    """The three kinds of phase a session moves through."""

    WORK = "work"
    SHORT_BREAK = "short_break"
    LONG_BREAK = "long_break"


_KIND_LABELS = {
    PhaseKind.WORK: "work session",
    PhaseKind.SHORT_BREAK: "short break",
    PhaseKind.LONG_BREAK: "long break",
}


@dataclass(frozen=True)
class Phase:
    """A phase of a session.

    ``index`` counts completed work phases since the session started. A work
    phase carries its own index; a break carries the index of the work phase
    it follows, so the next work phase is ``index + 1``.
    """

    kind: PhaseKind
    index: int = 0

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError(f"phase index must be >= 0, got {self.index}")

    @classmethod
    def work(cls, index: int = 0) -> Phase:
        return cls(PhaseKind.WORK, index)

    @classmethod
    def short_break(cls, index: int = 0) -> Phase:
        return cls(PhaseKind.SHORT_BREAK, index)

    @classmethod
    def long_break(cls, index: int = 0) -> Phase:
        return cls(PhaseKind.LONG_BREAK, index)

    @property
    def is_work(self) -> bool:
        return self.kind == PhaseKind.WORK

    @property
    def is_break(self) -> bool:
        return self.kind != PhaseKind.WORK

    def describe(self, config: PhaseConfig) -> str:
        """Short human label, e.g. ``"25 minute work session"``."""
        from pomocop.pomo.clock import phase_duration

        minutes = phase_duration(self, config).total_seconds() / 60
        amount = f"{minutes:g}"
        return f"{amount} minute {_KIND_LABELS[self.kind]}"

    def __str__(self) -> str:
        if self.is_work:
            return f"work({self.index})"
        return self.kind.value


@dataclass(frozen=True)
class PhaseConfig:
    """Durations for each phase kind and the number of work phases per cycle.

    Instances are validated on construction, so a ``PhaseConfig`` that exists
    is always usable by the phase clock.
    """

    work: timedelta = timedelta(minutes=DEFAULT_WORK_MINUTES)
    short_break: timedelta = timedelta(minutes=DEFAULT_SHORT_BREAK_MINUTES)
    long_break: timedelta = timedelta(minutes=DEFAULT_LONG_BREAK_MINUTES)
    cycle_length: int = DEFAULT_CYCLE_LENGTH

    def __post_init__(self) -> None:
        for name in ("work", "short_break", "long_break"):
            value = getattr(self, name)
            if not isinstance(value, timedelta):
                raise ValueError(f"{name} must be a timedelta")
            if value <= timedelta(0):
                raise ValueError(f"{name} duration must be positive")
        if self.cycle_length < 1:
            raise ValueError("cycle_length must be at least 1")

    @classmethod
    def from_minutes(
        cls,
        work: float = DEFAULT_WORK_MINUTES,
        short_break: float = DEFAULT_SHORT_BREAK_MINUTES,
        long_break: float = DEFAULT_LONG_BREAK_MINUTES,
        cycle_length: int = DEFAULT_CYCLE_LENGTH,
    ) -> PhaseConfig:
        return cls(
            work=timedelta(minutes=work),
            short_break=timedelta(minutes=short_break),
            long_break=timedelta(minutes=long_break),
            cycle_length=cycle_length,
        )

    def with_overrides(
        self,
        *,
        work: timedelta | None = None,
        short_break: timedelta | None = None,
        long_break: timedelta | None = None,
        cycle_length: int | None = None,
    ) -> PhaseConfig:
        """Return a copy with any provided values replacing the defaults."""
        return PhaseConfig(
            work=self.work if work is None else work,
            short_break=self.short_break if short_break is None else short_break,
            long_break=self.long_break if long_break is None else long_break,
            cycle_length=self.cycle_length if cycle_length is None else cycle_length,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "work_seconds": self.work.total_seconds(),
            "short_break_seconds": self.short_break.total_seconds(),
            "long_break_seconds": self.long_break.total_seconds(),
            "cycle_length": self.cycle_length,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PhaseConfig:
        return cls(
            work=timedelta(seconds=float(data["work_seconds"])),
            short_break=timedelta(seconds=float(data["short_break_seconds"])),
            long_break=timedelta(seconds=float(data["long_break_seconds"])),
            cycle_length=strict_int(data["cycle_length"], "cycle_length"),
        )


DEFAULT_PHASE_CONFIG = PhaseConfig()


class Lifecycle(StrEnum):
    RUNNING = "running"
    STOPPED = "stopped"


class EventKind(StrEnum):
    """Why a notification is being sent.

    ``PHASE_CHANGED`` covers both natural expiry and a manual skip; the two
    are deliberately indistinguishable to subscribers.
    """

    STARTED = "started"
    PHASE_CHANGED = "phase_changed"
    RESUMED = "resumed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class PhaseEvent:
    """A session transition delivered to notifiers."""

    kind: EventKind
    channel_id: str
    phase: Phase
    duration: timedelta
    started_at: datetime
    deadline: datetime
    previous: Phase | None = None
    # Phases elapsed while the process was down (RESUMED only)
    missed_phases: int = 0


@dataclass(frozen=True)
class StatusView:
    """Read-only view of a running session at a point in time."""

    channel_id: str
    phase: Phase
    duration: timedelta
    elapsed: timedelta
    remaining: timedelta
    started_at: datetime
    deadline: datetime
    next_phase: Phase
    long_break_at: datetime
    subscribers: frozenset[str] = field(default_factory=frozenset)
