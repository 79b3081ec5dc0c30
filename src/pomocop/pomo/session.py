"""Per-channel session state machine.

A ``Session`` is immutable: every operation returns an updated copy and leaves
the original untouched. The scheduler relies on this to persist a new state
before it replaces the live one, so a failed write never leaves memory ahead
of the store.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any

from pomocop.pomo.clock import (
    first_phase,
    next_phase,
    phase_duration,
    until_long_break,
)
from pomocop.pomo.errors import (
    AlreadyRunningError,
    NotRunningError,
    RecoveryCorruptError,
)
from pomocop.pomo.types import (
    EventKind,
    Lifecycle,
    Phase,
    PhaseConfig,
    PhaseEvent,
    PhaseKind,
    StatusView,
    strict_int,
)

# Serialized durations are floats; allow for rounding when checking deadlines.
_DEADLINE_TOLERANCE = timedelta(milliseconds=1)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True)
class Session:
    """One channel's live timer."""

    channel_id: str
    config: PhaseConfig
    phase: Phase
    phase_started_at: datetime
    deadline: datetime
    subscribers: frozenset[str] = field(default_factory=frozenset)
    lifecycle: Lifecycle = Lifecycle.RUNNING
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    created_at: datetime | None = None

    @classmethod
    def create(
        cls,
        channel_id: str,
        config: PhaseConfig,
        now: datetime,
        *,
        existing: Session | None = None,
    ) -> Session:
        """Start a new session at ``Work(0)``.

        Raises:
            AlreadyRunningError: If ``existing`` is a running session.
        """
        if existing is not None and existing.is_running:
            raise AlreadyRunningError(channel_id)
        now = _ensure_utc(now)
        phase = first_phase()
        return cls(
            channel_id=channel_id,
            config=config,
            phase=phase,
            phase_started_at=now,
            deadline=now + phase_duration(phase, config),
            created_at=now,
        )

    @property
    def is_running(self) -> bool:
        return self.lifecycle == Lifecycle.RUNNING

    @property
    def duration(self) -> timedelta:
        return phase_duration(self.phase, self.config)

    def remaining(self, now: datetime) -> timedelta:
        return max(self.deadline - _ensure_utc(now), timedelta(0))

    def elapsed(self, now: datetime) -> timedelta:
        elapsed = _ensure_utc(now) - self.phase_started_at
        return min(max(elapsed, timedelta(0)), self.duration)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def advance(self, now: datetime) -> tuple[Session, Phase]:
        """Move to the next phase, starting it at ``now``."""
        now = _ensure_utc(now)
        entered = next_phase(self.phase, self.config)
        updated = replace(
            self,
            phase=entered,
            phase_started_at=now,
            deadline=now + phase_duration(entered, self.config),
        )
        return updated, entered

    def force_advance(self, now: datetime) -> tuple[Session, Phase]:
        """Skip the current phase.

        Produces exactly the state natural expiry at ``now`` would, so
        subscribers cannot tell a skip from a timeout.
        """
        return self.advance(now)

    def catch_up(self, now: datetime, *, max_iterations: int) -> tuple[Session, int]:
        """Replay every phase that fully elapsed before ``now``.

        Each replayed phase starts at the previous deadline rather than at
        ``now``, so the result matches what an uninterrupted process would
        have reached.

        Returns:
            The caught-up session and the number of phases replayed.

        Raises:
            RecoveryCorruptError: If more than ``max_iterations`` phases would
                have to be replayed.
        """
        now = _ensure_utc(now)
        session = self
        steps = 0
        while session.deadline <= now:
            if steps >= max_iterations:
                raise RecoveryCorruptError(
                    self.channel_id,
                    f"catch-up exceeded {max_iterations} phases",
                )
            session, _ = session.advance(session.deadline)
            steps += 1
        return session, steps

    def subscribe(self, user_id: str) -> Session:
        """Add a subscriber. Returns ``self`` when already subscribed."""
        self._require_running()
        if user_id in self.subscribers:
            return self
        return replace(self, subscribers=self.subscribers | {user_id})

    def unsubscribe(self, user_id: str) -> Session:
        """Remove a subscriber. Returns ``self`` when not subscribed."""
        self._require_running()
        if user_id not in self.subscribers:
            return self
        return replace(self, subscribers=self.subscribers - {user_id})

    def stop(self) -> Session:
        """Mark the session stopped.

        This only flips the flag; cancelling the wall-clock timer is the
        scheduler's job.
        """
        return replace(self, lifecycle=Lifecycle.STOPPED)

    def _require_running(self) -> None:
        if not self.is_running:
            raise NotRunningError(self.channel_id)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def status(self, now: datetime) -> StatusView:
        now = _ensure_utc(now)
        remaining = self.remaining(now)
        return StatusView(
            channel_id=self.channel_id,
            phase=self.phase,
            duration=self.duration,
            elapsed=self.elapsed(now),
            remaining=remaining,
            started_at=self.phase_started_at,
            deadline=self.deadline,
            next_phase=next_phase(self.phase, self.config),
            long_break_at=self._long_break_at(now, remaining),
            subscribers=self.subscribers,
        )

    def _long_break_at(self, now: datetime, remaining: timedelta) -> datetime:
        # During a long break this points at the next cycle's long break.
        return now + remaining + until_long_break(self.phase, self.config)

    def event(
        self,
        kind: EventKind,
        *,
        previous: Phase | None = None,
        missed_phases: int = 0,
    ) -> PhaseEvent:
        return PhaseEvent(
            kind=kind,
            channel_id=self.channel_id,
            phase=self.phase,
            duration=self.duration,
            started_at=self.phase_started_at,
            deadline=self.deadline,
            previous=previous,
            missed_phases=missed_phases,
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "config": self.config.to_dict(),
            "phase": {"kind": self.phase.kind.value, "index": self.phase.index},
            "phase_started_at": self.phase_started_at.isoformat(),
            "deadline": self.deadline.isoformat(),
            "subscribers": sorted(self.subscribers),
            "lifecycle": self.lifecycle.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        """Rebuild a session from a snapshot.

        Raises:
            RecoveryCorruptError: If the snapshot is incomplete or its
                timestamps disagree with its configuration.
        """
        channel_id = str(data.get("channel_id") or "?")
        try:
            config = PhaseConfig.from_dict(data["config"])
            raw_phase = data["phase"]
            index = strict_int(raw_phase["index"], "phase.index")
            phase = Phase(PhaseKind(raw_phase["kind"]), index)
            started_at = _ensure_utc(datetime.fromisoformat(data["phase_started_at"]))
            deadline = _ensure_utc(datetime.fromisoformat(data["deadline"]))
            subscribers = data.get("subscribers") or []
            if not isinstance(subscribers, list):
                raise ValueError("subscribers must be a list")
            created_raw = data.get("created_at")
            session = cls(
                channel_id=str(data["channel_id"]),
                config=config,
                phase=phase,
                phase_started_at=started_at,
                deadline=deadline,
                subscribers=frozenset(str(s) for s in subscribers),
                lifecycle=Lifecycle(data.get("lifecycle", Lifecycle.RUNNING.value)),
                id=str(data.get("id") or uuid.uuid4().hex[:8]),
                created_at=_ensure_utc(datetime.fromisoformat(created_raw))
                if created_raw
                else None,
            )
            expected = started_at + session.duration
            # Views computed from the deadline must stay representable.
            session.status(deadline)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise RecoveryCorruptError(channel_id, str(e)) from e

        if abs(expected - deadline) > _DEADLINE_TOLERANCE:
            raise RecoveryCorruptError(
                channel_id,
                f"deadline {deadline.isoformat()} does not match phase "
                f"start {started_at.isoformat()} + {session.duration}",
            )
        return session

    @classmethod
    def from_json(cls, payload: str, *, channel_id: str = "?") -> Session:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise RecoveryCorruptError(channel_id, f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise RecoveryCorruptError(channel_id, "snapshot is not an object")
        return cls.from_dict(data)
