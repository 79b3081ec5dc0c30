"""Pomodoro subsystem: per-channel focus timers.

Public API:
- Scheduler: Owns live sessions, their timers and notifications
- SqlSessionStore / SessionStore: Durable session snapshots
- Notifier / LoggingNotifier: Delivery boundary to the chat platform
- create_runtime / PomoRuntime: Build a scheduler from configuration

Types:
- Session: One channel's state machine
- Phase, PhaseKind, PhaseConfig, Lifecycle
- PhaseEvent, EventKind, StatusView
"""

from pomocop.pomo.clock import (
    first_phase,
    next_phase,
    phase_duration,
    phases_after,
    until_long_break,
)
from pomocop.pomo.errors import (
    AlreadyRunningError,
    NotRunningError,
    PomoError,
    RecoveryCorruptError,
    SchedulerHaltedError,
    StoreUnavailableError,
)
from pomocop.pomo.notifier import LoggingNotifier, Notifier
from pomocop.pomo.retry import RetryConfig, with_retry
from pomocop.pomo.runtime import PomoRuntime, create_runtime
from pomocop.pomo.scheduler import Scheduler
from pomocop.pomo.session import Session
from pomocop.pomo.store import SessionStore, SqlSessionStore
from pomocop.pomo.types import (
    DEFAULT_PHASE_CONFIG,
    EventKind,
    Lifecycle,
    Phase,
    PhaseConfig,
    PhaseEvent,
    PhaseKind,
    StatusView,
)

__all__ = [
    "DEFAULT_PHASE_CONFIG",
    "AlreadyRunningError",
    "EventKind",
    "Lifecycle",
    "LoggingNotifier",
    "NotRunningError",
    "Notifier",
    "Phase",
    "PhaseConfig",
    "PhaseEvent",
    "PhaseKind",
    "PomoError",
    "PomoRuntime",
    "RecoveryCorruptError",
    "RetryConfig",
    "Scheduler",
    "SchedulerHaltedError",
    "Session",
    "SessionStore",
    "SqlSessionStore",
    "StatusView",
    "StoreUnavailableError",
    "create_runtime",
    "first_phase",
    "next_phase",
    "phase_duration",
    "phases_after",
    "until_long_break",
    "with_retry",
]
