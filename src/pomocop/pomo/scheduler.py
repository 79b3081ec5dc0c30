"""Scheduler that owns live sessions and drives their wall-clock timers.

Every channel gets its own timer task and its own lock. All writes to a
channel (commands, timer expiry, recovery) run under that channel's lock, so
a ``skip`` can never interleave with a firing timer. Unrelated channels never
wait on each other; ``status`` reads take no lock at all.

Each write follows the same order: compute the new immutable ``Session``,
persist it, swap it into the live map and re-arm the timer, then notify.
A failed write therefore leaves both memory and the timer untouched.

Timers are tagged with the phase start they were armed for plus a
generation counter. A timer that wakes after being superseded sees a
mismatched tag and discards itself.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import partial

from pomocop.pomo.errors import (
    NotRunningError,
    RecoveryCorruptError,
    SchedulerHaltedError,
    StoreUnavailableError,
)
from pomocop.pomo.notifier import Notifier
from pomocop.pomo.retry import RetryConfig, with_retry
from pomocop.pomo.session import Session
from pomocop.pomo.store import SessionStore
from pomocop.pomo.types import (
    DEFAULT_PHASE_CONFIG,
    EventKind,
    PhaseConfig,
    PhaseEvent,
    StatusView,
)

logger = logging.getLogger(__name__)

DEFAULT_NOTIFY_TIMEOUT = 10.0
DEFAULT_RECOVERY_MAX_ITERATIONS = 100_000

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]
FatalHandler = Callable[[BaseException], None]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class _TimerToken:
    """Identifies the one timer allowed to advance the current phase."""

    phase_started_at: datetime
    generation: int


@dataclass
class _LiveSession:
    session: Session
    generation: int = 0
    timer: asyncio.Task[None] | None = None

    def matches(self, token: _TimerToken) -> bool:
        return (
            token.generation == self.generation
            and token.phase_started_at == self.session.phase_started_at
        )


class Scheduler:
    """Runs one pomodoro session per channel.

    Example:
        store = SqlSessionStore(database)
        scheduler = Scheduler(store, notifier)
        await scheduler.recover()

        await scheduler.start("channel-1", owner="user-1")
        view = scheduler.status("channel-1")
    """

    def __init__(
        self,
        store: SessionStore,
        notifier: Notifier,
        *,
        defaults: PhaseConfig = DEFAULT_PHASE_CONFIG,
        retry: RetryConfig | None = None,
        notify_timeout: float = DEFAULT_NOTIFY_TIMEOUT,
        recovery_max_iterations: int = DEFAULT_RECOVERY_MAX_ITERATIONS,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
        fatal_handler: FatalHandler | None = None,
    ):
        self._store = store
        self._notifier = notifier
        self._defaults = defaults
        self._retry = retry or RetryConfig()
        self._notify_timeout = notify_timeout
        self._recovery_max_iterations = recovery_max_iterations
        self._clock = clock
        self._sleep = sleep
        self._fatal_handler = fatal_handler

        self._live: dict[str, _LiveSession] = {}
        # Entries live as long as some coroutine holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._fatal_error: BaseException | None = None
        self._fatal = asyncio.Event()
        self._closed = False

    @property
    def defaults(self) -> PhaseConfig:
        return self._defaults

    @property
    def halted(self) -> bool:
        return self._fatal_error is not None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def fatal_error(self) -> BaseException | None:
        return self._fatal_error

    def channels(self) -> list[str]:
        return sorted(self._live)

    def get(self, channel_id: str) -> Session | None:
        live = self._live.get(channel_id)
        return live.session if live else None

    async def wait_fatal(self) -> BaseException:
        """Block until a fatal store failure halts the scheduler."""
        await self._fatal.wait()
        assert self._fatal_error is not None
        return self._fatal_error

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(
        self,
        channel_id: str,
        config: PhaseConfig | None = None,
        now: datetime | None = None,
        *,
        owner: str | None = None,
    ) -> Session:
        """Start a session at ``Work(0)``.

        Raises:
            AlreadyRunningError: A session is already live in the channel.
            StoreUnavailableError: The new session could not be persisted.
        """
        async with self._lock_for(channel_id):
            self._ensure_active()
            existing = self._live.get(channel_id)
            session = Session.create(
                channel_id,
                config or self._defaults,
                now or self._clock(),
                existing=existing.session if existing else None,
            )
            if owner is not None:
                session = session.subscribe(owner)

            await self._store.put(session)
            live = _LiveSession(session=session)
            self._live[channel_id] = live
            self._arm(live)

            logger.info(
                "session_started",
                extra={
                    "pomo.channel_id": channel_id,
                    "pomo.session_id": session.id,
                    "pomo.deadline": session.deadline.isoformat(),
                },
            )
            await self._notify(session, session.event(EventKind.STARTED))
        return session

    async def stop(self, channel_id: str) -> Session:
        """Stop and forget the channel's session.

        Returns:
            The final, stopped session.

        Raises:
            NotRunningError: No session is live in the channel.
            StoreUnavailableError: The snapshot could not be deleted.
        """
        async with self._lock_for(channel_id):
            self._ensure_active()
            live = self._require(channel_id)

            await self._store.delete(channel_id)
            self._cancel_timer(live)
            del self._live[channel_id]
            stopped = live.session.stop()

            logger.info(
                "session_stopped",
                extra={
                    "pomo.channel_id": channel_id,
                    "pomo.session_id": stopped.id,
                    "pomo.phase": str(stopped.phase),
                },
            )
            await self._notify(stopped, stopped.event(EventKind.STOPPED))
        return stopped

    async def skip(self, channel_id: str, now: datetime | None = None) -> Session:
        """Advance to the next phase immediately.

        Raises:
            NotRunningError: No session is live in the channel.
            StoreUnavailableError: The advanced session could not be persisted.
        """
        async with self._lock_for(channel_id):
            self._ensure_active()
            live = self._require(channel_id)
            previous = live.session.phase
            updated, _ = live.session.force_advance(now or self._clock())

            await self._store.put(updated)
            self._commit(live, updated)

            logger.info(
                "phase_skipped",
                extra={
                    "pomo.channel_id": channel_id,
                    "pomo.previous_phase": str(previous),
                    "pomo.phase": str(updated.phase),
                },
            )
            await self._notify(
                updated, updated.event(EventKind.PHASE_CHANGED, previous=previous)
            )
        return updated

    def status(self, channel_id: str, now: datetime | None = None) -> StatusView:
        """Current phase and remaining time. Read-only.

        Raises:
            NotRunningError: No session is live in the channel.
        """
        live = self._require(channel_id)
        return live.session.status(now or self._clock())

    async def join(self, channel_id: str, user_id: str) -> bool:
        """Subscribe a user. Returns False if they were already subscribed."""
        async with self._lock_for(channel_id):
            self._ensure_active()
            live = self._require(channel_id)
            updated = live.session.subscribe(user_id)
            if updated is live.session:
                return False
            await self._store.put(updated)
            live.session = updated
        logger.info(
            "subscriber_joined",
            extra={"pomo.channel_id": channel_id, "pomo.user_id": user_id},
        )
        return True

    async def leave(self, channel_id: str, user_id: str) -> bool:
        """Unsubscribe a user. Returns False if they were not subscribed."""
        async with self._lock_for(channel_id):
            self._ensure_active()
            live = self._require(channel_id)
            updated = live.session.unsubscribe(user_id)
            if updated is live.session:
                return False
            await self._store.put(updated)
            live.session = updated
        logger.info(
            "subscriber_left",
            extra={"pomo.channel_id": channel_id, "pomo.user_id": user_id},
        )
        return True

    async def clear(self, channel_id: str) -> bool:
        """Drop a channel's session without announcing it.

        Returns:
            True if there was a live session or a stored snapshot.
        """
        async with self._lock_for(channel_id):
            self._ensure_active()
            deleted = await self._store.delete(channel_id)
            live = self._live.pop(channel_id, None)
            if live is not None:
                self._cancel_timer(live)
        if deleted or live is not None:
            logger.info("session_cleared", extra={"pomo.channel_id": channel_id})
            return True
        return False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def recover(self, now: datetime | None = None) -> list[Session]:
        """Rebuild live sessions from the store after a restart.

        Sessions whose phase ended while the process was down are replayed
        forward from their old deadline. Only the final state is persisted
        and only one ``RESUMED`` event is sent per channel, no matter how
        many phases were missed.

        Returns:
            The sessions now live.
        """
        self._ensure_active()
        now = now or self._clock()
        snapshots = await with_retry(self._store.load_all, self._retry, "recovery_load")

        recovered: list[Session] = []
        for snapshot in snapshots:
            channel_id = snapshot.channel_id
            async with self._lock_for(channel_id):
                if channel_id in self._live:
                    logger.warning(
                        "recovery_channel_already_live",
                        extra={"pomo.channel_id": channel_id},
                    )
                    continue
                if not snapshot.is_running:
                    await self._persist(
                        partial(self._store.delete, channel_id), "recovery_delete"
                    )
                    continue

                try:
                    session, missed = snapshot.catch_up(
                        now, max_iterations=self._recovery_max_iterations
                    )
                except RecoveryCorruptError as e:
                    logger.warning(
                        "session_snapshot_corrupt",
                        extra={
                            "pomo.channel_id": channel_id,
                            "error.message": e.reason,
                        },
                    )
                    await self._persist(
                        partial(self._store.delete, channel_id), "recovery_delete"
                    )
                    continue

                if missed:
                    await self._persist(
                        partial(self._store.put, session), "recovery_put"
                    )
                live = _LiveSession(session=session)
                self._live[channel_id] = live
                self._arm(live)

                logger.info(
                    "session_recovered",
                    extra={
                        "pomo.channel_id": channel_id,
                        "pomo.phase": str(session.phase),
                        "pomo.missed_phases": missed,
                        "pomo.deadline": session.deadline.isoformat(),
                    },
                )
                if missed:
                    await self._notify(
                        session,
                        session.event(
                            EventKind.RESUMED,
                            previous=snapshot.phase,
                            missed_phases=missed,
                        ),
                    )
                recovered.append(session)
        return recovered

    async def close(self) -> None:
        """Cancel every pending timer and refuse further commands.

        Persisted sessions are kept for the next process to recover.
        """
        self._closed = True
        timers = []
        for live in self._live.values():
            if live.timer is not None:
                timers.append(live.timer)
            self._cancel_timer(live)
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        self._live.clear()

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _arm(self, live: _LiveSession) -> None:
        if self._closed:
            # A command that was persisting when close() ran
            logger.debug(
                "timer_not_armed_closed",
                extra={"pomo.channel_id": live.session.channel_id},
            )
            return
        live.generation += 1
        session = live.session
        token = _TimerToken(session.phase_started_at, live.generation)
        live.timer = asyncio.create_task(
            self._run_timer(session.channel_id, token, session.deadline),
            name=f"pomo-timer:{session.channel_id}",
        )
        logger.debug(
            "timer_armed",
            extra={
                "pomo.channel_id": session.channel_id,
                "pomo.phase": str(session.phase),
                "pomo.deadline": session.deadline.isoformat(),
                "pomo.generation": live.generation,
            },
        )

    def _cancel_timer(self, live: _LiveSession) -> None:
        timer, live.timer = live.timer, None
        if timer is None or timer.done() or timer is asyncio.current_task():
            return
        timer.cancel()

    def _commit(self, live: _LiveSession, session: Session) -> None:
        """Swap in an advanced session and re-arm for its deadline."""
        self._cancel_timer(live)
        live.session = session
        self._arm(live)

    async def _run_timer(
        self, channel_id: str, token: _TimerToken, deadline: datetime
    ) -> None:
        try:
            while (remaining := (deadline - self._clock()).total_seconds()) > 0:
                await self._sleep(remaining)
            await self._on_timer_fired(channel_id, token)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("timer_failed", extra={"pomo.channel_id": channel_id})

    async def _on_timer_fired(self, channel_id: str, token: _TimerToken) -> None:
        async with self._lock_for(channel_id):
            live = self._live.get(channel_id)
            if (
                live is None
                or not live.matches(token)
                or self.halted
                or self._closed
            ):
                logger.debug(
                    "stale_timer_discarded",
                    extra={
                        "pomo.channel_id": channel_id,
                        "pomo.generation": token.generation,
                    },
                )
                return

            live.timer = None
            previous = live.session.phase
            updated, _ = live.session.advance(self._clock())
            try:
                await self._persist(partial(self._store.put, updated), "timer_advance")
            except StoreUnavailableError:
                return
            self._commit(live, updated)

            logger.info(
                "phase_expired",
                extra={
                    "pomo.channel_id": channel_id,
                    "pomo.previous_phase": str(previous),
                    "pomo.phase": str(updated.phase),
                },
            )
            await self._notify(
                updated, updated.event(EventKind.PHASE_CHANGED, previous=previous)
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _lock_for(self, channel_id: str) -> asyncio.Lock:
        lock = self._locks.get(channel_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[channel_id] = lock
        return lock

    def _require(self, channel_id: str) -> _LiveSession:
        live = self._live.get(channel_id)
        if live is None or not live.session.is_running:
            raise NotRunningError(channel_id)
        return live

    def _ensure_active(self) -> None:
        if self._closed:
            raise SchedulerHaltedError("scheduler is closed")
        if self._fatal_error is not None:
            raise SchedulerHaltedError(
                f"scheduler halted after store failure: {self._fatal_error}"
            )

    async def _persist(
        self, write: Callable[[], Awaitable[object]], operation: str
    ) -> None:
        """Write with backoff; escalate if the store never comes back."""
        try:
            await with_retry(write, self._retry, operation)
        except StoreUnavailableError as e:
            self._escalate(e)
            raise

    def _escalate(self, error: BaseException) -> None:
        if self._fatal_error is not None:
            return
        self._fatal_error = error
        logger.critical(
            "store_failure_fatal",
            extra={
                "error.type": type(error).__name__,
                "error.message": str(error),
                "pomo.live_sessions": len(self._live),
            },
        )
        for live in self._live.values():
            self._cancel_timer(live)
        self._fatal.set()
        if self._fatal_handler is not None:
            self._fatal_handler(error)

    async def _notify(self, session: Session, event: PhaseEvent) -> None:
        try:
            await asyncio.wait_for(
                self._notifier.notify(session.channel_id, session.subscribers, event),
                timeout=self._notify_timeout,
            )
        except TimeoutError:
            logger.warning(
                "notify_timeout",
                extra={
                    "pomo.channel_id": session.channel_id,
                    "pomo.event": event.kind.value,
                    "timeout_s": self._notify_timeout,
                },
            )
        except Exception as e:
            logger.warning(
                "notify_failed",
                extra={
                    "pomo.channel_id": session.channel_id,
                    "pomo.event": event.kind.value,
                    "error.type": type(e).__name__,
                    "error.message": str(e),
                },
            )
