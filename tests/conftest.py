"""Shared test fixtures and fakes."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from pomocop.db import Database
from pomocop.pomo import (
    PhaseEvent,
    RetryConfig,
    Scheduler,
    Session,
    SqlSessionStore,
    StoreUnavailableError,
)

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


# =============================================================================
# Time
# =============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        self.now += delta if delta is not None else timedelta(**kwargs)
        return self.now


class ManualSleep:
    """Replacement for asyncio.sleep that returns only when released.

    Timer tasks park here; ``release()`` wakes all of them and yields to the
    loop until each woken task has either finished or parked again.
    """

    def __init__(self) -> None:
        self.waiters: list[tuple[float, asyncio.Future[None], asyncio.Task]] = []

    async def __call__(self, delay: float) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        task = asyncio.current_task()
        assert task is not None
        entry = (delay, future, task)
        self.waiters.append(entry)
        try:
            await future
        finally:
            self.waiters.remove(entry)

    @property
    def delays(self) -> list[float]:
        return [delay for delay, future, _ in self.waiters if not future.done()]

    async def release(self) -> None:
        woken = list(self.waiters)
        for _, future, _ in woken:
            if not future.done():
                future.set_result(None)
        tasks = {task for _, _, task in woken}
        for _ in range(200):
            await asyncio.sleep(0)
            parked = {task for _, future, task in self.waiters if not future.done()}
            if all(task.done() or task in parked for task in tasks):
                break
        await self.settle()

    async def settle(self) -> None:
        """Let newly created timer tasks run up to their first sleep."""
        for _ in range(10):
            await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> ManualSleep:
    return ManualSleep()


# =============================================================================
# Notifiers
# =============================================================================


class RecordingNotifier:
    """Notifier that keeps every event it is handed."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, frozenset[str], PhaseEvent]] = []

    async def notify(
        self, channel_id: str, subscribers: frozenset[str], event: PhaseEvent
    ) -> None:
        self.calls.append((channel_id, subscribers, event))

    @property
    def events(self) -> list[PhaseEvent]:
        return [event for _, _, event in self.calls]


class FailingNotifier(RecordingNotifier):
    """Notifier that records the event and then raises."""

    async def notify(
        self, channel_id: str, subscribers: frozenset[str], event: PhaseEvent
    ) -> None:
        await super().notify(channel_id, subscribers, event)
        raise ConnectionError("chat platform unreachable")


class HangingNotifier(RecordingNotifier):
    """Notifier that never returns."""

    async def notify(
        self, channel_id: str, subscribers: frozenset[str], event: PhaseEvent
    ) -> None:
        await super().notify(channel_id, subscribers, event)
        await asyncio.Event().wait()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# =============================================================================
# Stores
# =============================================================================


class MemorySessionStore:
    """In-memory SessionStore with switchable write failures.

    ``fail_next`` fails that many writes and then recovers; ``broken`` fails
    every write until cleared.
    """

    def __init__(self) -> None:
        self.snapshots: dict[str, Session] = {}
        self.fail_next = 0
        self.broken = False
        self.write_attempts = 0

    async def put(self, session: Session) -> None:
        self._check("put", session.channel_id)
        self.snapshots[session.channel_id] = session

    async def delete(self, channel_id: str) -> bool:
        self._check("delete", channel_id)
        return self.snapshots.pop(channel_id, None) is not None

    async def load_all(self) -> list[Session]:
        return list(self.snapshots.values())

    def _check(self, operation: str, channel_id: str) -> None:
        self.write_attempts += 1
        if self.broken:
            raise StoreUnavailableError(operation, channel_id)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise StoreUnavailableError(operation, channel_id)


@pytest.fixture
def store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
async def database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """Create a temporary test database."""
    db = Database(database_path=tmp_path / "test.db")
    await db.connect()
    await db.create_tables()

    yield db

    await db.disconnect()


@pytest.fixture
async def sql_store(database: Database) -> SqlSessionStore:
    return SqlSessionStore(database)


# =============================================================================
# Scheduler
# =============================================================================

FAST_RETRY = RetryConfig(max_retries=3, base_delay_ms=0, max_delay_ms=0)


@pytest.fixture
async def scheduler(
    store: MemorySessionStore,
    notifier: RecordingNotifier,
    clock: FakeClock,
    sleeper: ManualSleep,
) -> AsyncGenerator[Scheduler, None]:
    sched = Scheduler(
        store,
        notifier,
        retry=FAST_RETRY,
        clock=clock,
        sleep=sleeper,
    )

    yield sched

    await sched.close()


# =============================================================================
# Logging / CLI
# =============================================================================


@pytest.fixture
def restore_root_logger():
    """Undo configure_logging() changes made by a test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner with colors disabled."""
    from typer.testing import CliRunner

    return CliRunner(env={"NO_COLOR": "1"})


@pytest.fixture
def config_toml_content(tmp_path: Path) -> str:
    """Valid TOML config content."""
    return f"""
[phases]
work_minutes = 50
short_break_minutes = 10
long_break_minutes = 30
cycle_length = 3

[store]
database_path = "{tmp_path / "pomocop.db"}"

[scheduler]
notify_timeout_seconds = 5

[scheduler.retry]
max_retries = 2
"""


@pytest.fixture
def config_file(tmp_path: Path, config_toml_content: str) -> Path:
    """Create a temporary config file."""
    config_path = tmp_path / "config.toml"
    config_path.write_text(config_toml_content)
    return config_path
