"""Wire a scheduler to its database from configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from pomocop.db import Database
from pomocop.pomo.notifier import LoggingNotifier, Notifier
from pomocop.pomo.scheduler import FatalHandler, Scheduler
from pomocop.pomo.store import SqlSessionStore

if TYPE_CHECKING:
    from pomocop.config.models import PomocopConfig

logger = logging.getLogger(__name__)


@dataclass
class PomoRuntime:
    """Everything a host process needs to run the scheduler."""

    database: Database
    store: SqlSessionStore
    scheduler: Scheduler

    async def close(self) -> None:
        await self.scheduler.close()
        await self.database.disconnect()


async def create_runtime(
    config: PomocopConfig,
    notifier: Notifier | None = None,
    *,
    recover: bool = True,
    now: datetime | None = None,
    fatal_handler: FatalHandler | None = None,
) -> PomoRuntime:
    """Connect the store, build the scheduler and optionally recover sessions."""
    database = Database(database_path=config.store.database_path)
    await database.connect()
    store = SqlSessionStore(database)
    try:
        await store.initialize()
        scheduler = Scheduler(
            store,
            notifier or LoggingNotifier(),
            defaults=config.phases.to_phase_config(),
            retry=config.scheduler.retry.to_retry_config(),
            notify_timeout=config.scheduler.notify_timeout_seconds,
            recovery_max_iterations=config.scheduler.recovery_max_iterations,
            fatal_handler=fatal_handler,
        )
        if recover:
            recovered = await scheduler.recover(now)
            logger.info(
                "scheduler_ready",
                extra={
                    "pomo.recovered_sessions": len(recovered),
                    "db.url": database.url,
                },
            )
    except BaseException:
        await database.disconnect()
        raise
    return PomoRuntime(database=database, store=store, scheduler=scheduler)
