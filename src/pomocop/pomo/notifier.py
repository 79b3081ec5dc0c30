"""Notifier boundary between the scheduler and the chat platform."""

import logging
from typing import Protocol

from pomocop.pomo.types import PhaseEvent

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Delivers session events to a channel and its subscribers.

    Delivery is fire-and-forget from the scheduler's side: formatting,
    retries and platform errors belong to the implementation. Exceptions are
    logged by the scheduler and never undo a persisted transition.
    """

    async def notify(
        self, channel_id: str, subscribers: frozenset[str], event: PhaseEvent
    ) -> None: ...


class LoggingNotifier:
    """Notifier that only logs events. Useful headless and in development."""

    async def notify(
        self, channel_id: str, subscribers: frozenset[str], event: PhaseEvent
    ) -> None:
        logger.info(
            "pomo_event",
            extra={
                "pomo.channel_id": channel_id,
                "pomo.event": event.kind.value,
                "pomo.phase": str(event.phase),
                "pomo.previous_phase": str(event.previous) if event.previous else None,
                "pomo.deadline": event.deadline.isoformat(),
                "pomo.missed_phases": event.missed_phases,
                "pomo.subscriber_count": len(subscribers),
            },
        )
