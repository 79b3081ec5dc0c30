"""Errors raised by the pomodoro scheduler and its store."""


class PomoError(Exception):
    """Base class for scheduler errors."""


class AlreadyRunningError(PomoError):
    """A session is already running in the channel."""

    def __init__(self, channel_id: str) -> None:
        super().__init__(f"a session is already running in channel {channel_id}")
        self.channel_id = channel_id


class NotRunningError(PomoError):
    """No session is running in the channel."""

    def __init__(self, channel_id: str) -> None:
        super().__init__(f"no session is running in channel {channel_id}")
        self.channel_id = channel_id


class StoreUnavailableError(PomoError):
    """The session store could not durably complete an operation."""

    def __init__(self, operation: str, channel_id: str | None = None) -> None:
        target = f" for channel {channel_id}" if channel_id else ""
        super().__init__(f"session store unavailable during {operation}{target}")
        self.operation = operation
        self.channel_id = channel_id


class RecoveryCorruptError(PomoError):
    """A persisted snapshot cannot be turned back into a live session."""

    def __init__(self, channel_id: str, reason: str) -> None:
        super().__init__(f"corrupt snapshot for channel {channel_id}: {reason}")
        self.channel_id = channel_id
        self.reason = reason


class SchedulerHaltedError(PomoError):
    """The scheduler no longer accepts work.

    Raised after ``close()`` or after a fatal store failure.
    """
