"""Session store: durable per-channel snapshots.

``SessionStore`` is the contract the scheduler depends on. ``SqlSessionStore``
implements it on top of the async SQLAlchemy ``Database``; every write is
committed before the call returns.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from pomocop.db import Database, SessionSnapshot
from pomocop.pomo.errors import RecoveryCorruptError, StoreUnavailableError
from pomocop.pomo.session import Session

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Durable key-value persistence keyed by channel id."""

    async def put(self, session: Session) -> None:
        """Upsert the snapshot for ``session.channel_id``."""
        ...

    async def delete(self, channel_id: str) -> bool:
        """Remove a snapshot. Returns whether one existed."""
        ...

    async def load_all(self) -> list[Session]:
        """Load every readable snapshot."""
        ...


class SqlSessionStore:
    """SQL-backed session store."""

    def __init__(self, database: Database) -> None:
        self._db = database

    @property
    def database(self) -> Database:
        return self._db

    async def initialize(self) -> None:
        async with self._guard("initialize"):
            await self._db.create_tables()

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def put(self, session: Session) -> None:
        row = SessionSnapshot(
            channel_id=session.channel_id,
            session_id=session.id,
            lifecycle=session.lifecycle.value,
            snapshot=session.to_json(),
        )
        async with self._guard("put", session.channel_id):
            async with self._db.session() as db:
                await db.merge(row)
        logger.debug(
            "session_snapshot_saved",
            extra={
                "pomo.channel_id": session.channel_id,
                "pomo.phase": str(session.phase),
            },
        )

    async def delete(self, channel_id: str) -> bool:
        async with self._guard("delete", channel_id):
            async with self._db.session() as db:
                result = await db.execute(
                    delete(SessionSnapshot).where(
                        SessionSnapshot.channel_id == channel_id
                    )
                )
        return bool(result.rowcount)

    async def clear_all(self) -> int:
        async with self._guard("clear_all"):
            async with self._db.session() as db:
                result = await db.execute(delete(SessionSnapshot))
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def get(self, channel_id: str) -> Session | None:
        """Load one snapshot.

        Raises:
            RecoveryCorruptError: If the stored snapshot cannot be decoded.
        """
        async with self._guard("get", channel_id):
            async with self._db.session() as db:
                row = await db.get(SessionSnapshot, channel_id)
        if row is None:
            return None
        return Session.from_json(row.snapshot, channel_id=row.channel_id)

    async def load_all(self) -> list[Session]:
        """Load every snapshot, dropping the ones that cannot be decoded.

        Corrupt snapshots are logged and deleted so the channel is treated as
        having no session; they never abort the load.
        """
        async with self._guard("load_all"):
            async with self._db.session() as db:
                rows = (await db.scalars(select(SessionSnapshot))).all()

        sessions: list[Session] = []
        corrupt: list[str] = []
        for row in rows:
            try:
                session = Session.from_json(row.snapshot, channel_id=row.channel_id)
            except RecoveryCorruptError as e:
                logger.warning(
                    "session_snapshot_corrupt",
                    extra={
                        "pomo.channel_id": row.channel_id,
                        "error.message": e.reason,
                    },
                )
                corrupt.append(row.channel_id)
                continue
            if session.channel_id != row.channel_id:
                logger.warning(
                    "session_snapshot_corrupt",
                    extra={
                        "pomo.channel_id": row.channel_id,
                        "error.message": f"snapshot belongs to {session.channel_id}",
                    },
                )
                corrupt.append(row.channel_id)
                continue
            sessions.append(session)

        for channel_id in corrupt:
            await self.delete(channel_id)
        return sessions

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _guard(
        self, operation: str, channel_id: str | None = None
    ) -> AsyncIterator[None]:
        try:
            yield
        except (SQLAlchemyError, OSError) as e:
            logger.warning(
                "session_store_error",
                extra={
                    "store.operation": operation,
                    "pomo.channel_id": channel_id,
                    "error.type": type(e).__name__,
                    "error.message": str(e),
                },
            )
            raise StoreUnavailableError(operation, channel_id) from e
