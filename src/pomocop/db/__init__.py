"""Database layer."""

from pomocop.db.engine import Database
from pomocop.db.models import Base, SessionSnapshot

__all__ = [
    # Engine
    "Database",
    # Models
    "Base",
    "SessionSnapshot",
]
