"""
LearningStore: SQLite + WAL mode storage for learning loops and the concept graph.
"""

import sqlite3
import uuid
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone
from contextlib import contextmanager

from teachback.shared.config import settings
from teachback.shared.exceptions import StoreError
from teachback.shared.logging import get_logger
from teachback.store.schema import SCHEMA_SQL, INDEXES_SQL, SCHEMA_VERSION

logger = get_logger(__name__)


def new_id() -> str:
    """Generate a new row identifier."""
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as a UTC ISO string (sortable as text)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class LearningStore:
    """SQLite store with WAL mode; every unit of work is one transaction."""

    def __init__(self, db_path: Optional[Path] = None, timeout: Optional[float] = None):
        self.db_path = Path(db_path or settings.store.db_path)
        self.timeout = timeout or settings.store.busy_timeout_seconds
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

    def _init_database(self):
        """Initialize database schema."""
        try:
            with self.transaction() as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.executescript(SCHEMA_SQL)
                conn.executescript(INDEXES_SQL)
                conn.execute(f"PRAGMA user_version={SCHEMA_VERSION}")
        except sqlite3.Error as e:
            raise StoreError(f"Failed to initialize store at {self.db_path}: {str(e)}") from e

        logger.info("Learning store initialized", extra={"db_path": str(self.db_path)})

    @contextmanager
    def transaction(self):
        """
        Yield a connection; commit on success, roll back on any exception.

        All writes made through the yielded connection form one atomic unit.
        """
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
