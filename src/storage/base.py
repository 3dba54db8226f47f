"""
Shared SQLite plumbing for the job and claim stores.

Each operation opens its own connection, so stores are safe to share across
worker threads. Timestamps are stored as fixed-width UTC strings so they
compare correctly as text.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from ..intake.schema import utcnow
from ..utils.config import get_settings

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

Clock = Callable[[], datetime]


def format_ts(value: Optional[datetime]) -> Optional[str]:
    """Render a datetime as a sortable UTC string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


class SQLiteStore:
    """Base class: database location, connection factory and clock."""

    busy_timeout = 30.0

    def __init__(self, db_path: Optional[Path] = None, clock: Optional[Clock] = None):
        self.db_path = Path(db_path) if db_path else get_settings().database_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.clock = clock or utcnow
        self._init_db()

    def _init_db(self):
        raise NotImplementedError

    @contextmanager
    def _get_connection(self):
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _now(self) -> str:
        return format_ts(self.clock())
