"""Shared database factory for tests.

Each test gets its own SQLite file so sessions on different threads behave
like separate connections to a real database.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from deduper.models.base import init_db


class TempDatabase:
    def __init__(self):
        self._tmp = tempfile.TemporaryDirectory()
        path = Path(self._tmp.name) / "deduper.db"
        self.engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})
        init_db(bind=self.engine)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def close(self):
        self.engine.dispose()
        self._tmp.cleanup()


def make_db(testcase) -> TempDatabase:
    """Create a temporary database that is removed when the test finishes."""
    db = TempDatabase()
    testcase.addCleanup(db.close)
    return db
