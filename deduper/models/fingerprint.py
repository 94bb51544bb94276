"""Fingerprint model"""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String

from deduper.models.base import Base


class Fingerprint(Base):
    """Normalized stack trace shared by every issue reporting the same failure.

    Rows are immutable: created on the first sighting of a trace and never
    updated or deleted.
    """

    __tablename__ = "fingerprints"

    id = Column(Integer, primary_key=True, index=True)
    lines = Column(JSON, nullable=False)
    # sha256 of the JSON encoded line list; the uniqueness constraint is the
    # final arbiter when several processes create the same fingerprint.
    content_hash = Column(String(64), unique=True, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Fingerprint(id={self.id}, lines={len(self.lines or [])})>"
