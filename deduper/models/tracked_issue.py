"""Tracked issue model"""
from sqlalchemy import CheckConstraint, Column, Integer, String, ForeignKey, DateTime, Enum
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum
from deduper.models.base import Base


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime (consistent with GitHub parsing)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class IssueState(str, enum.Enum):
    """Issue state as reported by GitHub"""
    OPEN = "open"
    CLOSED = "closed"


class TrackedIssue(Base):
    """Crash report issue mirrored from GitHub"""

    __tablename__ = "issues"
    __table_args__ = (CheckConstraint("id > 0", name="ck_issues_positive_id"),)

    # GitHub issue number
    id = Column(Integer, primary_key=True, autoincrement=False)
    title = Column(String, nullable=False)
    fingerprint_id = Column(Integer, ForeignKey("fingerprints.id"), nullable=False, index=True)
    state = Column(Enum(IssueState), nullable=False)
    # Set from "Duplicate of #N" comments
    duplicate_of = Column(Integer, ForeignKey("issues.id"), nullable=True, index=True)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    fingerprint = relationship("Fingerprint")

    def __repr__(self):
        return f"<TrackedIssue(id={self.id}, state={self.state}, duplicate_of={self.duplicate_of})>"
