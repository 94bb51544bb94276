"""Target assignment model"""
from sqlalchemy import Column, Integer, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from deduper.models.base import Base


class TargetAssignment(Base):
    """Canonical issue currently representing a fingerprint"""

    __tablename__ = "target_assignments"

    id = Column(Integer, primary_key=True, index=True)

    # One canonical issue per fingerprint
    fingerprint_id = Column(Integer, ForeignKey("fingerprints.id"), unique=True, nullable=False)
    issue_id = Column(Integer, ForeignKey("issues.id"), nullable=False)

    # Creation time of the "Duplicate of" comment behind this assignment (UTC, tz-naive).
    # NULL when unknown.
    event_time = Column(DateTime, nullable=True)

    # Relationships
    fingerprint = relationship("Fingerprint")
    issue = relationship("TrackedIssue")

    def __repr__(self):
        return f"<TargetAssignment(fingerprint_id={self.fingerprint_id}, issue_id={self.issue_id})>"
