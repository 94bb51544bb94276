"""Database models"""

from deduper.models.base import Base
from deduper.models.fingerprint import Fingerprint
from deduper.models.target_assignment import TargetAssignment
from deduper.models.tracked_issue import IssueState, TrackedIssue

__all__ = [
    "Base",
    "Fingerprint",
    "TrackedIssue",
    "IssueState",
    "TargetAssignment",
]
