"""Local record of tracked crash report issues"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from deduper.models import IssueState, TargetAssignment, TrackedIssue
from deduper.models.base import upsert_insert
from deduper.models.tracked_issue import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DuplicateRecord:
    issue_id: int
    duplicate_of_id: int


@dataclass(frozen=True)
class IssueStateUpdate:
    issue_id: int
    state: IssueState


@dataclass(frozen=True)
class CloseableIssue:
    issue_id: int
    fingerprint_id: int


def known_issue_ids(db: Session, issue_ids: Iterable[int]) -> Set[int]:
    """Subset of ``issue_ids`` that are tracked"""
    ids = set(issue_ids)
    if not ids:
        return set()
    rows = db.query(TrackedIssue.id).filter(TrackedIssue.id.in_(ids)).all()
    return {row[0] for row in rows}


class IssueRegistry:
    """Issue rows; GitHub is authoritative, so every write is last-write-wins"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, issue_id: int) -> Optional[TrackedIssue]:
        return self.db.query(TrackedIssue).filter(TrackedIssue.id == issue_id).first()

    def upsert(self, issue_id: int, title: str, fingerprint_id: int, state: IssueState):
        """Insert or replace title, fingerprint and state of an issue. ``duplicate_of`` is kept.

        Runs as one INSERT ... ON CONFLICT (id) DO UPDATE.
        """
        table = TrackedIssue.__table__
        stmt = upsert_insert(self.db, table).values(
            id=issue_id,
            title=title,
            fingerprint_id=fingerprint_id,
            state=IssueState(state),
            updated_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.id],
            set_={
                "title": stmt.excluded.title,
                "fingerprint_id": stmt.excluded.fingerprint_id,
                "state": stmt.excluded.state,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        self.db.execute(stmt)

    def set_state(self, issue_id: int, state: IssueState):
        self.set_states([IssueStateUpdate(issue_id, state)])

    def set_states(self, updates: Iterable[IssueStateUpdate]) -> int:
        """Bulk state update; unknown issues are ignored"""
        count = 0
        for update in updates:
            count += (
                self.db.query(TrackedIssue)
                .filter(TrackedIssue.id == update.issue_id)
                .update({TrackedIssue.state: IssueState(update.state)}, synchronize_session=False)
            )
        return count

    def mark_duplicate(self, issue_id: int, duplicate_of_id: int) -> bool:
        return self.mark_duplicates([DuplicateRecord(issue_id, duplicate_of_id)]) == 1

    def mark_duplicates(self, records: Iterable[DuplicateRecord]) -> int:
        """Bulk duplicate-of update.

        Records pointing at an issue we don't track are skipped so that
        ``duplicate_of`` always references a tracked issue.
        """
        records = list(records)
        known = known_issue_ids(self.db, (r.duplicate_of_id for r in records))
        count = 0
        for record in records:
            if record.duplicate_of_id not in known:
                logger.info(
                    f"Not marking #{record.issue_id} as duplicate of untracked issue #{record.duplicate_of_id}"
                )
                continue
            count += (
                self.db.query(TrackedIssue)
                .filter(TrackedIssue.id == record.issue_id)
                .update({TrackedIssue.duplicate_of: record.duplicate_of_id}, synchronize_session=False)
            )
        return count

    def find_closeable(self) -> List[CloseableIssue]:
        """Open issues whose fingerprint is represented by a different issue"""
        rows = (
            self.db.query(TrackedIssue.id, TrackedIssue.fingerprint_id)
            .join(TargetAssignment, TargetAssignment.fingerprint_id == TrackedIssue.fingerprint_id)
            .filter(TrackedIssue.state == IssueState.OPEN, TrackedIssue.id != TargetAssignment.issue_id)
            .order_by(TrackedIssue.id)
            .all()
        )
        return [CloseableIssue(issue_id=row[0], fingerprint_id=row[1]) for row in rows]
