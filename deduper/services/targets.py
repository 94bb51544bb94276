"""Mapping of fingerprints to their canonical issue"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from deduper.models import TargetAssignment
from deduper.models.base import upsert_insert
from deduper.services.issue_registry import known_issue_ids

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetUpdate:
    fingerprint_id: int
    issue_id: int
    # Creation time of the "Duplicate of" comment (UTC, tz-naive); None if unknown.
    event_time: Optional[datetime] = None


def order_by_event_time(updates: Iterable[TargetUpdate]) -> List[TargetUpdate]:
    """Oldest first, updates without a time before all others. Stable for ties."""
    return sorted(updates, key=lambda u: (u.event_time is not None, u.event_time or datetime.min))


class DuplicateTargetMap:
    """Which issue is canonical for each fingerprint.

    The most recent "Duplicate of" comment governs: an assignment never
    replaces one that carries a later event time, and an assignment without a
    time never replaces one that has a time.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_target(self, fingerprint_id: int) -> Optional[int]:
        row = (
            self.db.query(TargetAssignment.issue_id)
            .filter(TargetAssignment.fingerprint_id == fingerprint_id)
            .first()
        )
        return row[0] if row else None

    def set_target(self, fingerprint_id: int, issue_id: int, event_time: Optional[datetime] = None) -> bool:
        return self.set_targets([TargetUpdate(fingerprint_id, issue_id, event_time)]) == 1

    def set_targets(self, updates: Iterable[TargetUpdate]) -> int:
        """Apply a batch of assignments in event time order; returns how many took effect"""
        updates = order_by_event_time(updates)
        known = known_issue_ids(self.db, (u.issue_id for u in updates))

        applied = 0
        for update in updates:
            if update.issue_id not in known:
                logger.info(
                    f"Not targeting fingerprint {update.fingerprint_id} at untracked issue #{update.issue_id}"
                )
                continue
            if self._apply(update):
                applied += 1
        return applied

    def _apply(self, update: TargetUpdate) -> bool:
        # Read only for logging; the upsert below decides.
        previous = self.get_target(update.fingerprint_id)

        table = TargetAssignment.__table__
        stmt = upsert_insert(self.db, table).values(
            fingerprint_id=update.fingerprint_id,
            issue_id=update.issue_id,
            event_time=update.event_time,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.fingerprint_id],
            set_={"issue_id": stmt.excluded.issue_id, "event_time": stmt.excluded.event_time},
            where=or_(
                table.c.event_time.is_(None),
                and_(stmt.excluded.event_time.isnot(None), stmt.excluded.event_time >= table.c.event_time),
            ),
        )
        result = self.db.execute(stmt)

        if result.rowcount == 0:
            logger.debug(
                f"Keeping the current target for fingerprint {update.fingerprint_id}, "
                f"assignment to #{update.issue_id} is older"
            )
            return False

        if previous is None:
            logger.info(f"Set issue #{update.issue_id} as the target for fingerprint {update.fingerprint_id}")
        elif previous != update.issue_id:
            logger.info(
                f"Retargeting fingerprint {update.fingerprint_id} from #{previous} to #{update.issue_id}"
            )
        return True
