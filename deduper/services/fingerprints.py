"""Content-addressed storage of normalized stack traces"""

import hashlib
import json
import logging
import threading
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from deduper.models import Fingerprint

logger = logging.getLogger(__name__)


def fingerprint_hash(lines: Sequence[str]) -> str:
    """Hash of a trace line sequence; equal sequences give equal hashes."""
    return hashlib.sha256(json.dumps(list(lines)).encode()).hexdigest()


class FingerprintStore:
    """Resolve trace line sequences to fingerprint ids, creating them on first sight.

    Fingerprints are immutable, so creation runs in its own short transaction
    and is committed before the caller's issue transaction uses the id. The
    lock serializes creation inside this process; across processes the unique
    ``content_hash`` constraint decides and the loser re-reads the winner's row.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._create_lock = threading.Lock()

    @staticmethod
    def _find_id(db: Session, content_hash: str) -> Optional[int]:
        row = db.query(Fingerprint.id).filter(Fingerprint.content_hash == content_hash).first()
        return row[0] if row else None

    def resolve_or_create(self, lines: Sequence[str]) -> int:
        """Return the id of the fingerprint for ``lines``, creating it if needed"""
        content_hash = fingerprint_hash(lines)

        db = self.session_factory()
        try:
            existing = self._find_id(db, content_hash)
            if existing is not None:
                return existing
            db.rollback()

            with self._create_lock:
                # Another thread may have created it while we waited.
                existing = self._find_id(db, content_hash)
                if existing is not None:
                    return existing

                row = Fingerprint(lines=list(lines), content_hash=content_hash)
                db.add(row)
                try:
                    db.commit()
                except IntegrityError:
                    # Another process inserted the same trace first.
                    db.rollback()
                    existing = self._find_id(db, content_hash)
                    if existing is None:
                        raise
                    logger.debug(f"Fingerprint {content_hash[:12]} created concurrently, reusing #{existing}")
                    return existing

                logger.debug(f"Created fingerprint #{row.id} with {len(row.lines)} lines")
                return row.id
        finally:
            db.close()

    def get_lines(self, fingerprint_id: int) -> Optional[List[str]]:
        """Return the stored trace lines of a fingerprint"""
        db = self.session_factory()
        try:
            row = db.query(Fingerprint).filter(Fingerprint.id == fingerprint_id).first()
            return list(row.lines) if row else None
        finally:
            db.close()
