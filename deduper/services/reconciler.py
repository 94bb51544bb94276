"""Reconciliation of GitHub crash report issues with the local duplicate index.

Two entry points share the same operations: the daily full sweep
(:meth:`ReconciliationEngine.run_sweep`) and webhook deliveries
(:meth:`ReconciliationEngine.handle_webhook_event`). Neither retries; a failed
update is picked up again by the next sweep or the next delivery.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from deduper.config import Settings, settings as default_settings
from deduper.errors import PersistenceError, TransientRemoteError
from deduper.models import IssueState
from deduper.services.fingerprints import FingerprintStore
from deduper.services.github_client import GitHubClient, parse_github_datetime
from deduper.services.issue_registry import DuplicateRecord, IssueRegistry, IssueStateUpdate
from deduper.services.issue_text import derive_title, extract_stacktrace, parse_duplicate_of
from deduper.services.targets import DuplicateTargetMap, TargetUpdate

logger = logging.getLogger(__name__)

# Repository permissions allowed to mark an issue as a duplicate
MAINTAINER_PERMISSIONS = ("admin", "write")


@dataclass
class TrackedReport:
    """An issue upserted during the current sweep"""

    number: int
    fingerprint_id: int
    state: IssueState
    issue: Any


@dataclass
class CommentScan:
    """Outcome of scanning one issue's comments for "Duplicate of #N"."""

    issue_id: int
    duplicate: Optional[DuplicateRecord] = None
    target: Optional[TargetUpdate] = None
    error: Optional[Exception] = None


def _attr(obj: Any, name: str, default: Any = None) -> Any:
    """Get attribute or dict key safely (PyGithub objects and webhook payloads)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _login(obj: Any) -> Optional[str]:
    return _attr(_attr(obj, "user"), "login")


class ReconciliationEngine:
    """Keeps issues, fingerprints and duplicate targets in sync with GitHub"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        client: GitHubClient,
        settings: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.client = client
        self.settings = settings
        self.fingerprints = FingerprintStore(session_factory)
        self._webhook_executor = ThreadPoolExecutor(
            max_workers=settings.webhook_workers, thread_name_prefix="webhook"
        )

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """One unit of storage work: committed on success, rolled back otherwise."""
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def shutdown(self):
        """Stop running webhook handlers that haven't started yet"""
        self._webhook_executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Shared operations
    # ------------------------------------------------------------------

    def _refresh_title(self, issue: Any, body: Optional[str]) -> str:
        """Replace the placeholder title on GitHub; the derived title is used locally either way."""
        current = _attr(issue, "title") or ""
        title = derive_title(current, body, self.settings.placeholder_title)
        if title != current:
            try:
                self.client.edit_issue_title(issue, title)
            except TransientRemoteError as e:
                logger.warning(f"Keeping placeholder title on issue #{_attr(issue, 'number')}: {e}")
        return title

    def track_issue(self, issue: Any, state: Optional[IssueState] = None) -> Optional[TrackedReport]:
        """Upsert a reporter issue with its fingerprint; None if it isn't tracked."""
        number = int(_attr(issue, "number"))
        login = _login(issue)
        if login != self.settings.reporter_login:
            logger.debug(f"Skipping issue #{number} with creator: {login}")
            return None

        body = _attr(issue, "body")
        lines = extract_stacktrace(body, self.settings.frame_prefix)
        if lines is None:
            logger.debug(f"No stacktrace found for issue #{number}")
            return None

        title = self._refresh_title(issue, body)
        state = IssueState(state or _attr(issue, "state"))

        with self._session() as db:
            logger.debug(f"Syncing issue #{number}")
            fingerprint_id = self.fingerprints.resolve_or_create(lines)
            logger.debug(f"Assigning fingerprint {fingerprint_id} to issue #{number}")
            IssueRegistry(db).upsert(number, title, fingerprint_id, state)

        return TrackedReport(number=number, fingerprint_id=fingerprint_id, state=state, issue=issue)

    def duplicate_of(self, comment: Any, issue_number: int) -> Optional[int]:
        """Canonical issue named by a maintainer's "Duplicate of #N" comment, if any"""
        canonical = parse_duplicate_of(_attr(comment, "body"))
        if canonical is None:
            return None
        if canonical == issue_number:
            logger.debug(f"Ignoring issue #{issue_number} marked as a duplicate of itself")
            return None

        login = _login(comment)
        if not login:
            return None
        try:
            permission = self.client.get_commenter_permission(login)
        except TransientRemoteError as e:
            logger.error(f"Failed to determine if comment on #{issue_number} is a 'Duplicate of' comment: {e}")
            return None

        if permission not in MAINTAINER_PERMISSIONS:
            logger.info(f"Ignoring 'Duplicate of' comment on #{issue_number} by {login} ({permission})")
            return None
        return canonical

    def close_if_duplicate(self, issue_number: int, fingerprint_id: int) -> bool:
        """Comment and close the issue on GitHub if another issue is canonical for its fingerprint.

        Returns True when the issue is closed on GitHub afterwards.
        """
        with self._session() as db:
            target = DuplicateTargetMap(db).get_target(fingerprint_id)
        if target is None or target == issue_number:
            return False

        issue = self.client.get_issue(issue_number)
        if _attr(issue, "state") == IssueState.CLOSED.value:
            logger.info(f"Issue #{issue_number} is already closed")
            return True

        logger.info(f"Issue #{issue_number} is a duplicate of #{target}")
        self.client.comment_on_issue(issue, f"Duplicate of #{target}")
        self.client.close_issue(issue)
        logger.info(f"Issue #{issue_number} marked as duplicate of #{target} and closed successfully")
        return True

    # ------------------------------------------------------------------
    # Full sweep
    # ------------------------------------------------------------------

    def run_sweep(self) -> Dict[str, Any]:
        """Daily pass: sync every issue, then close known duplicates"""
        result: Dict[str, Any] = {"status": "success"}
        try:
            result["sync"] = self.sync_issues()
        except Exception as e:
            # Closing duplicates only needs what is already stored.
            logger.error(f"Error syncing GitHub issues: {e}")
            result["status"] = "failed"
            result["error"] = str(e)
        result["closed"] = self.close_duplicates()
        return result

    def sync_issues(self) -> Dict[str, int]:
        """Upsert all reporter issues and rebuild duplicate marks from their comments"""
        logger.info("Syncing issues from GitHub")
        stats = {"tracked": 0, "skipped": 0, "duplicates": 0, "targets": 0, "errors": 0}

        tracked: List[TrackedReport] = []
        for issue in self.client.list_issues(state="all"):
            try:
                report = self.track_issue(issue)
            except Exception as e:
                logger.error(f"Failed to sync issue #{_attr(issue, 'number')}: {e}")
                stats["errors"] += 1
                continue
            if report is None:
                stats["skipped"] += 1
                continue
            tracked.append(report)
        stats["tracked"] = len(tracked)

        # Comments rather than issue events: the marked_as_duplicate event
        # doesn't say which issue is the original.
        if tracked:
            with ThreadPoolExecutor(
                max_workers=self.settings.sweep_workers, thread_name_prefix="comment-scan"
            ) as pool:
                scans = list(pool.map(self._scan_comments, tracked))
        else:
            scans = []

        states = [IssueStateUpdate(r.number, r.state) for r in tracked]
        duplicates = [s.duplicate for s in scans if s.duplicate is not None]
        targets = [s.target for s in scans if s.target is not None]
        stats["errors"] += sum(1 for s in scans if s.error is not None)

        with self._session() as db:
            registry = IssueRegistry(db)
            logger.debug(f"Executing batch state update for {len(states)} issues")
            registry.set_states(states)
            logger.debug(f"Executing batch duplicates update for {len(duplicates)} issues")
            stats["duplicates"] = registry.mark_duplicates(duplicates)
            stats["targets"] = DuplicateTargetMap(db).set_targets(targets)

        logger.info(f"GitHub sync complete: {stats}")
        return stats

    def _scan_comments(self, report: TrackedReport) -> CommentScan:
        """Find the last valid "Duplicate of" comment of an issue. Never raises."""
        try:
            match = None
            for comment in self.client.list_comments(report.issue):
                canonical = self.duplicate_of(comment, report.number)
                if canonical is None:
                    continue
                logger.debug(f"Marking issue #{report.number} as a duplicate of #{canonical}")
                match = (canonical, parse_github_datetime(_attr(comment, "created_at")))

            if match is None:
                return CommentScan(report.number)
            canonical, created_at = match
            return CommentScan(
                report.number,
                duplicate=DuplicateRecord(report.number, canonical),
                target=TargetUpdate(report.fingerprint_id, canonical, created_at),
            )
        except Exception as e:
            logger.error(f"Failed to scan comments of issue #{report.number}: {e}")
            return CommentScan(report.number, error=e)

    def close_duplicates(self) -> List[int]:
        """Close every open issue whose fingerprint belongs to another issue"""
        with self._session() as db:
            candidates = IssueRegistry(db).find_closeable()
        logger.info(f"Found {len(candidates)} duplicate issues to close")

        closed = []
        for candidate in candidates:
            try:
                if self.close_if_duplicate(candidate.issue_id, candidate.fingerprint_id):
                    closed.append(candidate.issue_id)
            except Exception as e:
                logger.error(f"Failure in checking closeable issue #{candidate.issue_id}: {e}")

        # The "closed" webhook should follow, but record it while we know.
        if closed:
            with self._session() as db:
                IssueRegistry(db).set_states(IssueStateUpdate(n, IssueState.CLOSED) for n in closed)
        return closed

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def handle_webhook_event(self, event_type: str, payload: Dict[str, Any]) -> Future:
        """Queue a webhook delivery and return immediately"""
        return self._webhook_executor.submit(self._dispatch, event_type, payload)

    def _dispatch(self, event_type: str, payload: Dict[str, Any]):
        try:
            action = payload.get("action")
            if event_type == "issues" and action == "opened":
                self.handle_issue_opened(payload)
            elif event_type == "issues" and action == "closed":
                self.handle_issue_closed(payload)
            elif event_type == "issue_comment" and action in ("created", "edited"):
                self.handle_issue_comment(payload)
            else:
                logger.debug(f"Ignoring {event_type} webhook with action {action}")
        except Exception as e:
            number = _attr(payload.get("issue"), "number")
            logger.error(f"Error handling {event_type} webhook for issue #{number}: {e}")

    def handle_issue_opened(self, payload: Dict[str, Any]):
        issue = payload["issue"]
        # Only issues opened by the reporter account are kept in sync
        if _login(issue) != self.settings.reporter_login:
            return

        logger.info(f"Syncing new issue: #{issue['number']}")
        report = self.track_issue(issue, state=IssueState.OPEN)
        if report is None:
            return

        if self.close_if_duplicate(report.number, report.fingerprint_id):
            with self._session() as db:
                IssueRegistry(db).set_state(report.number, IssueState.CLOSED)

    def handle_issue_closed(self, payload: Dict[str, Any]):
        number = int(payload["issue"]["number"])
        logger.info(f"Marking issue #{number} as closed")
        with self._session() as db:
            IssueRegistry(db).set_state(number, IssueState.CLOSED)

    def handle_issue_comment(self, payload: Dict[str, Any]):
        number = int(payload["issue"]["number"])
        comment = payload["comment"]
        canonical = self.duplicate_of(comment, number)
        if canonical is None:
            return

        logger.info(f"Marking #{number} as a duplicate of #{canonical}")
        with self._session() as db:
            registry = IssueRegistry(db)
            issue = registry.get(number)
            if issue is None:
                logger.debug(f"Issue #{number} is not tracked")
                return
            registry.mark_duplicate(number, canonical)
            DuplicateTargetMap(db).set_target(
                issue.fingerprint_id, canonical, parse_github_datetime(comment.get("created_at"))
            )
