"""GitHub API client wrapper"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from github import Auth, Github, GithubException

from deduper.errors import TransientRemoteError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"


def parse_github_datetime(value: Any) -> Optional[datetime]:
    """Parse a GitHub timestamp (ISO8601 string or datetime) into a UTC tz-naive datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def mint_installation_token(
    app_jwt: str,
    organization: str,
    permissions: Dict[str, str],
    base_url: str = DEFAULT_API_URL,
) -> Tuple[str, datetime]:
    """Exchange an app JWT for an installation token limited to ``permissions``.

    Returns the token and its expiry (UTC, tz-naive).
    """
    gh = Github(auth=Auth.AppAuthToken(app_jwt), base_url=base_url)
    try:
        _, installation = gh.requester.requestJsonAndCheck("GET", f"/orgs/{organization}/installation")
        _, token = gh.requester.requestJsonAndCheck(
            "POST",
            f"/app/installations/{installation['id']}/access_tokens",
            input={"permissions": permissions},
        )
    except GithubException as e:
        logger.error(f"Failed to create installation token for {organization}: {e}")
        raise TransientRemoteError(f"Installation token exchange failed: {e}") from e
    finally:
        gh.close()
    return token.get("token"), parse_github_datetime(token.get("expires_at"))


class GitHubClient:
    """Wrapper for the GitHub API operations on the error report repository.

    Methods taking an ``issue`` accept either an issue number, a webhook
    payload dict, or an already fetched PyGithub issue.
    """

    def __init__(self, repository: str, auth: Auth.Auth, base_url: str = DEFAULT_API_URL):
        """Initialize GitHub client"""
        self.repository = repository
        self.gh = Github(auth=auth, base_url=base_url)
        self._repo = None

    @property
    def repo(self):
        if self._repo is None:
            self._repo = self.gh.get_repo(self.repository, lazy=True)
        return self._repo

    def _issue(self, issue: Any):
        if isinstance(issue, int):
            return self.get_issue(issue)
        if isinstance(issue, dict):
            return self.get_issue(int(issue["number"]))
        return issue

    def list_issues(self, state: str = "all") -> List[Any]:
        """Get all issues of the repository, pull requests excluded"""
        try:
            issues = self.repo.get_issues(state=state, sort="created", direction="asc")
            return [i for i in issues if i.pull_request is None]
        except GithubException as e:
            logger.error(f"Failed to list issues of {self.repository}: {e}")
            raise TransientRemoteError(f"Failed to list issues: {e}") from e

    def get_issue(self, number: int) -> Any:
        """Get a specific issue by number"""
        try:
            return self.repo.get_issue(number)
        except GithubException as e:
            logger.error(f"Failed to get issue #{number}: {e}")
            raise TransientRemoteError(f"Failed to get issue #{number}: {e}") from e

    def list_comments(self, issue: Any) -> List[Any]:
        """Get all comments of an issue, oldest first"""
        try:
            return list(self._issue(issue).get_comments())
        except GithubException as e:
            logger.error(f"Failed to get comments for issue {_number(issue)}: {e}")
            raise TransientRemoteError(f"Failed to get comments: {e}") from e

    def comment_on_issue(self, issue: Any, text: str) -> Any:
        """Create a comment on an issue"""
        try:
            comment = self._issue(issue).create_comment(text)
            logger.info(f"Created comment on issue #{_number(issue)}")
            return comment
        except GithubException as e:
            logger.error(f"Failed to comment on issue #{_number(issue)}: {e}")
            raise TransientRemoteError(f"Failed to comment: {e}") from e

    def close_issue(self, issue: Any):
        """Close an issue"""
        try:
            self._issue(issue).edit(state="closed")
            logger.info(f"Closed issue #{_number(issue)}")
        except GithubException as e:
            logger.error(f"Failed to close issue #{_number(issue)}: {e}")
            raise TransientRemoteError(f"Failed to close issue: {e}") from e

    def edit_issue_title(self, issue: Any, title: str):
        """Rename an issue"""
        try:
            self._issue(issue).edit(title=title)
            logger.info(f"Renamed issue #{_number(issue)}")
        except GithubException as e:
            logger.error(f"Failed to rename issue #{_number(issue)}: {e}")
            raise TransientRemoteError(f"Failed to rename issue: {e}") from e

    def get_commenter_permission(self, login: str) -> str:
        """Repository permission of a user: admin, write, read or none"""
        try:
            return self.repo.get_collaborator_permission(login)
        except GithubException as e:
            logger.error(f"Failed to get permission of {login}: {e}")
            raise TransientRemoteError(f"Failed to get permission: {e}") from e


def _number(issue: Any) -> Any:
    if isinstance(issue, int):
        return issue
    if isinstance(issue, dict):
        return issue.get("number")
    return getattr(issue, "number", None)
