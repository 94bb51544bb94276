import unittest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import Mock, patch

from github import GithubException

from deduper.errors import TransientRemoteError
from deduper.services.github_client import GitHubClient, mint_installation_token, parse_github_datetime


def _client(repo):
    # Avoid running GitHubClient.__init__ (auth/network)
    client = GitHubClient.__new__(GitHubClient)
    client.repository = "minecraft-dev/mcdev-error-report"
    client._repo = repo
    return client


class GitHubClientTests(unittest.TestCase):
    def test_list_issues_excludes_pull_requests(self):
        issue = SimpleNamespace(number=1, pull_request=None)
        pull = SimpleNamespace(number=2, pull_request=object())
        repo = Mock()
        repo.get_issues.return_value = [issue, pull]

        self.assertEqual(_client(repo).list_issues(), [issue])
        repo.get_issues.assert_called_once_with(state="all", sort="created", direction="asc")

    def test_errors_become_transient(self):
        repo = Mock()
        repo.get_issue.side_effect = GithubException(502, {"message": "Bad Gateway"}, None)

        with self.assertRaises(TransientRemoteError):
            _client(repo).get_issue(7)

    def test_issue_numbers_are_fetched(self):
        issue = Mock()
        repo = Mock()
        repo.get_issue.return_value = issue
        client = _client(repo)

        client.close_issue(7)
        client.comment_on_issue({"number": 7}, "Duplicate of #3")

        repo.get_issue.assert_called_with(7)
        issue.edit.assert_called_once_with(state="closed")
        issue.create_comment.assert_called_once_with("Duplicate of #3")

    def test_fetched_issue_is_used_directly(self):
        issue = Mock()
        repo = Mock()
        client = _client(repo)

        client.edit_issue_title(issue, "java.lang.NullPointerException")

        issue.edit.assert_called_once_with(title="java.lang.NullPointerException")
        repo.get_issue.assert_not_called()

    def test_commenter_permission(self):
        repo = Mock()
        repo.get_collaborator_permission.return_value = "write"

        self.assertEqual(_client(repo).get_commenter_permission("octocat"), "write")

    def test_comment_listing_failure(self):
        issue = Mock()
        issue.get_comments.side_effect = GithubException(500, None, None)

        with self.assertRaises(TransientRemoteError):
            _client(Mock()).list_comments(issue)


class MintInstallationTokenTests(unittest.TestCase):
    @patch("deduper.services.github_client.Github")
    def test_exchanges_jwt_for_scoped_token(self, github_cls):
        gh = github_cls.return_value
        gh.requester.requestJsonAndCheck.side_effect = [
            ({}, {"id": 42}),
            ({}, {"token": "ghs_abc", "expires_at": "2024-03-01T13:00:00Z"}),
        ]

        token, expires_at = mint_installation_token("app-jwt", "minecraft-dev", {"issues": "write"})

        self.assertEqual(token, "ghs_abc")
        self.assertEqual(expires_at, datetime(2024, 3, 1, 13, 0, 0))
        calls = gh.requester.requestJsonAndCheck.call_args_list
        self.assertEqual(calls[0].args, ("GET", "/orgs/minecraft-dev/installation"))
        self.assertEqual(calls[1].args, ("POST", "/app/installations/42/access_tokens"))
        self.assertEqual(calls[1].kwargs["input"], {"permissions": {"issues": "write"}})
        gh.close.assert_called_once_with()

    @patch("deduper.services.github_client.Github")
    def test_failed_exchange(self, github_cls):
        gh = github_cls.return_value
        gh.requester.requestJsonAndCheck.side_effect = GithubException(404, {"message": "Not Found"}, None)

        with self.assertRaises(TransientRemoteError):
            mint_installation_token("app-jwt", "minecraft-dev", {"issues": "write"})
        gh.close.assert_called_once_with()


class ParseGithubDatetimeTests(unittest.TestCase):
    def test_formats(self):
        expected = datetime(2024, 3, 1, 12, 0, 0)
        self.assertEqual(parse_github_datetime("2024-03-01T12:00:00Z"), expected)
        self.assertEqual(parse_github_datetime(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)), expected)
        self.assertEqual(
            parse_github_datetime(datetime(2024, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))), expected
        )
        self.assertEqual(parse_github_datetime(expected), expected)
        self.assertIsNone(parse_github_datetime(None))


if __name__ == "__main__":
    unittest.main()
