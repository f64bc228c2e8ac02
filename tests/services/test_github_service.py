"""Tests for the gh-backed GitHub service."""

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from bye_bye_flag.core.process import CommandResult
from bye_bye_flag.services.exceptions import GitHubServiceError
from bye_bye_flag.services.github_service import GitHubService


def _result(returncode=0, stdout="", stderr=""):
    return CommandResult(args=(), returncode=returncode, stdout=stdout, stderr=stderr)


def _service(result=None, side_effect=None):
    runner = AsyncMock(return_value=result, side_effect=side_effect)
    return GitHubService(Path("/repos/svc"), runner=runner), runner


class TestListPullRequests:
    """Test cases for list_pull_requests."""

    def test_parses_json(self):
        """Test that gh JSON is returned as dictionaries."""
        prs = [{"url": "https://github.com/acme/svc/pull/1", "state": "MERGED"}]
        service, runner = _service(_result(stdout=json.dumps(prs)))

        assert asyncio.run(service.list_pull_requests()) == prs

        args = runner.await_args.args[0]
        assert args[:3] == ["gh", "pr", "list"]
        assert args[args.index("--state") + 1] == "all"
        assert args[args.index("--json") + 1] == "url,state,title,headRefName,createdAt"
        assert "--head" not in args

    def test_head_filter(self):
        """Test that a head branch narrows the query."""
        service, runner = _service(_result(stdout="[]"))

        asyncio.run(service.list_pull_requests(head="remove-flag/x", state="open"))

        args = runner.await_args.args[0]
        assert args[-2:] == ["--head", "remove-flag/x"]
        assert args[args.index("--state") + 1] == "open"

    def test_empty_stdout(self):
        service, _ = _service(_result(stdout=""))
        assert asyncio.run(service.list_pull_requests()) == []

    def test_malformed_output(self):
        """Test that non-list output is an error."""
        service, _ = _service(_result(stdout='{"message": "rate limited"}'))
        with pytest.raises(GitHubServiceError, match="expected a list"):
            asyncio.run(service.list_pull_requests())

    def test_invalid_json(self):
        service, _ = _service(_result(stdout="<html>"))
        with pytest.raises(GitHubServiceError, match="Unexpected gh output"):
            asyncio.run(service.list_pull_requests())

    def test_gh_failure(self):
        """Test that a non-zero exit raises with stderr."""
        service, _ = _service(_result(returncode=4, stderr="gh auth login required"))
        with pytest.raises(GitHubServiceError, match="gh pr list failed: gh auth login required"):
            asyncio.run(service.list_pull_requests())

    def test_gh_missing(self):
        service, _ = _service(side_effect=FileNotFoundError("gh"))
        with pytest.raises(GitHubServiceError, match="Could not run gh"):
            asyncio.run(service.list_pull_requests())


class TestPullRequestWrites:
    """Test cases for creating and editing pull requests."""

    def test_create_returns_last_line(self):
        """Test that the URL is taken from the last stdout line."""
        stdout = "Creating pull request for remove-flag/x into main\n\nhttps://github.com/acme/svc/pull/7\n"
        service, runner = _service(_result(stdout=stdout))

        url = asyncio.run(service.create_pull_request("title", "body", base="main", head="remove-flag/x"))

        assert url == "https://github.com/acme/svc/pull/7"
        args = runner.await_args.args[0]
        assert args[args.index("--base") + 1] == "main"
        assert args[args.index("--head") + 1] == "remove-flag/x"

    def test_create_without_url(self):
        service, _ = _service(_result(stdout="\n"))
        with pytest.raises(GitHubServiceError, match="did not return a URL"):
            asyncio.run(service.create_pull_request("title", "body", base="main", head="remove-flag/x"))

    def test_update_description(self):
        service, runner = _service(_result())

        asyncio.run(service.update_pr_description("https://github.com/acme/svc/pull/7", "new body"))

        runner.assert_awaited_once_with(
            ["gh", "pr", "edit", "https://github.com/acme/svc/pull/7", "--body", "new body"],
            Path("/repos/svc"),
        )

    def test_auth_ok(self):
        service, _ = _service(_result(returncode=1))
        assert asyncio.run(service.auth_ok()) is False
