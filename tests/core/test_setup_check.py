"""Tests for the setup checker behind ``test-setup``."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from bye_bye_flag.core.config_context import ConfigContext
from bye_bye_flag.core.process import CommandResult
from bye_bye_flag.core.setup_check import SetupChecker, SetupCheckOptions
from bye_bye_flag.exceptions import ConfigError
from bye_bye_flag.models.config import parse_config
from bye_bye_flag.services.exceptions import GitServiceError


def _result(returncode=0, stderr=""):
    return CommandResult(args=(), returncode=returncode, stdout="", stderr=stderr)


@pytest.fixture
def git():
    """Mock git service shared by every repo."""
    mock = MagicMock()
    mock.add_worktree = AsyncMock()
    mock.remove_worktree = AsyncMock(return_value=True)
    mock.delete_branch = AsyncMock(return_value=True)
    return mock


def _checker(context, git, shell, echoed):
    return SetupChecker(context, git_factory=lambda path: git, shell_runner=shell, echo=echoed.append)


class TestSetupChecker:
    """Test cases for SetupChecker."""

    def test_unknown_repo(self, config_context, git):
        """Test that an unknown repo name is a config error."""
        checker = _checker(config_context, git, AsyncMock(), [])
        with pytest.raises(ConfigError, match="No config for repo: nope"):
            asyncio.run(checker.run("nope"))

    def test_worktree_passes_and_is_removed(self, config_context, git):
        """Test that a passing setup cleans up the throwaway worktree."""
        shell = AsyncMock(return_value=_result())
        echoed = []
        checker = _checker(config_context, git, shell, echoed)

        assert asyncio.run(checker.run("svc-b")) is True

        branch, worktree_path, start_point = git.add_worktree.await_args.args
        assert branch.startswith("test-setup-")
        assert start_point == "origin/develop"
        assert worktree_path == config_context.worktree_base_path / branch / "svc-b"
        shell.assert_awaited_once_with("npm ci", worktree_path, None)
        git.remove_worktree.assert_awaited_once_with(worktree_path, check=False)
        git.delete_branch.assert_awaited_once_with(branch)
        assert not worktree_path.parent.exists()
        assert "All setup tests passed!" in echoed

    def test_setup_failure_leaves_worktree(self, config_context, git):
        """Test that a failed command keeps the worktree and prints how to clean it."""
        shell = AsyncMock(return_value=_result(returncode=2, stderr="npm ERR!"))
        echoed = []
        checker = _checker(config_context, git, shell, echoed)

        assert asyncio.run(checker.run("svc-b")) is False

        git.remove_worktree.assert_not_awaited()
        assert any(line.startswith("To cleanup: git -C") for line in echoed)
        assert any("npm ERR!" in line for line in echoed)

    def test_worktree_creation_failure(self, config_context, git):
        """Test that a git error fails the check."""
        git.add_worktree.side_effect = GitServiceError("invalid reference: origin/main")
        echoed = []
        checker = _checker(config_context, git, AsyncMock(), echoed)

        assert asyncio.run(checker.run("svc-a")) is False
        assert any("invalid reference" in line for line in echoed)

    def test_main_setup_failure_stops(self, repos_dir, config_data, git):
        """Test that a failing mainSetup stops before the worktree and later repos."""
        config_data["repoDefaults"]["mainSetup"] = ["make deps"]
        context = ConfigContext(repos_dir, repos_dir / "bye-bye-flag-config.json", parse_config(config_data))
        shell = AsyncMock(return_value=_result(returncode=1))
        checker = _checker(context, git, shell, [])

        assert asyncio.run(checker.run()) is False

        shell.assert_awaited_once_with("make deps", repos_dir / "svc-a", None)
        git.add_worktree.assert_not_awaited()

    def test_skip_options(self, repos_dir, config_data, git):
        """Test that both skip options leave nothing to run."""
        config_data["repoDefaults"]["mainSetup"] = ["make deps"]
        context = ConfigContext(repos_dir, repos_dir / "bye-bye-flag-config.json", parse_config(config_data))
        shell = AsyncMock()
        checker = _checker(context, git, shell, [])

        options = SetupCheckOptions(skip_main_setup=True, skip_worktree=True)
        assert asyncio.run(checker.run(options=options)) is True

        shell.assert_not_awaited()
        git.add_worktree.assert_not_awaited()
