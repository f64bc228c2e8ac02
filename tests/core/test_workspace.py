"""Tests for the workspace lifecycle manager."""

import asyncio
import json
import shutil
from datetime import datetime
from pathlib import Path

import pytest

from bye_bye_flag.core.process import CommandResult
from bye_bye_flag.core.workspace import (
    RepoLockRegistry,
    Workspace,
    WorkspaceManager,
    WorkspaceMetadata,
    WorkspaceRepo,
    run_setup_commands,
)
from bye_bye_flag.exceptions import WorkspaceSetupError
from bye_bye_flag.models.review import ReviewRecord, ReviewState, ReviewStatus
from bye_bye_flag.services.exceptions import GitServiceError


class FakeGit:
    """In-memory stand-in for GitService that touches the real filesystem for worktrees."""

    events = []
    registered = {}
    fail_add = set()
    fail_remove = set()

    def __init__(self, repo_path):
        self.repo_path = Path(repo_path)
        self.name = self.repo_path.name

    @classmethod
    def reset(cls):
        cls.events = []
        cls.registered = {}
        cls.fail_add = set()
        cls.fail_remove = set()

    async def delete_branch(self, branch_name):
        self.events.append(("begin", self.name, branch_name))
        await asyncio.sleep(0)
        return True

    async def delete_remote_branch(self, branch_name):
        self.events.append(("delete-remote", self.name, branch_name))
        await asyncio.sleep(0)
        return True

    async def add_worktree(self, branch_name, worktree_path, start_point):
        await asyncio.sleep(0)
        if self.name in self.fail_add:
            raise GitServiceError(f"Git command failed (git worktree add): fatal in {self.name}")
        Path(worktree_path).mkdir(parents=True)
        self.registered.setdefault(self.name, set()).add(Path(worktree_path).resolve())
        self.events.append(("end", self.name, branch_name, start_point))

    async def remove_worktree(self, worktree_path, check=True):
        self.events.append(("remove", self.name, str(worktree_path)))
        if self.name in self.fail_remove and check:
            raise GitServiceError("Git command failed (git worktree remove): locked")
        shutil.rmtree(worktree_path, ignore_errors=True)
        self.registered.get(self.name, set()).discard(Path(worktree_path).resolve())
        return True

    async def list_worktrees(self):
        return [self.repo_path.resolve()] + sorted(self.registered.get(self.name, set()))


async def ok_shell(command, cwd, shell_init=None):
    return CommandResult(args=(), returncode=0, stdout="", stderr="")


@pytest.fixture
def git_repos(repos_dir):
    """Make the configured repos look like git clones."""
    for name in ("svc-a", "svc-b"):
        (repos_dir / name / ".git").mkdir()
    FakeGit.reset()
    return repos_dir


@pytest.fixture
def manager(config_context, git_repos):
    return WorkspaceManager(config_context, git_factory=FakeGit, shell_runner=ok_shell)


def _state(key, status):
    record = ReviewRecord(url=f"https://x/{key}", state="OPEN" if status is ReviewStatus.OPEN else "CLOSED",
                          declined=status is ReviewStatus.DECLINED,
                          created_at=datetime(2024, 1, 1))
    return ReviewState(key, status, record, (record,))


class TestCreate:
    """Test cases for WorkspaceManager.create."""

    def test_creates_worktrees_and_metadata(self, manager, config_context):
        """Test that every repo gets a worktree and metadata is written."""
        (config_context.repos_dir / "CONTEXT.md").write_text("# context")

        workspace = asyncio.run(manager.create("remove-flag/my-flag"))

        assert workspace.path == config_context.worktree_base_path / "remove-flag-my-flag"
        assert [r.name for r in workspace.repos] == ["svc-a", "svc-b"]
        assert all(r.worktree_path.is_dir() for r in workspace.repos)
        metadata = WorkspaceMetadata.read(workspace.path)
        assert metadata.branch_name == "remove-flag/my-flag"
        assert metadata.repos_dir == str(config_context.repos_dir)
        assert (workspace.path / "CONTEXT.md").read_text() == "# context"

    def test_uses_repo_base_branch(self, manager):
        """Test that worktrees start from origin/<baseBranch>."""
        asyncio.run(manager.create("remove-flag/x"))
        starts = {e[1]: e[3] for e in FakeGit.events if e[0] == "end"}
        assert starts == {"svc-a": "origin/main", "svc-b": "origin/develop"}

    def test_dry_run_keeps_remote_branch(self, manager):
        """Test that the remote branch is left alone when asked."""
        asyncio.run(manager.create("remove-flag/x", delete_remote_branch=False))
        assert not [e for e in FakeGit.events if e[0] == "delete-remote"]

    def test_rollback_on_failure(self, manager, config_context):
        """Test that a failing repo rolls back all worktrees and the directory."""
        FakeGit.fail_add = {"svc-b"}

        with pytest.raises(WorkspaceSetupError, match="Failed to setup worktrees") as exc_info:
            asyncio.run(manager.create("remove-flag/x"))

        assert "svc-b" in str(exc_info.value)
        assert not (config_context.worktree_base_path / "remove-flag-x").exists()
        removed = {e[1] for e in FakeGit.events if e[0] == "remove"}
        assert removed == {"svc-a", "svc-b"}

    def test_setup_failure_rolls_back(self, config_context, git_repos):
        """Test that a failing setup command is reported with its output."""
        async def failing_shell(command, cwd, shell_init=None):
            return CommandResult(args=(), returncode=2, stdout="", stderr="npm ERR!")

        manager = WorkspaceManager(config_context, git_factory=FakeGit, shell_runner=failing_shell)
        with pytest.raises(WorkspaceSetupError, match="npm ci") as exc_info:
            asyncio.run(manager.create("remove-flag/x"))
        assert "npm ERR!" in str(exc_info.value)
        assert not (config_context.worktree_base_path / "remove-flag-x").exists()

    def test_missing_git_dir(self, config_context, repos_dir):
        """Test that a repo without .git is rejected before anything is created."""
        manager = WorkspaceManager(config_context, git_factory=FakeGit, shell_runner=ok_shell)
        with pytest.raises(WorkspaceSetupError, match="not a git repository"):
            asyncio.run(manager.create("remove-flag/x"))
        assert not config_context.worktree_base_path.exists()

    def test_per_repo_mutations_do_not_interleave(self, manager):
        """Test that concurrent creates serialise git mutations per repo."""
        async def create_many():
            await asyncio.gather(*(manager.create(f"remove-flag/f{i}") for i in range(4)))

        asyncio.run(create_many())

        for repo in ("svc-a", "svc-b"):
            sequence = [e for e in FakeGit.events if e[1] == repo and e[0] in ("begin", "end")]
            assert len(sequence) == 8
            for begin, end in zip(sequence[::2], sequence[1::2]):
                assert begin[0] == "begin" and end[0] == "end"
                assert begin[2] == end[2]

    def test_cancel_during_setup_rolls_back(self, config_context, git_repos):
        """Test that cancelling create mid-setup leaves no worktree or directory behind."""
        started = []

        async def slow_shell(command, cwd, shell_init=None):
            started.append(command)
            await asyncio.sleep(30)
            return CommandResult(args=(), returncode=0, stdout="", stderr="")

        manager = WorkspaceManager(config_context, git_factory=FakeGit, shell_runner=slow_shell)

        async def cancel_mid_setup():
            task = asyncio.ensure_future(manager.create("remove-flag/x"))
            while not started:
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(cancel_mid_setup())

        assert started == ["npm ci"]
        assert not (config_context.worktree_base_path / "remove-flag-x").exists()
        assert all(not paths for paths in FakeGit.registered.values())


class TestDestroy:
    """Test cases for WorkspaceManager.destroy."""

    def test_destroy_removes_directory(self, manager):
        """Test that destroy removes worktrees then the directory."""
        workspace = asyncio.run(manager.create("remove-flag/x"))
        assert asyncio.run(manager.destroy(workspace))
        assert not workspace.path.exists()

    def test_destroy_skips_missing_worktrees(self, manager, tmp_path):
        """Test that already-removed worktrees are not an error."""
        path = tmp_path / "ws"
        path.mkdir()
        workspace = Workspace(path, "remove-flag/x", [WorkspaceRepo("svc-a", tmp_path, path / "svc-a")])
        assert asyncio.run(manager.destroy(workspace))
        assert not FakeGit.events

    def test_destroy_keeps_directory_on_failure(self, manager):
        """Test that a failed removal leaves the workspace in place."""
        workspace = asyncio.run(manager.create("remove-flag/x"))
        FakeGit.fail_remove = {"svc-a"}
        assert not asyncio.run(manager.destroy(workspace))
        assert workspace.path.exists()


class TestReclaim:
    """Test cases for WorkspaceManager.reclaim."""

    def test_reclaims_closed_and_keeps_open(self, manager):
        """Test that only workspaces without an open PR are removed."""
        closed = asyncio.run(manager.create("remove-flag/closed"))
        opened = asyncio.run(manager.create("remove-flag/opened"))
        states = {
            "closed": _state("closed", ReviewStatus.CLEAR),
            "opened": _state("opened", ReviewStatus.OPEN),
        }

        reclaimed = asyncio.run(manager.reclaim(states))

        assert reclaimed == [closed.path]
        assert not closed.path.exists()
        assert opened.path.exists()

    def test_declined_is_reclaimed(self, manager):
        """Test that a declined flag's workspace is cleaned up."""
        workspace = asyncio.run(manager.create("remove-flag/nope"))
        asyncio.run(manager.reclaim({"nope": _state("nope", ReviewStatus.DECLINED)}))
        assert not workspace.path.exists()

    def test_foreign_repos_dir_untouched(self, manager, config_context):
        """Test that workspaces created from another repos root are left alone."""
        path = config_context.worktree_base_path / "remove-flag-other"
        path.mkdir(parents=True)
        WorkspaceMetadata(repos_dir="/somewhere/else", branch_name="remove-flag/other",
                          created_at="2024-01-01T00:00:00+00:00").write(path)

        assert asyncio.run(manager.reclaim({})) == []
        assert path.exists()

    def test_unrelated_directories_untouched(self, manager, config_context):
        """Test that directories without metadata or legacy prefix are ignored."""
        path = config_context.worktree_base_path / "someone-elses-dir"
        path.mkdir(parents=True)
        (path / "file.txt").write_text("keep")
        assert asyncio.run(manager.reclaim({})) == []
        assert (path / "file.txt").exists()

    def test_invalid_metadata_is_not_ownership(self, manager, config_context):
        """Test that unreadable metadata does not make a workspace owned."""
        path = config_context.worktree_base_path / "not-ours"
        path.mkdir(parents=True)
        (path / ".bye-bye-flag-workspace.json").write_text(json.dumps({"createdBy": "someone"}))
        assert asyncio.run(manager.reclaim({})) == []
        assert path.exists()

    def test_legacy_removes_only_registered_worktrees(self, manager, config_context):
        """Test that legacy cleanup keeps unknown content and the directory."""
        legacy = config_context.worktree_base_path / "remove-flag-old"
        (legacy / "svc-a").mkdir(parents=True)
        (legacy / "notes").mkdir()
        FakeGit.registered["svc-a"] = {(legacy / "svc-a").resolve()}

        assert asyncio.run(manager.reclaim({})) == []
        assert not (legacy / "svc-a").exists()
        assert (legacy / "notes").exists()

    def test_legacy_removed_when_empty(self, manager, config_context):
        """Test that a legacy directory holding only worktrees is removed."""
        legacy = config_context.worktree_base_path / "remove-flag-old"
        (legacy / "svc-b").mkdir(parents=True)
        FakeGit.registered["svc-b"] = {(legacy / "svc-b").resolve()}

        assert asyncio.run(manager.reclaim({})) == [legacy]
        assert not legacy.exists()

    def test_no_base_path(self, manager):
        """Test that a missing base path reclaims nothing."""
        assert asyncio.run(manager.reclaim({})) == []


class TestHelpers:
    """Test cases for locks, metadata and setup commands."""

    def test_lock_per_resolved_path(self, tmp_path):
        """Test that equivalent paths share a lock."""
        registry = RepoLockRegistry()
        (tmp_path / "repo").mkdir()
        assert registry.lock_for(tmp_path / "repo") is registry.lock_for(tmp_path / "repo" / ".." / "repo")
        assert registry.lock_for(tmp_path / "repo") is not registry.lock_for(tmp_path)

    def test_metadata_requires_creator(self):
        """Test that metadata from another tool is rejected."""
        assert WorkspaceMetadata.from_dict({"createdBy": "other", "reposDir": "/r",
                                            "branchName": "b", "createdAt": "t"}) is None

    def test_setup_substitutes_main_repo(self, tmp_path):
        """Test that ${MAIN_REPO} expands to the absolute main clone path."""
        calls = []

        async def shell(command, cwd, shell_init=None):
            calls.append((command, cwd, shell_init))
            return CommandResult(args=(), returncode=0, stdout="", stderr="")

        asyncio.run(run_setup_commands("svc", tmp_path / "wt", tmp_path / "main",
                                       ["cp ${MAIN_REPO}/.env ."], shell_init="init", runner=shell))

        assert calls == [(f"cp {(tmp_path / 'main').resolve()}/.env .", tmp_path / "wt", "init")]
