"""Git service for abstracting Git operations."""

import logging
from pathlib import Path
from typing import List, Optional

from ..core.process import CommandResult, run_command
from .exceptions import GitServiceError

logger = logging.getLogger(__name__)


class GitService:
    """Service for Git operations on one repository or worktree."""

    def __init__(self, repo_path: Path, runner=run_command):
        """Initialize Git service.

        Args:
            repo_path: Path to the git repository or worktree
            runner: Coroutine used to execute commands (see ``run_command``)
        """
        self.repo_path = Path(repo_path)
        self._runner = runner

    async def _run_git_command(self, args: List[str], check: bool = True) -> CommandResult:
        """Run a git command with proper error handling.

        Args:
            args: Git command arguments
            check: Raise when the exit code is non-zero

        Returns:
            Command result

        Raises:
            GitServiceError: If command fails
        """
        cmd = ["git"] + args
        try:
            result = await self._runner(cmd, self.repo_path)
        except OSError as e:
            raise GitServiceError(f"Unexpected error running git command: {e}") from e
        if check and not result.ok:
            error_msg = result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
            raise GitServiceError(f"Git command failed (git {' '.join(args)}): {error_msg}")
        return result

    async def fetch(self, remote: str = "origin") -> None:
        """Fetch latest refs from a remote.

        Raises:
            GitServiceError: If fetch fails
        """
        await self._run_git_command(["fetch", remote])

    async def add_worktree(self, branch_name: str, worktree_path: Path, start_point: str) -> None:
        """Create a worktree on a new branch.

        Args:
            branch_name: Branch to create
            worktree_path: Where to check out the worktree
            start_point: Commit-ish the branch starts from

        Raises:
            GitServiceError: If the worktree cannot be created
        """
        await self._run_git_command(
            ["worktree", "add", "-b", branch_name, str(worktree_path), start_point]
        )
        logger.debug(f"Created worktree {worktree_path} on {branch_name}")

    async def remove_worktree(self, worktree_path: Path, check: bool = True) -> bool:
        """Force-remove a worktree.

        Returns:
            True if git removed the worktree

        Raises:
            GitServiceError: If removal fails and check is set
        """
        result = await self._run_git_command(
            ["worktree", "remove", str(worktree_path), "--force"], check=check
        )
        return result.ok

    async def list_worktrees(self) -> List[Path]:
        """List registered worktree paths (resolved), including the main one."""
        result = await self._run_git_command(["worktree", "list", "--porcelain"])
        paths = []
        for line in result.stdout.splitlines():
            if line.startswith("worktree "):
                paths.append(Path(line[len("worktree "):]).resolve())
        return paths

    async def delete_branch(self, branch_name: str) -> bool:
        """Force-delete a local branch. A missing branch is not an error."""
        result = await self._run_git_command(["branch", "-D", branch_name], check=False)
        return result.ok

    async def delete_remote_branch(self, branch_name: str, remote: str = "origin") -> bool:
        """Delete a branch on the remote. A missing branch is not an error."""
        result = await self._run_git_command(["push", remote, "--delete", branch_name], check=False)
        return result.ok

    async def grep_ref(self, pattern: str, ref: str) -> List[str]:
        """Find files at ``ref`` matching an extended regex.

        Returns:
            Matching paths (empty when nothing matches)

        Raises:
            GitServiceError: If git grep fails for a reason other than no match
        """
        result = await self._run_git_command(["grep", "-lE", pattern, ref], check=False)
        if result.returncode == 1 and not result.stderr.strip():
            return []
        if not result.ok:
            raise GitServiceError(f"git grep failed in {self.repo_path}: {result.stderr.strip()}")
        return [line for line in result.stdout.splitlines() if line.strip()]

    async def has_changes(self) -> bool:
        """Check for uncommitted changes, including untracked files."""
        result = await self._run_git_command(["status", "--porcelain"])
        return bool(result.stdout.strip())

    async def stage_all(self) -> None:
        await self._run_git_command(["add", "-A"])

    async def staged_diff(self) -> str:
        result = await self._run_git_command(["diff", "--cached"])
        return result.stdout

    async def commit(self, message: str) -> None:
        """Commit staged changes.

        Raises:
            GitServiceError: If commit fails
        """
        await self._run_git_command(["commit", "-m", message])

    async def push_branch(self, branch_name: str, set_upstream: bool = True, remote: str = "origin") -> None:
        """Push branch to remote.

        Args:
            branch_name: Name of the branch
            set_upstream: Set upstream tracking
            remote: Remote name

        Raises:
            GitServiceError: If push fails
        """
        args = ["push"]
        if set_upstream:
            args.append("-u")
        args.extend([remote, branch_name])
        await self._run_git_command(args)

    async def version(self) -> Optional[str]:
        """Return ``git --version`` output, or None when git is unavailable."""
        try:
            result = await self._run_git_command(["--version"])
        except GitServiceError:
            return None
        return result.stdout.strip()
