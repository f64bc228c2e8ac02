"""Workspace lifecycle: one directory per flag holding a worktree per repository."""

import asyncio
import json
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from ..exceptions import WorkspaceSetupError
from ..models.review import ReviewState, ReviewStatus
from ..services.exceptions import GitServiceError
from ..services.git_service import GitService
from .config_context import ConfigContext
from .constants import (
    BRANCH_PREFIX,
    LEGACY_WORKSPACE_PREFIX,
    SETUP_OUTPUT_CLIP_CHARS,
    WORKSPACE_CREATOR,
    WORKSPACE_METADATA_FILENAME,
)
from .process import run_shell

logger = logging.getLogger(__name__)


def workspace_dir_name(branch_name: str) -> str:
    return branch_name.replace("/", "-")


@dataclass
class WorkspaceRepo:
    name: str
    original_path: Path
    worktree_path: Path


@dataclass
class Workspace:
    """An isolated set of worktrees for one flag."""
    path: Path
    branch_name: str
    repos: List[WorkspaceRepo] = field(default_factory=list)


@dataclass
class WorkspaceMetadata:
    """Ownership record written into every workspace."""
    repos_dir: str
    branch_name: str
    created_at: str
    created_by: str = WORKSPACE_CREATOR

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "createdBy": self.created_by,
            "reposDir": self.repos_dir,
            "branchName": self.branch_name,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Optional["WorkspaceMetadata"]:
        """Create from dictionary; None unless every field is present and valid."""
        if not isinstance(data, dict) or data.get("createdBy") != WORKSPACE_CREATOR:
            return None
        fields = [data.get("reposDir"), data.get("branchName"), data.get("createdAt")]
        if not all(isinstance(value, str) for value in fields):
            return None
        return cls(repos_dir=fields[0], branch_name=fields[1], created_at=fields[2])

    def write(self, workspace_path: Path) -> None:
        (workspace_path / WORKSPACE_METADATA_FILENAME).write_text(
            json.dumps(self.to_dict(), indent=2), encoding="utf-8"
        )

    @classmethod
    def read(cls, workspace_path: Path) -> Optional["WorkspaceMetadata"]:
        metadata_path = workspace_path / WORKSPACE_METADATA_FILENAME
        try:
            return cls.from_dict(json.loads(metadata_path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError):
            return None


class RepoLockRegistry:
    """One FIFO lock per repository, keyed by resolved path."""

    def __init__(self):
        self._locks: Dict[Path, asyncio.Lock] = {}

    def lock_for(self, repo_path: Path) -> asyncio.Lock:
        key = Path(repo_path).resolve()
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock


def _clip(text: str, limit: int = SETUP_OUTPUT_CLIP_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n... (truncated)"


async def run_setup_commands(
    repo_name: str,
    worktree_path: Path,
    main_repo_path: Path,
    commands: List[str],
    shell_init: Optional[str] = None,
    runner=run_shell,
    log: logging.Logger = logger,
) -> None:
    """Run setup commands in a worktree, stopping at the first failure.

    ``${MAIN_REPO}`` in a command is replaced by the absolute main clone path.

    Raises:
        WorkspaceSetupError: If a command exits non-zero or cannot be started
    """
    main_repo = str(Path(main_repo_path).resolve())
    for raw_cmd in commands:
        cmd = raw_cmd.replace("${MAIN_REPO}", main_repo)
        log.info(f"  Running: {cmd}")
        try:
            result = await runner(cmd, worktree_path, shell_init)
        except OSError as e:
            raise WorkspaceSetupError(f'Setup command "{cmd}" failed in {repo_name}: {e}') from e
        if not result.ok:
            output = _clip(result.combined_output())
            message = f'Setup command "{cmd}" failed in {repo_name}: exit code {result.returncode}'
            if output:
                message += f"\n\n{output}"
            raise WorkspaceSetupError(message)


class WorkspaceManager:
    """Creates, destroys and reclaims flag workspaces."""

    def __init__(
        self,
        context: ConfigContext,
        locks: Optional[RepoLockRegistry] = None,
        git_factory=GitService,
        shell_runner=run_shell,
    ):
        self.context = context
        self.locks = locks or RepoLockRegistry()
        self._git_factory = git_factory
        self._shell_runner = shell_runner

    @property
    def base_path(self) -> Path:
        return self.context.worktree_base_path

    def workspace_path(self, branch_name: str) -> Path:
        return self.base_path / workspace_dir_name(branch_name)

    def _validate_repos(self) -> List[str]:
        repo_names = self.context.repo_names
        if not repo_names:
            raise WorkspaceSetupError("No repos configured in bye-bye-flag-config.json")
        for repo_name in repo_names:
            repo_path = self.context.repo_path(repo_name)
            if not repo_path.exists():
                raise WorkspaceSetupError(
                    f'Configured repo "{repo_name}" does not exist in {self.context.repos_dir}'
                )
            if not repo_path.is_dir():
                raise WorkspaceSetupError(f'Configured repo "{repo_name}" is not a directory')
            if not (repo_path / ".git").exists():
                raise WorkspaceSetupError(
                    f'Configured repo "{repo_name}" is not a git repository (no .git directory)'
                )
        return repo_names

    async def create(
        self,
        branch_name: str,
        delete_remote_branch: bool = True,
        log: logging.Logger = logger,
    ) -> Workspace:
        """Create a fresh workspace for ``branch_name``.

        Args:
            branch_name: Branch created in every repository
            delete_remote_branch: Delete any same-named branch on origin first
            log: Logger for progress output

        Returns:
            The created workspace

        Raises:
            WorkspaceSetupError: If validation fails or any repository cannot be set up;
                every repository is rolled back and the directory removed first
        """
        repo_names = self._validate_repos()
        workspace_path = self.workspace_path(branch_name)
        workspace_path.mkdir(parents=True, exist_ok=True)
        WorkspaceMetadata(
            repos_dir=str(self.context.repos_dir),
            branch_name=branch_name,
            created_at=datetime.now(timezone.utc).isoformat(),
        ).write(workspace_path)

        try:
            outcomes = await asyncio.gather(
                *(
                    self._prepare_repo(repo_name, workspace_path, branch_name, delete_remote_branch, log)
                    for repo_name in repo_names
                ),
                return_exceptions=True,
            )
        except BaseException:
            # Cancelled while preparing; a second cancel must not interrupt the rollback
            log.warning(f"Workspace creation interrupted, rolling back {workspace_path}")
            await asyncio.shield(self._rollback(workspace_path, repo_names, log))
            raise

        repos = []
        failures = []
        interrupted: Optional[BaseException] = None
        for repo_name, outcome in zip(repo_names, outcomes):
            if isinstance(outcome, Exception):
                failures.append(f"{repo_name}: {outcome}")
            elif isinstance(outcome, BaseException):
                interrupted = interrupted or outcome
            else:
                repos.append(outcome)

        if interrupted is not None:
            await asyncio.shield(self._rollback(workspace_path, repo_names, log))
            raise interrupted
        if failures:
            await self._rollback(workspace_path, repo_names, log)
            raise WorkspaceSetupError("Failed to setup worktrees:\n" + "\n".join(failures))

        for md_file in sorted(self.context.repos_dir.glob("*.md")):
            if md_file.is_file():
                shutil.copyfile(md_file, workspace_path / md_file.name)

        log.info(f"Workspace created at {workspace_path} with {len(repos)} repos")
        return Workspace(path=workspace_path, branch_name=branch_name, repos=repos)

    async def _prepare_repo(
        self,
        repo_name: str,
        workspace_path: Path,
        branch_name: str,
        delete_remote_branch: bool,
        log: logging.Logger,
    ) -> WorkspaceRepo:
        repo_path = self.context.repo_path(repo_name)
        worktree_path = workspace_path / repo_name
        base_branch = self.context.config.resolve_base_branch(repo_name)
        git = self._git_factory(repo_path)

        async with self.locks.lock_for(repo_path):
            if worktree_path.exists():
                log.info(f"[{repo_name}] Cleaning up existing worktree...")
                await git.remove_worktree(worktree_path, check=False)
            await git.delete_branch(branch_name)
            if delete_remote_branch:
                await git.delete_remote_branch(branch_name)
            log.info(f"[{repo_name}] Creating worktree on branch {branch_name}...")
            await git.add_worktree(branch_name, worktree_path, f"origin/{base_branch}")

        log.info(f"[{repo_name}] Running setup commands...")
        await run_setup_commands(
            repo_name,
            worktree_path,
            repo_path,
            self.context.config.setup_for(repo_name),
            shell_init=self.context.config.shell_init_for(repo_name),
            runner=self._shell_runner,
            log=log,
        )
        log.info(f"[{repo_name}] Setup complete")
        return WorkspaceRepo(name=repo_name, original_path=repo_path, worktree_path=worktree_path)

    async def _rollback(self, workspace_path: Path, repo_names: List[str], log: logging.Logger) -> None:
        for repo_name in repo_names:
            worktree_path = workspace_path / repo_name
            git = self._git_factory(self.context.repo_path(repo_name))
            try:
                await git.remove_worktree(worktree_path, check=False)
            except GitServiceError as e:
                log.error(f"[{repo_name}] Rollback could not remove worktree: {e}")
        shutil.rmtree(workspace_path, ignore_errors=True)

    async def destroy(self, workspace: Workspace, log: logging.Logger = logger) -> bool:
        """Remove a workspace's worktrees and then its directory.

        Worktrees that are already gone are skipped. If a removal fails the
        directory is left in place.

        Returns:
            True if the workspace directory was removed
        """
        failed = False
        for repo in workspace.repos:
            if not repo.worktree_path.exists():
                continue
            log.info(f"Cleaning up worktree at {repo.worktree_path}...")
            try:
                await self._git_factory(repo.original_path).remove_worktree(repo.worktree_path)
            except GitServiceError as e:
                log.error(f"Failed to remove worktree: {e}")
                failed = True
        if failed:
            log.warning(f"Leaving workspace in place: {workspace.path}")
            return False
        shutil.rmtree(workspace.path, ignore_errors=True)
        return True

    async def reclaim(
        self,
        review_states: Mapping[str, ReviewState],
        log: logging.Logger = logger,
    ) -> List[Path]:
        """Delete leftover workspaces whose review is no longer open.

        A workspace with metadata is deleted only when it was created from the
        current repos root. A legacy workspace without metadata only loses the
        sub-directories that are registered worktrees of the configured repos.

        Returns:
            Paths that were removed
        """
        if not self.base_path.is_dir():
            return []

        reclaimed = []
        for entry in sorted(self.base_path.iterdir()):
            if not entry.is_dir():
                continue
            metadata = WorkspaceMetadata.read(entry)
            if metadata is not None:
                if not metadata.branch_name.startswith(BRANCH_PREFIX):
                    continue
                key = metadata.branch_name[len(BRANCH_PREFIX):]
                if Path(metadata.repos_dir).resolve() != self.context.repos_dir.resolve():
                    log.debug(f"Skipping {entry}: created from {metadata.repos_dir}")
                    continue
                if _is_open(review_states, key):
                    log.info(f'  Keeping worktree for "{key}" (PR still open)')
                    continue
                log.info(f'  Cleaning up worktree for "{key}" (PR merged/closed or not found)')
                if await self._reclaim_owned(entry, log):
                    reclaimed.append(entry)
            elif entry.name.startswith(LEGACY_WORKSPACE_PREFIX):
                key = entry.name[len(LEGACY_WORKSPACE_PREFIX):]
                if _is_open(review_states, key):
                    log.info(f'  Keeping worktree for "{key}" (PR still open)')
                    continue
                if await self._reclaim_legacy(entry, log):
                    reclaimed.append(entry)
        return reclaimed

    async def _reclaim_owned(self, workspace_path: Path, log: logging.Logger) -> bool:
        workspace = Workspace(
            path=workspace_path,
            branch_name="",
            repos=[
                WorkspaceRepo(name, self.context.repo_path(name), workspace_path / name)
                for name in self.context.repo_names
            ],
        )
        return await self.destroy(workspace, log)

    async def _reclaim_legacy(self, workspace_path: Path, log: logging.Logger) -> bool:
        registered: Dict[Path, str] = {}
        for repo_name in self.context.repo_names:
            git = self._git_factory(self.context.repo_path(repo_name))
            try:
                for path in await git.list_worktrees():
                    registered[path] = repo_name
            except GitServiceError as e:
                log.warning(f"Could not list worktrees for {repo_name}: {e}")

        for child in sorted(workspace_path.iterdir()):
            owner = registered.get(child.resolve()) if child.is_dir() else None
            if owner is None:
                continue
            log.info(f"  Removing legacy worktree {child}")
            try:
                await self._git_factory(self.context.repo_path(owner)).remove_worktree(child)
            except GitServiceError as e:
                log.error(f"Failed to remove worktree: {e}")

        if any(workspace_path.iterdir()):
            log.info(f"  Leaving {workspace_path}: contains entries not owned by this run")
            return False
        workspace_path.rmdir()
        return True


def _is_open(review_states: Mapping[str, ReviewState], key: str) -> bool:
    state = review_states.get(key)
    return state is not None and state.status is ReviewStatus.OPEN
