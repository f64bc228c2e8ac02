"""Dry check of per-repo setup commands without running any flag removal."""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import click

from ..exceptions import ConfigError, WorkspaceSetupError
from ..services.exceptions import GitServiceError
from ..services.git_service import GitService
from .config_context import ConfigContext
from .process import run_shell
from .workspace import run_setup_commands

logger = logging.getLogger(__name__)


@dataclass
class SetupCheckOptions:
    skip_main_setup: bool = False
    skip_worktree: bool = False


class SetupChecker:
    """Runs ``mainSetup`` and ``setup`` for each repo the way a real run would.

    The worktree is created on a throwaway ``test-setup-<epoch>`` branch and
    removed again when every setup command passes. On failure it is left in
    place for inspection.
    """

    def __init__(
        self,
        context: ConfigContext,
        git_factory=GitService,
        shell_runner=run_shell,
        echo: Callable[[str], None] = click.echo,
    ):
        self.context = context
        self.git_factory = git_factory
        self.shell_runner = shell_runner
        self.echo = echo

    def _repo_names(self, repo: Optional[str]) -> List[str]:
        if repo is None:
            return self.context.repo_names
        if repo not in self.context.repo_names:
            raise ConfigError(f"No config for repo: {repo}")
        return [repo]

    async def run(self, repo: Optional[str] = None, options: Optional[SetupCheckOptions] = None) -> bool:
        """Check one repo or all of them, stopping at the first failure.

        Returns:
            True if every checked repo passed
        """
        options = options or SetupCheckOptions()
        repo_names = self._repo_names(repo)
        self.echo(f"\nTesting setup for {len(repo_names)} repo(s)...")

        for repo_name in repo_names:
            if not await self.check_repo(repo_name, options):
                return False

        self.echo("\n" + "=" * 60)
        self.echo("All setup tests passed!")
        self.echo("=" * 60)
        return True

    async def check_repo(self, repo_name: str, options: SetupCheckOptions) -> bool:
        config = self.context.config
        repo_path = self.context.repo_path(repo_name)
        shell_init = config.shell_init_for(repo_name)

        self.echo("\n" + "=" * 60)
        self.echo(f"Testing: {repo_name}")
        self.echo("=" * 60)
        self.echo(f"Repo path: {repo_path}")
        self.echo(f"Shell init: {shell_init or '(none)'}")

        main_setup = config.main_setup_for(repo_name)
        if not options.skip_main_setup and main_setup:
            self.echo(f"\n--- Main Setup (on {repo_path}) ---")
            for cmd in main_setup:
                if not await self._run_step(cmd, repo_path, shell_init):
                    self.echo("\nMain setup failed. Fix the command and try again.")
                    return False

        if options.skip_worktree:
            self.echo("\n--- Skipping worktree setup ---")
            return True

        return await self._check_worktree(repo_name, repo_path, shell_init)

    async def _run_step(self, cmd: str, cwd: Path, shell_init: Optional[str]) -> bool:
        self.echo(f"\n  $ {cmd}")
        self.echo(f"    cwd: {cwd}")
        try:
            result = await self.shell_runner(cmd, cwd, shell_init)
        except OSError as e:
            self.echo(f"    x Failed: {e}")
            return False
        if not result.ok:
            output = result.combined_output()
            if output:
                self.echo(output)
            self.echo("    x Failed")
            return False
        self.echo("    + Success")
        return True

    async def _check_worktree(self, repo_name: str, repo_path: Path, shell_init: Optional[str]) -> bool:
        test_branch = f"test-setup-{int(time.time() * 1000)}"
        worktree_path = self.context.worktree_base_path / test_branch / repo_name
        git = self.git_factory(repo_path)

        self.echo("\n--- Creating test worktree ---")
        self.echo(f"  Branch: {test_branch}")
        self.echo(f"  Path: {worktree_path}")

        try:
            base_branch = self.context.config.resolve_base_branch(repo_name)
            worktree_path.parent.mkdir(parents=True, exist_ok=True)
            await git.add_worktree(test_branch, worktree_path, f"origin/{base_branch}")
        except (GitServiceError, OSError) as e:
            self.echo(f"\nError creating worktree: {e}")
            return False

        self.echo(f"\n--- Setup Commands (on {worktree_path}) ---")
        try:
            await run_setup_commands(
                repo_name,
                worktree_path,
                repo_path,
                self.context.config.setup_for(repo_name),
                shell_init=shell_init,
                runner=self.shell_runner,
            )
        except WorkspaceSetupError as e:
            self.echo(f"\n{e}")
            self.echo(f"\nSetup command failed. Worktree left at: {worktree_path}")
            self.echo(f"\nTo inspect: cd {worktree_path}")
            self.echo(f"To cleanup: git -C {repo_path} worktree remove {worktree_path} --force")
            return False

        self.echo("\n--- All setup commands passed! ---")
        self.echo("\nCleaning up test worktree...")
        await git.remove_worktree(worktree_path, check=False)
        await git.delete_branch(test_branch)
        try:
            worktree_path.parent.rmdir()
        except OSError:
            logger.debug(f"Left non-empty directory {worktree_path.parent}")
        return True
