"""Checks and preparation that run once before any flag is attempted."""

import asyncio
import logging
from typing import List

from ..exceptions import PrerequisiteError
from ..services.exceptions import GitServiceError
from ..services.git_service import GitService
from .config_context import ConfigContext
from .process import run_command, run_shell

logger = logging.getLogger(__name__)


async def _command_works(args: List[str], runner) -> bool:
    try:
        result = await runner(args)
    except OSError:
        return False
    return result.ok


async def check_prerequisites(context: ConfigContext, agent_runtime, dry_run: bool, runner=run_command) -> None:
    """Verify git, the repos root, the agent CLI and (outside dry run) gh.

    Raises:
        PrerequisiteError: With every problem found, not just the first
    """
    errors = []

    if not await _command_works(["git", "--version"], runner):
        errors.append("git is not installed or not in PATH")

    if not context.repos_dir.exists():
        errors.append(f"Config directory does not exist: {context.repos_dir}")
    elif not context.repos_dir.is_dir():
        errors.append(f"Config directory is not a directory: {context.repos_dir}")

    agent_args = [agent_runtime.prerequisite_command] + agent_runtime.prerequisite_args
    if not await _command_works(agent_args, runner):
        if agent_runtime.kind == "claude":
            errors.append("claude CLI is not installed. Install with: npm install -g @anthropic-ai/claude-code")
        elif agent_runtime.kind == "codex":
            errors.append("codex CLI is not installed. Install Codex CLI first.")
        else:
            errors.append(
                f'Configured agent CLI "{agent_runtime.prerequisite_command}" is not installed or not in PATH.'
            )

    if not dry_run:
        if not await _command_works(["gh", "--version"], runner):
            errors.append("gh CLI is not installed. Install from: https://cli.github.com/")
        elif not await _command_works(["gh", "auth", "status"], runner):
            errors.append("GitHub CLI is not authenticated. Run: gh auth login")

    if errors:
        raise PrerequisiteError("Prerequisites not met:\n" + "\n".join(f"  - {e}" for e in errors))


async def fetch_all_repos(context: ConfigContext, git_factory=GitService, log: logging.Logger = logger) -> None:
    """Fetch origin in every configured repo in parallel. Failures are only warnings."""

    async def fetch(repo_name: str) -> None:
        log.info(f"  Fetching {repo_name}...")
        try:
            await git_factory(context.repo_path(repo_name)).fetch()
        except GitServiceError as e:
            log.warning(f"  Warning: Failed to fetch {repo_name}: {e}")

    await asyncio.gather(*(fetch(name) for name in context.repo_names))


async def run_main_setup(context: ConfigContext, shell_runner=run_shell, log: logging.Logger = logger) -> None:
    """Run ``mainSetup`` once per repo in the main clone, in config order.

    Raises:
        PrerequisiteError: On the first failing command
    """
    config = context.config
    pending = [(name, config.main_setup_for(name)) for name in context.repo_names]
    pending = [(name, commands) for name, commands in pending if commands]
    if not pending:
        return

    log.info("Running main setup on repos...")
    for repo_name, commands in pending:
        repo_path = context.repo_path(repo_name)
        log.info(f"  {repo_name}:")
        for cmd in commands:
            log.info(f"    Running: {cmd}")
            try:
                result = await shell_runner(cmd, repo_path, config.shell_init_for(repo_name))
            except OSError as e:
                raise PrerequisiteError(f"Main setup failed for {repo_name}: {cmd}: {e}") from e
            if not result.ok:
                detail = result.combined_output()
                raise PrerequisiteError(
                    f"Main setup failed for {repo_name}: {cmd}" + (f"\n\n{detail}" if detail else "")
                )
