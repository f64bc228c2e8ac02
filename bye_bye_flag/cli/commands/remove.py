"""Remove command: a single flag, outside the orchestrator."""

import asyncio
import json
import logging
import sys

import click
from rich.console import Console

from ...agents.runtime import resolve_agent_runtime
from ...core.preflight import check_prerequisites
from ...core.process import default_tracker
from ...core.remover import FlagRemover
from ...exceptions import ByeByeFlagError
from ...models.task import RemovalRequest, RemovalStatus
from ..helpers import fail, get_config_context

logger = logging.getLogger(__name__)


async def _remove(context, request):
    default_tracker.install_signal_handlers()
    agent_runtime = resolve_agent_runtime(context.config)
    await check_prerequisites(context, agent_runtime, request.dry_run)
    return await FlagRemover(context, agent_runtime).remove(request, log=logger)


@click.command()
@click.option('--target-repos', required=True, help='Directory containing bye-bye-flag-config.json')
@click.option('--flag', 'flag_key', required=True, help='Feature flag key to remove')
@click.option('--keep', 'keep_branch', required=True, type=click.Choice(['enabled', 'disabled']),
              help='Which branch of the flag to keep')
@click.option('--dry-run', is_flag=True, help='Show changes without committing or opening PRs')
@click.option('--keep-worktree', is_flag=True, help='Keep the workspace after finishing')
def remove(target_repos, flag_key, keep_branch, dry_run, keep_worktree):
    """Remove a single feature flag"""
    console = Console()
    context = get_config_context(target_repos)
    request = RemovalRequest(
        flag_key=flag_key,
        keep_branch=keep_branch,
        dry_run=dry_run,
        keep_worktree=keep_worktree,
    )

    try:
        result = asyncio.run(_remove(context, request))
    except ByeByeFlagError as e:
        fail(e)

    console.print("\n[bold]--- RESULT ---[/bold]")
    console.print_json(json.dumps(result.to_dict()))
    if result.status is RemovalStatus.FAILED:
        sys.exit(1)
