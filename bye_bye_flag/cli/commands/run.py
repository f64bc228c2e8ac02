"""Run command for bye-bye-flag."""

import asyncio
import sys

import click

from ...agents.runtime import resolve_agent_runtime
from ...core.orchestrator import Orchestrator
from ...core.process import default_tracker
from ...exceptions import ByeByeFlagError
from ...fetchers import fetch_flags
from ..helpers import fail, get_config_context, print_run_summary


async def _run_orchestrator(orchestrator, flags, fetcher_type):
    default_tracker.install_signal_handlers()
    return await orchestrator.run(flags, fetcher_type=fetcher_type)


@click.command()
@click.option('--target-repos', required=True, help='Directory containing bye-bye-flag-config.json')
@click.option('--input', 'input_path', type=click.Path(dir_okay=False), help='JSON file with flags to remove')
@click.option('--dry-run', is_flag=True, help='Run the agent but do not commit, push or open PRs')
def run(target_repos, input_path, dry_run):
    """Remove stale feature flags across all configured repos"""
    context = get_config_context(target_repos)

    try:
        if input_path:
            fetcher_type = "manual"
            flags = fetch_flags(None, input_path)
        else:
            fetcher = context.require_fetcher()
            fetcher_type = fetcher.type
            flags = fetch_flags(fetcher)

        orchestrator = Orchestrator(
            context,
            context.runtime_settings(),
            resolve_agent_runtime(context.config),
            dry_run=dry_run,
        )
        summary = asyncio.run(_run_orchestrator(orchestrator, flags, fetcher_type))
    except ByeByeFlagError as e:
        fail(e)

    print_run_summary(summary)
    if summary.results.failed:
        sys.exit(1)
