"""CLI helper functions for bye-bye-flag.

Shared by the commands for:
- Loading the config context for ``--target-repos``
- Consistent error reporting and exit codes
- Formatting the end-of-run summary
"""

import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

import click
from tabulate import tabulate

from bye_bye_flag.core.config_context import ConfigContext, load_config_context
from bye_bye_flag.core.constants import NO_CODE_REFERENCES_REASON
from bye_bye_flag.exceptions import ByeByeFlagError
from bye_bye_flag.models.summary import FlagResult, FlagStatus, RunSummary

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(verbose: bool = False) -> None:
    """Configure root logging for a CLI invocation."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        force=True,
    )


def get_config_context(target_repos: str) -> ConfigContext:
    """Load the config context, exit with an error message on failure.

    Args:
        target_repos: Directory containing bye-bye-flag-config.json

    Returns:
        The loaded ConfigContext
    """
    try:
        return load_config_context(Path(target_repos))
    except ByeByeFlagError as e:
        fail(e)


def fail(error: object) -> None:
    """Print an error and exit with status 1."""
    click.echo(click.style(f"Error: {error}", fg='red'), err=True)
    sys.exit(1)


def format_duration(ms: int) -> str:
    """Format milliseconds as a short human readable duration."""
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    minutes, seconds = divmod(ms // 1000, 60)
    if minutes < 60:
        return f"{minutes}m {seconds}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"


def group_by_creator(flags: List[FlagResult]) -> Dict[str, List[str]]:
    """Group flag keys by creator, sorted by name with "Unknown" last."""
    groups: Dict[str, List[str]] = {}
    for flag in flags:
        groups.setdefault(flag.created_by or "Unknown", []).append(flag.key)
    ordered = sorted(groups, key=lambda name: (name == "Unknown", name.lower()))
    return {name: groups[name] for name in ordered}


def format_results_table(flags: List[FlagResult]) -> Optional[str]:
    """Table of flags that were attempted, or None when there are none."""
    status_colors = {
        FlagStatus.COMPLETE: 'green',
        FlagStatus.FAILED: 'red',
        FlagStatus.SKIPPED: 'yellow',
    }
    rows = []
    for flag in flags:
        if flag.result is None:
            continue
        status = click.style(flag.status.value.upper(), fg=status_colors[flag.status])
        duration = format_duration(flag.duration_ms) if flag.duration_ms is not None else ""
        detail = ", ".join(flag.pr_urls) or flag.error or flag.skipped_reason or ""
        rows.append([flag.key, status, duration, detail])
    if not rows:
        return None
    return tabulate(rows, headers=["FLAG", "STATUS", "DURATION", "DETAIL"], tablefmt="simple")


def print_run_summary(summary: RunSummary) -> None:
    """Print the end-of-run report."""
    counts = summary.results
    click.echo("\n" + "=" * 60)
    click.echo("bye-bye-flag Run Complete".center(60).rstrip())
    click.echo("=" * 60)
    click.echo(f"Fetcher: {summary.fetcher_type} (found {summary.total_fetched} stale flags)")
    click.echo(f"Duration: {format_duration(summary.duration_ms)}")
    click.echo(f"Processed: {summary.processed} flags")
    click.echo("")
    click.echo(click.style(f"  + {counts.prs_created} PRs created", fg='green'))
    click.echo(f"  o {counts.no_changes} no code references")
    click.echo(click.style(f"  x {counts.failed} failed", fg='red' if counts.failed else None))
    click.echo(f"  - {counts.skipped} skipped")
    if counts.remaining:
        click.echo(f"  ... {counts.remaining} remaining (orchestrator.maxPrs limit)")

    table = format_results_table(summary.flags)
    if table:
        click.echo("")
        click.echo(table)

    with_prs = [f for f in summary.flags if f.pr_urls]
    if with_prs:
        click.echo("\nPRs created:")
        for flag in with_prs:
            for url in flag.pr_urls:
                click.echo(f"  * {flag.key}: {url}")

    skipped = [f for f in summary.flags if f.status is FlagStatus.SKIPPED and f.skipped_reason]
    if skipped:
        click.echo("\nSkipped:")
        for flag in skipped:
            click.echo(f"  * {flag.key}: {flag.skipped_reason}")

    failed = [f for f in summary.flags if f.status is FlagStatus.FAILED]
    if failed:
        click.echo("\nFailed:")
        for flag in failed:
            click.echo(f"  * {flag.key}: {flag.error}")

    no_code = [
        f for f in summary.flags
        if f.status is FlagStatus.COMPLETE and f.skipped_reason == NO_CODE_REFERENCES_REASON
    ]
    if no_code:
        click.echo("\nNo code references (safe to remove from feature flag system):")
        for creator, keys in group_by_creator(no_code).items():
            click.echo(f"  {creator}:")
            for key in keys:
                click.echo(f"    * {key}")

    click.echo(f"\nLogs: {summary.log_dir}")
    if counts.remaining:
        click.echo("\nTo continue processing remaining flags, run the command again.")
    click.echo("")
