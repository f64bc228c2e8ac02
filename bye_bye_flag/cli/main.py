"""Main CLI entry point for bye-bye-flag."""

from pathlib import Path

import click
from dotenv import load_dotenv

from .commands.remove import remove
from .commands.run import run
from .commands.test_setup import test_setup
from .helpers import configure_logging


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.version_option(package_name='bye-bye-flag')
def cli(verbose):
    """bye-bye-flag - Remove stale feature flags with a coding agent"""
    configure_logging(verbose)
    # Variables already in the environment take precedence
    load_dotenv(Path.cwd() / '.env')


# Register commands
cli.add_command(run)
cli.add_command(remove)
cli.add_command(test_setup)


if __name__ == '__main__':
    cli()
