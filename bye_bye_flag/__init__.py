"""bye-bye-flag - Remove stale feature flags with a coding agent."""

__version__ = "0.1.0"

# Export main CLI for convenience
from .cli.main import cli

__all__ = ['cli']
