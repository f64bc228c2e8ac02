"""CLI commands."""

from .remove import remove
from .run import run
from .test_setup import test_setup

__all__ = ['remove', 'run', 'test_setup']
