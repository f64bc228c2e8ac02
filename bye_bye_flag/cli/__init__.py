"""Command line interface for bye-bye-flag."""
