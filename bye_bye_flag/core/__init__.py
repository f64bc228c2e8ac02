"""Core orchestration engine for bye-bye-flag."""
