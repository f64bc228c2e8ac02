"""Service layer for abstracting git and GitHub operations."""

from .git_service import GitService
from .github_service import GitHubService
from .exceptions import (
    ServiceError,
    GitServiceError,
    GitHubServiceError,
)

__all__ = [
    "GitService",
    "GitHubService",
    "ServiceError",
    "GitServiceError",
    "GitHubServiceError",
]
