"""Custom exceptions for service layer."""


class ServiceError(Exception):
    """Base exception for all service-related errors."""

    pass


class GitServiceError(ServiceError):
    """Exception raised for Git service operations."""

    pass


class GitHubServiceError(ServiceError):
    """Exception raised for GitHub CLI operations."""

    pass
