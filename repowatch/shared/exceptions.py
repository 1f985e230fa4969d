"""Custom exception hierarchy for repowatch."""


class RepoWatchError(Exception):
    """Base exception for all repowatch errors."""

    pass


class ConfigError(RepoWatchError):
    """Raised when configuration validation fails."""

    pass


class FetchError(RepoWatchError):
    """Raised when fetching one repository category fails."""

    pass


class AuthError(FetchError):
    """Raised when the GitHub credential is missing or rejected.

    Aborts a whole poll cycle rather than a single category.
    """

    pass


class GitHubAPIError(FetchError):
    """Raised when GitHub API requests fail."""

    pass


class PersistenceError(RepoWatchError):
    """Raised when key-value store operations fail."""

    pass
