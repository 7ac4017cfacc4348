"""GitHub REST API mocks for testing without network access."""

from .repository import MockGitHubRepository

__all__ = ["MockGitHubRepository"]
