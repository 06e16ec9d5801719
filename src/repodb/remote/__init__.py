"""Remote store clients."""

from repodb.remote.base import RemoteStore
from repodb.remote.github import GitHubStore

__all__ = ["GitHubStore", "RemoteStore"]
