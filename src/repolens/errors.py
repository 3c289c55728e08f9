"""Exceptions raised across indexing, retrieval and generation."""

from __future__ import annotations


class RepoLensError(Exception):
    """Base class for repolens errors."""


class ProviderUnavailable(RepoLensError):
    """An embedding or generation model failed to load, errored or timed out."""


class FetchFailure(RepoLensError):
    """Fetching one file's content failed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Could not fetch {path}: {reason}")
        self.path = path
        self.reason = reason


class PersistenceFailure(RepoLensError):
    """The key-value store could not read or write a value."""


class NoIndex(RepoLensError):
    """Retrieval was attempted before an index was built or loaded."""


class CorruptPersistedIndex(RepoLensError):
    """A persisted index payload could not be decoded."""
