"""Domain exceptions shared across watchers, queue, and router."""

from __future__ import annotations


class TriageError(RuntimeError):
    """Base class for errors raised by triageq components."""


class PendingActionError(TriageError):
    """A destructive action could not be staged or executed."""


class ClassificationError(TriageError):
    """The classification capability failed or returned unusable output."""


class AuthorizationRequiredError(TriageError):
    """A provider call was attempted without a signed-in account."""

    def __init__(self, provider: str = "Google") -> None:
        super().__init__(
            f"Not signed into {provider}. Sign in from Settings before using this feature."
        )
        self.provider = provider


class WatcherStateEncryptionError(TriageError):
    """Persisted watcher state could not be encrypted or decrypted."""


class PathNotAllowedError(TriageError):
    """A tool tried to touch a path outside the folders the user granted."""
