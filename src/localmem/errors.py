"""localmem errors -- domain failures raised by the core and mapped by the transports."""

from typing import Optional


class LocalMemError(Exception):
    """Base class for all localmem domain failures."""


class ValidationError(LocalMemError, ValueError):
    """Input rejected before touching storage or the embedding provider."""


class PolicyViolation(LocalMemError):
    """Operation refused by a bag policy or a protection rule."""


class NotFoundError(LocalMemError, LookupError):
    """Referenced bag or memory does not exist."""


class EmbeddingError(LocalMemError):
    """The embedding provider failed (unreachable, non-success, bad payload)."""

    retryable = False

    def __init__(self, message: str, retryable: Optional[bool] = None):
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class EmbeddingTimeout(EmbeddingError):
    """The embedding provider did not answer in time. Safe to resubmit."""

    retryable = True
