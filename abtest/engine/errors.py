from typing import Optional


class EngineError(Exception):
    """Base class for every failure the assignment engine reports."""


class NetworkError(EngineError):
    """A backend call timed out, failed in transport, or returned non-2xx."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(EngineError):
    """The experiment cannot be sampled (it has no variants)."""


class NoBaselineError(EngineError):
    """The experiment is inactive and neither a baseline nor a fallback exists."""


class CacheError(EngineError):
    """A client cache tier could not be read or written."""


def as_engine_error(error: Exception) -> EngineError:
    """Returns ``error`` unchanged if it is an EngineError, else wraps it."""
    if isinstance(error, EngineError):
        return error
    wrapped = EngineError(f"{type(error).__name__}: {error}")
    wrapped.__cause__ = error
    return wrapped
