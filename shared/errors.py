"""
Error taxonomy shared by every layer.

Each error carries the HTTP status the API layer renders it with.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that surface to a caller."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationMissing(AppError):
    """An optional feature is disabled because its configuration is absent."""

    status_code = 503


class ProviderFailure(AppError):
    """An upstream provider (model, embeddings, vector store) failed."""

    status_code = 502


class RequestValidationError(AppError):
    """The caller supplied an incomplete or malformed request."""

    status_code = 400


class AuthorizationError(AppError):
    """A privileged operation was called without the right secret."""

    status_code = 403


class RateLimitExceeded(AppError):
    """Too many requests from one client in the current window."""

    status_code = 429

    def __init__(self, message: str, reset_seconds: int, limit: int = 0):
        super().__init__(message)
        self.reset_seconds = reset_seconds
        self.limit = limit


class VectorStoreError(Exception):
    """Structured error returned by the vector store (e.g. undefined routine)."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
