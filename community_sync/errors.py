from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised when configuration is missing or invalid."""


class ApiClientError(RuntimeError):
    """Base class for failures talking to the upstream API."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class RateLimited(ApiClientError):
    """Raised when HTTP 429 persists after the retry budget is spent."""

    status_code = 429


class HttpError(ApiClientError):
    """Raised on a non-success HTTP status other than 429, or a transport failure."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message, path=path)
        self.status_code = status_code


class ApiError(ApiClientError):
    """Raised when a 2xx response carries a non-"success" status field."""


class StorageError(RuntimeError):
    """Raised when reading or writing state in SQLite fails."""
