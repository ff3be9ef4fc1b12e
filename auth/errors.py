from __future__ import annotations


class StoreError(RuntimeError):
    """Raised when the session store cannot read or commit a record."""


class AuthError(RuntimeError):
    """Base for failures to produce a usable user token."""


class NoTokenError(AuthError):
    """Raised when no operator has completed a login yet."""

    def __init__(self, message: str = "No token stored; visit /login first.") -> None:
        super().__init__(message)


class RefreshFailedError(AuthError):
    """Raised when an expired token cannot be refreshed; the stored token is kept."""


class PlatformError(RuntimeError):
    """Raised for X API failures, with the HTTP status when there was one."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
