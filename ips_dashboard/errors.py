"""Error taxonomy: AuthError / NetworkError / ValidationError / ServerError"""

from __future__ import annotations


class DashboardError(Exception):
    """Base for every failure the console surfaces to an operator."""

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class AuthError(DashboardError):
    """Bad credentials at login, or the session became invalid mid-use."""

    def __init__(self, message: str = "Authentication required", details: str | None = None, *, session_expired: bool = False) -> None:
        super().__init__(message, details)
        self.session_expired = session_expired


class NetworkError(DashboardError):
    """Transport failure or timeout. Safe to retry."""

    def __init__(self, message: str = "Network request failed", details: str | None = None, *, timeout: bool = False) -> None:
        super().__init__(message, details)
        self.timeout = timeout
        self.retryable = True


class ValidationError(DashboardError):
    """Malformed operator input, caught before any request is sent."""

    def __init__(self, message: str, details: str | None = None, *, field: str | None = None) -> None:
        super().__init__(message, details)
        self.field = field


class ServerError(DashboardError):
    """Non-2xx response carrying the backend's own message."""

    def __init__(self, status: int, message: str, details: str | None = None) -> None:
        super().__init__(message, details)
        self.status = status

    @property
    def not_found(self) -> bool:
        return self.status == 404


def user_message(exc: Exception, fallback: str) -> str:
    """Toast text for a failed user action: server-provided message when present."""
    if isinstance(exc, DashboardError) and exc.message:
        return exc.message
    return fallback
