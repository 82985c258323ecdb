# core/errors.py
"""
Error taxonomy shared by the backend client, the auth session and the views.

Backend library errors are caught where the call is made and re-raised as one of
these classes, so callers can decide on presentation (banner, redirect, toast)
by cause instead of by library type.
"""
from typing import Optional

import httpx

NETWORK_ERROR_MARKERS = ("network", "timeout", "connection", "unreachable")


class DriveError(Exception):
    """Base class for all application errors."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ConfigurationError(DriveError):
    """Backend credentials are missing. Blocks every data operation."""


class AuthError(DriveError):
    """No active session (or the auth API refused to tell us who we are)."""


class NetworkError(DriveError):
    """Transient failure: timeouts, dropped connections."""


class StorageError(DriveError):
    """Binary object upload/delete failed."""


class RecordError(DriveError):
    """Database insert/update/delete failed."""


class QueryError(DriveError):
    """Database read failed."""


class NotFoundError(DriveError):
    """The targeted record no longer exists."""


def is_network_error(error: BaseException) -> bool:
    """Classifies transient, network-shaped failures that are worth retrying."""
    if isinstance(error, (NetworkError, ConnectionError, TimeoutError, httpx.TransportError)):
        return True
    message = str(getattr(error, "message", None) or error).lower()
    return any(marker in message for marker in NETWORK_ERROR_MARKERS)
