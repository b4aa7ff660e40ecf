# wishsync/errors.py


class WishSyncError(Exception):
    """Base class for every error raised by wishsync."""


class ConfigError(WishSyncError):
    """Missing or malformed configuration."""


class ValidationError(WishSyncError):
    """A required field is missing or a value is out of range."""


class NetworkError(WishSyncError):
    """Connectivity or transport failure talking to a remote service."""


class AuthError(WishSyncError):
    """Invalid credentials, unverified e-mail or duplicate registration."""


class NoSessionError(WishSyncError, PermissionError):
    """Mutation attempted without an active guest or authenticated session."""


class RemoteError(WishSyncError):
    """The remote service answered with an error status."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class RemoteWriteError(RemoteError):
    """The remote service rejected a write (e.g. an access-policy denial)."""
