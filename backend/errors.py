"""
Error taxonomy shared by the command, monitoring and token services.

Each error carries the HTTP status the API layer answers with; ``main``
registers a single exception handler for :class:`LanWakeError`.
"""


class LanWakeError(Exception):
    """Base class for all application errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(LanWakeError):
    """Malformed MAC/IP/secret. Raised before any I/O takes place."""

    status_code = 400


class NetworkError(LanWakeError):
    """Socket or send failure. Surfaced to the caller, never retried."""

    status_code = 502


class ProbeUnavailable(NetworkError):
    """The probe mechanism itself cannot run (missing binary, no privilege)."""


class AgentError(NetworkError):
    """The shutdown agent refused, failed or did not answer in time."""


class StorageError(LanWakeError):
    """A database operation failed."""

    status_code = 503


class AuthError(LanWakeError):
    """Base class for authentication and authorization failures."""

    status_code = 401


class Unauthenticated(AuthError):
    """Bad credentials, or a bad, expired or already-used token."""


class AccountDisabled(AuthError):
    status_code = 403


class Forbidden(AuthError):
    status_code = 403
