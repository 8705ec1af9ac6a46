"""
Exceptions for the tracelog package.

Every error carries a numeric code so diagnostics can be grouped across
services. None of these escape Log.add(): they are raised between components
and turned into log lines (or observer notifications) at the seams.
"""


class LogError(Exception):
    """Base error for tracelog."""

    INVALID_LOG = 1
    NO_ENVIRONMENT = 2
    ASSUME_ROLE_ERROR = 3
    DELIVERY_ERROR = 4
    RELAY_ERROR = 5

    code: int = 0

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(LogError):
    """A single record failed schema or shape checks."""

    code = LogError.INVALID_LOG


class ConfigurationError(LogError):
    """The environment does not describe a usable delivery target."""

    code = LogError.NO_ENVIRONMENT


class CredentialError(LogError):
    """Role assumption failed or returned an unusable result."""

    code = LogError.ASSUME_ROLE_ERROR


class TransportError(LogError):
    """Records could not be delivered after the retry ladder was exhausted."""

    code = LogError.DELIVERY_ERROR


class RelayError(LogError):
    """The local extension relay rejected or did not answer a request."""

    code = LogError.RELAY_ERROR
