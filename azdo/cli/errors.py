"""
Error kinds shared by every command. The dispatcher inspects the exception
chain to choose the process exit code.
"""

from typing import Optional


class AzdoError(Exception):
    """Base class for errors raised by azdo."""


class FlagError(AzdoError):
    """A bad flag or positional argument; the usage block is printed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class AuthError(AzdoError):
    """Missing or invalid credentials."""


class NoDefaultOrganizationError(AzdoError):
    pass


class NoResultsError(AzdoError):
    """A valid query that returned nothing."""


class NotFoundError(AzdoError):
    """A named resource does not exist on the server."""


class CancelError(AzdoError):
    """The user declined a confirmation or the run context was cancelled."""

    def __init__(self, message: str = "cancelled"):
        super().__init__(message)


class SilentError(AzdoError):
    """The error message has already been printed."""


class TransientError(AzdoError):
    """A retryable error; only the polling utility retries it."""


class ExternalCommandExitError(AzdoError):
    """A child process exited with a non-zero status."""

    def __init__(self, exit_code: int, command: str = ""):
        message = f"external command exited with status {exit_code}"
        if command:
            message = f"{command}: exited with status {exit_code}"
        super().__init__(message)
        self.exit_code = exit_code


class ClosedPagerPipe(AzdoError):
    """The pager stopped reading; treated as a clean exit."""


class UnsupportedPrinterError(AzdoError):
    def __init__(self, kind: str):
        super().__init__(f"unsupported printer type {kind}")
        self.kind = kind


def mutually_exclusive(message: str, *conditions: bool):
    """Raise a FlagError when more than one condition holds."""
    if sum(1 for condition in conditions if condition) > 1:
        raise FlagError(message)


def is_not_found_error(error: BaseException) -> bool:
    """True for HTTP 404 responses from either the SDK or the raw REST wrapper."""
    current = error
    while current is not None:
        if isinstance(current, NotFoundError):
            return True
        status = getattr(current, "status_code", None)
        if status is None:
            response = getattr(current, "response", None)
            status = getattr(response, "status_code", None)
        if status == 404:
            return True
        type_key = getattr(current, "type_key", None) or ""
        if type_key.endswith("NotFoundException") or "DoesNotExist" in type_key:
            return True
        current = current.__cause__
    return False
