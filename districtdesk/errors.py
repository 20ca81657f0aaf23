"""
errors.py — Error Taxonomy
District Data Console
"""


class ConsoleError(Exception):
    """Base class for errors reported back to the caller."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(ConsoleError):
    status_code = 422


class NotFound(ConsoleError):
    status_code = 404


class PermissionDenied(ConsoleError):
    status_code = 403


class StoreUnavailable(ConsoleError):
    """The document store could not be reached or rejected a write."""

    status_code = 503
