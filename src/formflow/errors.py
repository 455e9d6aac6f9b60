"""Exception definitions for the formflow engine"""

from __future__ import annotations


class FormflowException(Exception):
    """Base exception for all formflow errors.

    All custom exceptions in the engine inherit from this class. Use this as
    a catch-all when you don't need to handle specific exception types.
    """

    pass


class ConfigException(FormflowException):
    """Raised when configuration validation or loading fails.

    Use this exception when:
    - The configuration file cannot be found
    - The TOML syntax is invalid
    - Configuration validation fails (missing required fields, invalid values)
    """

    pass


class DefinitionError(FormflowException):
    """Raised when a form definition is missing or malformed.

    This is terminal for a session: the caller renders a "not found" state
    and offers no retry.
    """

    pass


class ValidationError(FormflowException):
    """Raised when a single field fails its required or format check."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class UniquenessError(ValidationError):
    """Raised when the store already holds a submission with the same value."""

    pass


class UploadError(FormflowException):
    """Raised when the upload service fails to store a file.

    Surfaced as a field-level message; other fields keep working.
    """

    pass


class PersistenceError(FormflowException):
    """Raised when the authoritative submission write fails.

    The in-memory answers are preserved so the user may retry.
    """

    pass


class SubmissionRejected(FormflowException):
    """Raised when the terminal validation pass finds failures.

    Carries every failure as a list of ``FieldError`` so the caller can show
    them in a single aggregated alert.
    """

    def __init__(self, errors):
        self.errors = list(errors)
        summary = "; ".join(f"{e.field}: {e.message}" for e in self.errors)
        super().__init__(f"Submission rejected ({len(self.errors)} errors): {summary}")
