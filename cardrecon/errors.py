from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for errors surfaced to callers of the core."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message}


class FormatError(ReconciliationError):
    """The raw statement does not follow the documented column layout."""

    def __init__(self, message: str, line: int | None = None):
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)
        self.line = line

    def to_dict(self) -> dict:
        return {"detail": self.message, "line": self.line}


class ValidationError(ReconciliationError):
    """A rule or request field is malformed."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        return {"detail": self.message, "field": self.field}


class NotFoundError(ValidationError):
    status_code = 404


class DuplicateImportError(ReconciliationError):
    status_code = 409


class PersistenceError(ReconciliationError):
    status_code = 500


class CategorizationDegraded(Exception):
    """
    Non-fatal. Raised by the rule engine when it cannot evaluate rules;
    callers reduce the affected line (or count) to uncategorized.
    """
