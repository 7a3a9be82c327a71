from typing import Any


class ImportPipelineError(Exception):
    """Base class for every error raised by the import pipeline."""


class FileFormatError(ImportPipelineError):
    """The uploaded file cannot be opened or parsed. Fatal for the job."""


class RowValidationError(ImportPipelineError):
    """One row failed coercion or validation. The row is skipped, the job continues."""

    def __init__(self, message: str, field: str | None = None, column: str | None = None, value: Any = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.column = column
        self.value = value


class PersistenceError(ImportPipelineError):
    """Storing a record failed (id collision, constraint, connection). Handled like a row error."""

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.value = value


class InvalidStateError(ImportPipelineError):
    """Cancel/rollback requested against a job that is not in the required state."""


class PartialRollbackError(ImportPipelineError):
    def __init__(self, deleted: list[str], failed: list[str]):
        self.deleted = list(deleted)
        self.failed = list(failed)
        super().__init__(
            f"Rollback incomplete: deleted {', '.join(self.deleted) or '-'}; "
            f"failed {', '.join(self.failed) or '-'}"
        )


class UnhandledPipelineError(ImportPipelineError):
    """Wraps an unexpected exception that aborted a running import."""
