"""
Error taxonomy for background jobs.

Task wrappers hand any exception to ``ledgerjobs.core.retry.decide_retry``,
which uses these classes (and the cause chain) to pick a retry strategy.
"""


class LedgerJobError(Exception):
    """Base class for all errors raised by ledgerjobs."""


class PayloadValidationError(LedgerJobError):
    """A task payload failed validation before any work started."""

    def __init__(self, task_name: str, detail: str):
        self.task_name = task_name
        self.detail = detail
        super().__init__(f"Invalid payload for {task_name}: {detail}")


class TransientStorageError(LedgerJobError):
    """Connection to the database or object storage dropped. Retried later."""


class ResourceLimitError(LedgerJobError):
    """A resource limit was hit. Never retried."""


class FatalPreconditionError(LedgerJobError):
    """Required record or field is missing. Retrying cannot help."""


class StorageError(LedgerJobError):
    """An object could not be fetched from storage."""


class StorageTimeoutError(StorageError):
    pass


class DocumentProcessingError(LedgerJobError):
    """The document parser failed, timed out or returned nothing."""


class PatternStoreError(LedgerJobError):
    """Replacing the detected pattern set for an account failed."""


class AccountBusyError(LedgerJobError):
    """Another detection run holds the lock for this account."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Recurring detection already running for account {account_id}")


class TaskExecutionError(LedgerJobError):
    """Unclassified failure, wrapped with the operation and entity it hit."""

    def __init__(self, operation: str, entity_id: str | None, cause: BaseException):
        self.operation = operation
        self.entity_id = entity_id
        message = str(cause) or type(cause).__name__
        target = f" ({entity_id})" if entity_id else ""
        super().__init__(f"Failed to {operation}{target}: {message}")
