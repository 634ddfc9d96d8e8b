# jobview/exports/exceptions.py

from typing import Optional


class ExportError(Exception):
    """Base exception for all export engine errors."""
    pass


class ExportNotFoundError(ExportError):
    """Raised for unknown task ids and for tasks owned by another user."""
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Export task '{task_id}' not found.")


class ExportNotReadyError(ExportError):
    """Raised when a download is requested before the task completed."""
    def __init__(self, task_id: str, status: str):
        self.task_id = task_id
        self.status = status
        super().__init__(f"Export task '{task_id}' is not ready. Current status: {status}")


class ExportGoneError(ExportError):
    """Raised when the artifact of a completed task has been purged."""
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Export file for task '{task_id}' has expired and was removed.")


class CapacityExhaustedError(ExportError):
    """Raised when the export backlog or a user's quota is full. Retryable."""
    def __init__(self, message: str, retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(message)


class GenerationError(ExportError):
    """Raised when reading records or encoding them fails mid-export."""
    pass


class StorageError(ExportError):
    """Raised when staging, committing or reading an artifact fails."""
    pass


class ArtifactNotFoundError(StorageError):
    """Raised when an artifact reference no longer resolves to a file."""
    def __init__(self, artifact_ref: str):
        self.artifact_ref = artifact_ref
        super().__init__(f"Artifact '{artifact_ref}' not found.")


class WriterStateError(ExportError):
    """Raised when a format writer is used after it was finalized."""
    pass


class ExportCancelled(ExportError):
    """Raised inside a worker when cancellation was observed at a batch boundary."""
    def __init__(self, task_id: str, rows_written: int = 0):
        self.task_id = task_id
        self.rows_written = rows_written
        super().__init__(f"Export task '{task_id}' cancelled after {rows_written} rows.")
