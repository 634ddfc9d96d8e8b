### jobview/exports/runner.py

"""
Export Runner - the body of one pool worker.

Runs a task that the scheduler already moved to RUNNING:
1. Loads the task
2. Stages a partial file and builds the format writer
3. Streams records through the export generator
4. Commits the artifact
5. Moves the task to COMPLETED (last step), or to CANCELLED / FAILED

Errors never propagate to the pool; they end up in the task record.
"""

from datetime import datetime, timedelta

from jobview.exports.cancellation import CancellationToken
from jobview.exports.catalog import get_format_info, resolve_fields
from jobview.exports.exceptions import (
    ExportCancelled,
    ExportError,
    StorageError,
)
from jobview.exports.generator import ExportGenerator
from jobview.exports.models import ExportStatus, ExportTask
from jobview.exports.repository import ExportTaskRepository
from jobview.exports.storage import ExportStorage
from jobview.exports.writers import get_writer_class
from jobview.utils.general import utcnow
from jobview.utils.logger import get_logger

logger = get_logger(__name__)


def build_file_name(task: ExportTask, extension: str, now: datetime = None) -> str:
    """Requested filename, or job_applications_<owner>_<timestamp>."""
    requested = (task.options or {}).get("filename")
    if requested:
        return f"{requested}.{extension}"
    timestamp = (now or utcnow()).strftime("%Y%m%d_%H%M%S")
    return f"job_applications_{task.owner_id}_{timestamp}.{extension}"


class ExportRunner:
    """Executes leased export tasks."""

    def __init__(
        self,
        repository: ExportTaskRepository,
        storage: ExportStorage,
        generator: ExportGenerator,
        retention: timedelta,
    ):
        self.repository = repository
        self.storage = storage
        self.generator = generator
        self.retention = retention

    def run(self, task_id: str, token: CancellationToken) -> ExportStatus:
        """
        Execute one task and return the status it ended in.
        """
        try:
            task = self.repository.get(task_id)
        except Exception as e:
            logger.error(f"Failed to load export task {task_id}: {e}", exc_info=True)
            return self._fail_by_id(task_id, f"Failed to load export task: {e}")

        if task is None or task.status != ExportStatus.RUNNING:
            logger.warning(
                "Export task is not runnable",
                task_id=task_id,
                status=getattr(task, "status", None),
            )
            return task.status if task is not None else ExportStatus.FAILED

        logger.info(
            "Starting export task",
            task_id=task.id,
            owner_id=task.owner_id,
            format=task.format.value,
        )

        try:
            artifact_ref, file_size, row_count = self._generate(task, token)
        except ExportCancelled as e:
            return self._finish_cancelled(task, e.rows_written)
        except ExportError as e:
            logger.error(f"Export task {task.id} failed: {e}")
            return self._finish_failed(task, str(e))
        except Exception as e:
            logger.error(f"Unexpected error in export task {task.id}: {e}", exc_info=True)
            return self._finish_failed(task, f"Unexpected export error: {e}")

        return self._finish_completed(task, artifact_ref, file_size, row_count)

    def _generate(self, task: ExportTask, token: CancellationToken):
        format_info = get_format_info(task.format)
        options = task.options or {}
        fields = resolve_fields(options.get("fields"))
        writer_class = get_writer_class(task.format)

        def report_progress(rows_written: int, progress: int, total):
            self.repository.update_progress(task.id, rows_written, progress, total)

        with self.storage.stage(task.id, format_info.extension) as staged:
            writer = writer_class(
                staged.stream,
                fields,
                include_statistics=bool(options.get("include_statistics")),
            )
            try:
                row_count = self.generator.run(
                    task_id=task.id,
                    owner_id=task.owner_id,
                    filters=task.filters or {},
                    writer=writer,
                    token=token,
                    on_progress=report_progress,
                )
                artifact_ref = staged.commit()
            finally:
                if not staged.committed:
                    writer.abort()
            return artifact_ref, staged.size, row_count

    def _finish_completed(self, task: ExportTask, artifact_ref: str, file_size: int, row_count: int) -> ExportStatus:
        completed_at = utcnow()
        extension = get_format_info(task.format).extension
        try:
            completed = self.repository.transition(
                task.id,
                [ExportStatus.RUNNING],
                ExportStatus.COMPLETED,
                artifact_ref=artifact_ref,
                file_name=build_file_name(task, extension, completed_at),
                file_size=file_size,
                row_count=row_count,
                progress=100,
                error_message=None,
                completed_at=completed_at,
                last_progress_at=completed_at,
                expires_at=completed_at + self.retention,
            )
        except Exception as e:
            logger.error(f"Failed to record completion of export task {task.id}: {e}", exc_info=True)
            self._discard_artifact(artifact_ref)
            return self._finish_failed(task, f"Failed to record export completion: {e}")

        if completed:
            logger.info(
                "Export task completed",
                task_id=task.id,
                rows=row_count,
                artifact_ref=artifact_ref,
            )
            return ExportStatus.COMPLETED

        # Someone else ended the task while we were committing
        self._discard_artifact(artifact_ref)
        status = self._current_status(task.id, ExportStatus.FAILED)
        logger.warning(
            "Export task finished elsewhere; artifact discarded",
            task_id=task.id,
            status=status.value,
        )
        return status

    def _finish_cancelled(self, task: ExportTask, rows_written: int) -> ExportStatus:
        now = utcnow()
        try:
            cancelled = self.repository.transition(
                task.id,
                [ExportStatus.RUNNING],
                ExportStatus.CANCELLED,
                row_count=rows_written,
                completed_at=now,
                last_progress_at=now,
            )
        except Exception as e:
            logger.error(f"Failed to record cancellation of export task {task.id}: {e}", exc_info=True)
            return ExportStatus.CANCELLED

        if cancelled:
            logger.info("Export task cancelled", task_id=task.id, rows=rows_written)
            return ExportStatus.CANCELLED
        return self._current_status(task.id, ExportStatus.CANCELLED)

    def _finish_failed(self, task: ExportTask, message: str) -> ExportStatus:
        return self._fail_by_id(task.id, message)

    def _fail_by_id(self, task_id: str, message: str) -> ExportStatus:
        try:
            failed = self.repository.transition(
                task_id,
                [ExportStatus.RUNNING],
                ExportStatus.FAILED,
                error_message=message[:2000] or "Export failed",
                completed_at=utcnow(),
            )
        except Exception as commit_error:
            logger.error(f"Failed to update export task status: {commit_error}")
            return ExportStatus.FAILED

        if not failed:
            return self._current_status(task_id, ExportStatus.FAILED)
        return ExportStatus.FAILED

    def _current_status(self, task_id: str, default: ExportStatus) -> ExportStatus:
        try:
            current = self.repository.get(task_id)
        except Exception as e:
            logger.error(f"Failed to re-read export task {task_id}: {e}")
            return default
        return current.status if current is not None else default

    def _discard_artifact(self, artifact_ref: str):
        try:
            self.storage.delete(artifact_ref)
        except StorageError as e:
            logger.error(f"Failed to remove orphaned artifact {artifact_ref}: {e}")
