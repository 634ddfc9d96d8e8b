# jobview/exports/retention.py

"""
Retention sweep for export artifacts and task records.

Run periodically (Celery beat, see ``jobview.exports.tasks``). Every step is
best effort: a failure on one task is logged and the sweep moves on.
"""

from datetime import datetime, timedelta
from typing import Dict

from jobview.exports.exceptions import StorageError
from jobview.exports.models import ExportStatus
from jobview.exports.repository import ExportTaskRepository
from jobview.exports.storage import ExportStorage
from jobview.utils.general import utcnow
from jobview.utils.logger import get_logger

logger = get_logger(__name__)

STALLED_MESSAGE = "Export stalled: no progress reported by the worker"


class RetentionService:
    """Purges expired artifacts, old task rows and stalled tasks."""

    def __init__(
        self,
        repository: ExportTaskRepository,
        storage: ExportStorage,
        artifact_ttl: timedelta,
        record_ttl: timedelta,
        stall_timeout: timedelta,
    ):
        self.repository = repository
        self.storage = storage
        self.artifact_ttl = artifact_ttl
        self.record_ttl = record_ttl
        self.stall_timeout = stall_timeout

    def purge_expired(self, now: datetime = None) -> int:
        """
        Delete artifacts of tasks completed more than ``artifact_ttl`` ago.

        The task keeps its COMPLETED status; only ``artifact_ref`` is cleared,
        which turns later downloads into "gone".

        Returns:
            Number of artifacts purged
        """
        now = now or utcnow()
        cutoff = now - self.artifact_ttl
        purged = 0

        for task in self.repository.find_expired_artifacts(cutoff):
            try:
                removed = self.storage.delete(task.artifact_ref)
            except StorageError as e:
                logger.error(f"Failed to purge artifact for export task {task.id}: {e}")
                continue

            if not removed:
                logger.warning("Artifact already missing", task_id=task.id, artifact_ref=task.artifact_ref)

            if self.repository.clear_artifact(task.id, task.artifact_ref):
                purged += 1

        if purged:
            logger.info("Purged expired export artifacts", count=purged, cutoff=cutoff.isoformat())
        return purged

    def purge_old_records(self, now: datetime = None) -> int:
        """Delete terminal task rows older than ``record_ttl`` and any file they still hold."""
        now = now or utcnow()
        cutoff = now - self.record_ttl
        deleted = 0

        for task in self.repository.find_terminal_before(cutoff):
            if task.artifact_ref:
                try:
                    self.storage.delete(task.artifact_ref)
                except StorageError as e:
                    logger.error(f"Failed to delete artifact of old export task {task.id}: {e}")
                    continue
            if self.repository.delete(task.id):
                deleted += 1

        if deleted:
            logger.info("Deleted old export task records", count=deleted)
        return deleted

    def fail_stalled(self, now: datetime = None) -> int:
        """Fail RUNNING tasks whose worker stopped reporting progress."""
        now = now or utcnow()
        cutoff = now - self.stall_timeout
        failed = 0

        for task in self.repository.find_stalled(cutoff):
            if self.repository.transition(
                task.id,
                [ExportStatus.RUNNING],
                ExportStatus.FAILED,
                error_message=STALLED_MESSAGE,
                completed_at=now,
            ):
                failed += 1
                logger.warning("Failed stalled export task", task_id=task.id, started_at=task.started_at)
        return failed

    def run_sweep(self, now: datetime = None) -> Dict[str, int]:
        now = now or utcnow()
        result = {
            "stalled_failed": self.fail_stalled(now),
            "artifacts_purged": self.purge_expired(now),
            "records_deleted": self.purge_old_records(now),
            "partials_removed": self.storage.sweep_partials(older_than=self.stall_timeout),
        }
        logger.info("Export retention sweep finished", **result)
        return result
