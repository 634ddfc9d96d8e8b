# jobview/exports/service.py

"""
Export Service - request side of the export engine.

Creates tasks, reports their status, serves finished artifacts and handles
cancellation. Generation itself happens in the worker pool
(``jobview.exports.scheduler``); this layer only reads and writes task
records and pokes the scheduler.
"""

import math
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import IO, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from jobview.core.config import Settings
from jobview.core.security import CurrentUser
from jobview.exports.catalog import (
    fields_payload,
    formats_payload,
    get_format_info,
    template_payload,
)
from jobview.exports.exceptions import (
    ArtifactNotFoundError,
    CapacityExhaustedError,
    ExportGoneError,
    ExportNotFoundError,
    ExportNotReadyError,
)
from jobview.exports.generator import ExportGenerator
from jobview.exports.models import ExportStatus, ExportTask
from jobview.exports.record_source import JobApplicationRecordSource, RecordSource
from jobview.exports.repository import ExportTaskRepository
from jobview.exports.retention import RetentionService
from jobview.exports.runner import ExportRunner
from jobview.exports.scheduler import ExportScheduler
from jobview.exports.schemas import (
    CancelExportResponse,
    ExportCreatedResponse,
    ExportHistoryItem,
    ExportRequest,
    ExportTaskResponse,
    PaginatedExportHistoryResponse,
)
from jobview.exports.storage import ExportStorage
from jobview.utils.general import format_file_size, utcnow
from jobview.utils.logger import get_logger

logger = get_logger(__name__)

API_PREFIX = "/api/v1/export"
MAX_PER_PAGE = 50

# A cancel request races with the worker; re-read a few times before giving up
CANCEL_ATTEMPTS = 3


def status_url(task_id: str) -> str:
    return f"{API_PREFIX}/status/{task_id}"


def download_url(task: ExportTask) -> Optional[str]:
    if task.status == ExportStatus.COMPLETED and task.artifact_ref:
        return f"{API_PREFIX}/download/{task.id}"
    return None


class ExportService:
    """
    Service layer for export tasks.

    Ownership is enforced on every read: a task owned by someone else is
    reported exactly like an unknown one. Admins see every task.
    """

    def __init__(
        self,
        repository: ExportTaskRepository,
        storage: ExportStorage,
        scheduler: Optional[ExportScheduler] = None,
        max_pending_tasks: int = 100,
        max_daily_per_user: int = 20,
        max_active_per_user: int = 5,
        max_records_hint: int = 100000,
    ):
        self.repository = repository
        self.storage = storage
        self.scheduler = scheduler
        self.max_pending_tasks = max_pending_tasks
        self.max_daily_per_user = max_daily_per_user
        self.max_active_per_user = max_active_per_user
        self.max_records_hint = max_records_hint

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_export(self, user: CurrentUser, request: ExportRequest) -> ExportCreatedResponse:
        """
        Persist a PENDING task and wake the scheduler.

        Raises:
            CapacityExhaustedError: backlog is full, or the user has too many exports
                in progress or has used up the daily quota
        """
        pending = self.repository.count_pending()
        if pending >= self.max_pending_tasks:
            logger.warning("Export backlog full", pending=pending, limit=self.max_pending_tasks)
            raise CapacityExhaustedError(
                "Too many exports are waiting to run. Please try again shortly.",
                retry_after=60,
            )

        if self.max_active_per_user > 0:
            active = self.repository.count_active(user.id)
            if active >= self.max_active_per_user:
                logger.warning("Too many active exports", owner_id=user.id, active=active)
                raise CapacityExhaustedError(
                    f"You already have {active} exports in progress. "
                    "Wait for one to finish or cancel it.",
                    retry_after=30,
                )

        now = utcnow()
        if self.max_daily_per_user > 0:
            day_start = datetime.combine(now.date(), time.min)
            created_today = self.repository.count_created_since(user.id, day_start)
            if created_today >= self.max_daily_per_user:
                retry_after = int((day_start + timedelta(days=1) - now).total_seconds()) + 1
                raise CapacityExhaustedError(
                    f"Daily export limit of {self.max_daily_per_user} reached",
                    retry_after=retry_after,
                )

        task = self.repository.create(
            ExportTask(
                owner_id=user.id,
                format=request.format,
                filters=request.filters.model_dump(mode="json", exclude_none=True),
                options=request.options.model_dump(mode="json", exclude_none=True),
                created_at=now,
            )
        )

        if self.scheduler is not None:
            self.scheduler.wake()

        return ExportCreatedResponse(
            task_id=task.id,
            status=task.status,
            message="Export task created. Poll the status URL for progress.",
            status_url=status_url(task.id),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task(self, user: CurrentUser, task_id: str) -> ExportTask:
        task = self.repository.get(task_id, owner_id=None if user.is_admin else user.id)
        if task is None:
            raise ExportNotFoundError(task_id)
        return task

    def to_response(self, task: ExportTask) -> ExportTaskResponse:
        return ExportTaskResponse(
            task_id=task.id,
            format=task.format,
            status=task.status,
            progress=task.progress,
            row_count=task.row_count,
            total_records=task.total_records,
            cancel_requested=task.cancel_requested,
            error_message=task.error_message,
            file_name=task.file_name,
            file_size=format_file_size(task.file_size) if task.file_size is not None else None,
            download_url=download_url(task),
            created_at=task.created_at,
            started_at=task.started_at,
            last_progress_at=task.last_progress_at,
            completed_at=task.completed_at,
            expires_at=task.expires_at,
        )

    def get_status(self, user: CurrentUser, task_id: str) -> ExportTaskResponse:
        return self.to_response(self.get_task(user, task_id))

    def open_download(self, user: CurrentUser, task_id: str) -> Tuple[IO[bytes], str, str]:
        """
        Open the artifact of a completed task.

        Returns:
            (binary stream, download file name, media type)

        Raises:
            ExportNotFoundError: unknown task or not owned by ``user``
            ExportNotReadyError: task has not completed
            ExportGoneError: artifact purged by retention
        """
        task = self.get_task(user, task_id)
        if task.status != ExportStatus.COMPLETED:
            raise ExportNotReadyError(task_id, task.status.value)
        if not task.artifact_ref:
            raise ExportGoneError(task_id)

        try:
            stream = self.storage.open(task.artifact_ref)
        except ArtifactNotFoundError:
            logger.error("Export artifact missing on disk", task_id=task_id, artifact_ref=task.artifact_ref)
            raise ExportGoneError(task_id)

        media_type = get_format_info(task.format).media_type
        return stream, task.file_name, media_type

    def history(self, user: CurrentUser, page: int = 1, per_page: int = 10) -> PaginatedExportHistoryResponse:
        page = max(page, 1)
        per_page = min(max(per_page, 1), MAX_PER_PAGE)
        items, total = self.repository.list_for_owner(
            None if user.is_admin else user.id, page, per_page
        )
        total_pages = math.ceil(total / per_page) if total else 0
        return PaginatedExportHistoryResponse(
            items=[
                ExportHistoryItem(
                    task_id=task.id,
                    format=task.format,
                    status=task.status,
                    row_count=task.row_count,
                    file_name=task.file_name,
                    file_size=format_file_size(task.file_size) if task.file_size is not None else None,
                    download_url=download_url(task),
                    created_at=task.created_at,
                    completed_at=task.completed_at,
                    expires_at=task.expires_at,
                )
                for task in items
            ],
            total_items=total,
            page=page,
            per_page=per_page,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, user: CurrentUser, task_id: str) -> CancelExportResponse:
        """
        Cancel a task. Idempotent: terminal tasks are reported as they are.

        PENDING tasks are cancelled directly. RUNNING tasks are flagged and
        the worker performs the transition at its next batch boundary.
        """
        task = self.get_task(user, task_id)
        for _ in range(CANCEL_ATTEMPTS):
            if task.status == ExportStatus.PENDING:
                if self.repository.transition(
                    task.id,
                    [ExportStatus.PENDING],
                    ExportStatus.CANCELLED,
                    completed_at=utcnow(),
                ):
                    logger.info("Cancelled pending export task", task_id=task.id)
                    return CancelExportResponse(
                        task_id=task.id,
                        status=ExportStatus.CANCELLED,
                        cancel_requested=True,
                        message="Export cancelled",
                    )
            elif task.status == ExportStatus.RUNNING:
                if self.repository.request_cancel(task.id):
                    if self.scheduler is not None:
                        self.scheduler.signal_cancel(task.id)
                    logger.info("Cancellation requested for running export task", task_id=task.id)
                    return CancelExportResponse(
                        task_id=task.id,
                        status=ExportStatus.RUNNING,
                        cancel_requested=True,
                        message="Cancellation requested; the export stops at the next batch",
                    )
            else:
                return CancelExportResponse(
                    task_id=task.id,
                    status=task.status,
                    cancel_requested=task.cancel_requested,
                    message=f"Export already {task.status.value.lower()}",
                )
            # Lost a race with the worker or another request; look again
            task = self.get_task(user, task_id)

        return CancelExportResponse(
            task_id=task.id,
            status=task.status,
            cancel_requested=task.cancel_requested,
            message=f"Export is {task.status.value.lower()}",
        )

    # ------------------------------------------------------------------
    # Capability discovery
    # ------------------------------------------------------------------

    def formats(self) -> dict:
        return formats_payload()

    def fields(self) -> dict:
        return fields_payload()

    def template(self) -> dict:
        return template_payload(self.max_records_hint)


@dataclass
class ExportEngine:
    """Everything one process needs to accept and run exports."""

    repository: ExportTaskRepository
    storage: ExportStorage
    scheduler: ExportScheduler
    service: ExportService
    retention: RetentionService


def build_retention_service(
    settings: Settings,
    repository: ExportTaskRepository,
    storage: ExportStorage,
) -> RetentionService:
    return RetentionService(
        repository,
        storage,
        artifact_ttl=timedelta(hours=settings.export_retention_hours),
        record_ttl=timedelta(days=settings.export_record_retention_days),
        stall_timeout=timedelta(minutes=settings.export_stall_timeout_minutes),
    )


def build_export_engine(
    settings: Settings,
    session_factory: sessionmaker = None,
    record_source: RecordSource = None,
) -> ExportEngine:
    """Wire repository, storage, generator, runner, scheduler and service."""
    repository = ExportTaskRepository(session_factory)
    storage = ExportStorage(settings.export_storage_dir)
    generator = ExportGenerator(
        record_source or JobApplicationRecordSource(session_factory),
        batch_size=settings.export_batch_size,
    )
    runner = ExportRunner(
        repository,
        storage,
        generator,
        retention=timedelta(hours=settings.export_retention_hours),
    )
    scheduler = ExportScheduler(
        repository,
        runner,
        capacity=settings.export_worker_capacity,
        tick_interval=settings.export_tick_interval_seconds,
    )
    service = ExportService(
        repository,
        storage,
        scheduler,
        max_pending_tasks=settings.export_max_pending_tasks,
        max_daily_per_user=settings.export_max_daily_per_user,
        max_active_per_user=settings.export_max_active_per_user,
    )
    return ExportEngine(
        repository=repository,
        storage=storage,
        scheduler=scheduler,
        service=service,
        retention=build_retention_service(settings, repository, storage),
    )
