# jobview/exports/repository.py

from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import sessionmaker

from jobview.core.db import SessionLocal, session_scope
from jobview.exports.models import (
    TERMINAL_STATUSES,
    ExportStatus,
    ExportTask,
)
from jobview.utils.general import utcnow
from jobview.utils.logger import get_logger

logger = get_logger(__name__)


class ExportTaskRepository:
    """
    Data Access Layer for export tasks.

    The task table is shared by request handlers, pool workers and the
    retention sweep, so every method runs in its own short transaction and
    commits before returning. Status changes only go through ``transition``,
    a single conditional UPDATE keyed on the expected current status.
    """

    def __init__(self, session_factory: sessionmaker = None):
        self.session_factory = session_factory or SessionLocal

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, task_id: str, owner_id: Optional[int] = None) -> Optional[ExportTask]:
        """
        Fetch a task by id. When ``owner_id`` is given, tasks owned by other
        users are reported as missing.
        """
        stmt = select(ExportTask).where(ExportTask.id == task_id)
        if owner_id is not None:
            stmt = stmt.where(ExportTask.owner_id == owner_id)
        with session_scope(self.session_factory) as db:
            return db.execute(stmt).scalar_one_or_none()

    def list_for_owner(
        self, owner_id: Optional[int], page: int, per_page: int
    ) -> Tuple[List[ExportTask], int]:
        """
        Page through a user's tasks, newest first. ``owner_id=None`` lists all
        tasks (administrative view).
        """
        stmt = select(ExportTask)
        count_stmt = select(func.count()).select_from(ExportTask)
        if owner_id is not None:
            stmt = stmt.where(ExportTask.owner_id == owner_id)
            count_stmt = count_stmt.where(ExportTask.owner_id == owner_id)

        stmt = (
            stmt.order_by(ExportTask.created_at.desc(), ExportTask.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        with session_scope(self.session_factory) as db:
            total = db.execute(count_stmt).scalar_one()
            items = list(db.execute(stmt).scalars().all())
        return items, total

    def count_pending(self) -> int:
        stmt = select(func.count()).select_from(ExportTask).where(
            ExportTask.status == ExportStatus.PENDING
        )
        with session_scope(self.session_factory) as db:
            return db.execute(stmt).scalar_one()

    def count_active(self, owner_id: int) -> int:
        """PENDING and RUNNING tasks of one owner."""
        stmt = select(func.count()).select_from(ExportTask).where(
            ExportTask.owner_id == owner_id,
            ExportTask.status.in_([ExportStatus.PENDING, ExportStatus.RUNNING]),
        )
        with session_scope(self.session_factory) as db:
            return db.execute(stmt).scalar_one()

    def count_created_since(self, owner_id: int, since: datetime) -> int:
        stmt = select(func.count()).select_from(ExportTask).where(
            ExportTask.owner_id == owner_id,
            ExportTask.created_at >= since,
        )
        with session_scope(self.session_factory) as db:
            return db.execute(stmt).scalar_one()

    def is_cancel_requested(self, task_id: str) -> bool:
        stmt = select(ExportTask.cancel_requested).where(ExportTask.id == task_id)
        with session_scope(self.session_factory) as db:
            return bool(db.execute(stmt).scalar_one_or_none())

    def find_expired_artifacts(self, cutoff: datetime) -> List[ExportTask]:
        """Completed tasks that still hold an artifact and finished before ``cutoff``."""
        stmt = (
            select(ExportTask)
            .where(
                ExportTask.status == ExportStatus.COMPLETED,
                ExportTask.artifact_ref.is_not(None),
                ExportTask.completed_at < cutoff,
            )
            .order_by(ExportTask.completed_at.asc())
        )
        with session_scope(self.session_factory) as db:
            return list(db.execute(stmt).scalars().all())

    def find_terminal_before(self, cutoff: datetime) -> List[ExportTask]:
        stmt = select(ExportTask).where(
            ExportTask.status.in_(list(TERMINAL_STATUSES)),
            ExportTask.completed_at < cutoff,
        )
        with session_scope(self.session_factory) as db:
            return list(db.execute(stmt).scalars().all())

    def find_stalled(self, cutoff: datetime) -> List[ExportTask]:
        """Running tasks whose last sign of life is older than ``cutoff``."""
        last_seen = func.coalesce(ExportTask.last_progress_at, ExportTask.started_at)
        stmt = select(ExportTask).where(
            ExportTask.status == ExportStatus.RUNNING,
            last_seen < cutoff,
        )
        with session_scope(self.session_factory) as db:
            return list(db.execute(stmt).scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, task: ExportTask) -> ExportTask:
        """Persist a new task in PENDING status."""
        task.status = ExportStatus.PENDING
        with session_scope(self.session_factory) as db:
            db.add(task)
            db.flush()
            db.refresh(task)
        logger.info("Created export task", task_id=task.id, owner_id=task.owner_id)
        return task

    def transition(
        self,
        task_id: str,
        expected: Iterable[ExportStatus],
        target: ExportStatus,
        **values,
    ) -> bool:
        """
        Compare-and-set the task status.

        Moves the task to ``target`` (and applies ``values``) only if its
        current status is one of ``expected``. Returns True when the row
        changed. Terminal statuses must never appear in ``expected``.
        """
        expected = list(expected)
        if any(status in TERMINAL_STATUSES for status in expected):
            raise ValueError("terminal statuses cannot be transitioned out of")

        stmt = (
            update(ExportTask)
            .where(ExportTask.id == task_id, ExportTask.status.in_(expected))
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        with session_scope(self.session_factory) as db:
            changed = db.execute(stmt).rowcount == 1

        if changed:
            logger.info(
                "Export task transitioned",
                task_id=task_id,
                status=target.value,
            )
        else:
            logger.debug(
                "Export task transition skipped",
                task_id=task_id,
                target=target.value,
            )
        return changed

    def claim_next_pending(self, now: datetime = None) -> Optional[ExportTask]:
        """
        Admit the oldest PENDING task by moving it to RUNNING.

        Losing the compare-and-set to a concurrent scheduler or a cancellation
        moves on to the next candidate.
        """
        stmt = (
            select(ExportTask.id)
            .where(ExportTask.status == ExportStatus.PENDING)
            .order_by(ExportTask.created_at.asc(), ExportTask.id.asc())
            .limit(10)
        )
        while True:
            with session_scope(self.session_factory) as db:
                candidates = list(db.execute(stmt).scalars().all())
            if not candidates:
                return None

            for task_id in candidates:
                started_at = now or utcnow()
                if self.transition(
                    task_id,
                    [ExportStatus.PENDING],
                    ExportStatus.RUNNING,
                    started_at=started_at,
                    last_progress_at=started_at,
                ):
                    return self.get(task_id)

    def update_progress(
        self, task_id: str, row_count: int, progress: int, total_records: int = None
    ) -> bool:
        """
        Record worker progress. Ignored once the task left RUNNING; never
        lowers the stored percentage.
        """
        values = {
            "row_count": row_count,
            "progress": progress,
            "last_progress_at": utcnow(),
        }
        if total_records is not None:
            values["total_records"] = total_records

        stmt = (
            update(ExportTask)
            .where(
                ExportTask.id == task_id,
                ExportTask.status == ExportStatus.RUNNING,
                ExportTask.progress <= progress,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with session_scope(self.session_factory) as db:
            return db.execute(stmt).rowcount == 1

    def request_cancel(self, task_id: str) -> bool:
        """Flag a RUNNING task for cooperative cancellation."""
        stmt = (
            update(ExportTask)
            .where(ExportTask.id == task_id, ExportTask.status == ExportStatus.RUNNING)
            .values(cancel_requested=True)
            .execution_options(synchronize_session=False)
        )
        with session_scope(self.session_factory) as db:
            return db.execute(stmt).rowcount == 1

    def clear_artifact(self, task_id: str, artifact_ref: str) -> bool:
        """Forget a purged artifact. Status is left untouched."""
        stmt = (
            update(ExportTask)
            .where(ExportTask.id == task_id, ExportTask.artifact_ref == artifact_ref)
            .values(artifact_ref=None)
            .execution_options(synchronize_session=False)
        )
        with session_scope(self.session_factory) as db:
            return db.execute(stmt).rowcount == 1

    def delete(self, task_id: str) -> bool:
        stmt = delete(ExportTask).where(
            ExportTask.id == task_id,
            ExportTask.status.in_(list(TERMINAL_STATUSES)),
        )
        with session_scope(self.session_factory) as db:
            return db.execute(stmt).rowcount == 1
