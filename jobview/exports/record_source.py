"""
Job Application Export Query Builder

Translates stored export filters into a paged query over the job application
records and turns each row into a plain dictionary for the format writers.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import sessionmaker

from jobview.applications.models import JobApplication
from jobview.core.db import SessionLocal, session_scope
from jobview.utils.logger import get_logger

logger = get_logger(__name__)


class RecordSource(ABC):
    """
    Read side of the record store used by the export generator.

    Implementations answer the same filtered query page by page, in a stable
    order, so that successive ``fetch_batch`` calls cover each row once.
    """

    @abstractmethod
    def count(self, owner_id: int, filters: Dict[str, Any]) -> Optional[int]:
        """Total matching rows, or None when unknown."""

    @abstractmethod
    def fetch_batch(
        self, owner_id: int, filters: Dict[str, Any], offset: int, limit: int
    ) -> List[Dict[str, Any]]:
        """Return up to ``limit`` records starting at ``offset``."""


def build_job_application_export_query(owner_id: int, filters: Dict[str, Any]) -> Select:
    """
    Build the job application export query with filters.

    Args:
        owner_id: Only this user's applications are exported
        filters: Dictionary of filter parameters (see ExportFilters)

    Returns:
        SQLAlchemy Select ordered for stable paging
    """
    stmt = select(JobApplication).where(JobApplication.user_id == owner_id)

    statuses = filters.get("status")
    if statuses:
        stmt = stmt.where(JobApplication.status.in_(statuses))

    date_range = filters.get("date_range")
    if date_range:
        start = date_range.get("start")
        end = date_range.get("end")
        if isinstance(start, str):
            start = date.fromisoformat(start)
        if isinstance(end, str):
            end = date.fromisoformat(end)
        if start:
            stmt = stmt.where(JobApplication.application_date >= start)
        if end:
            stmt = stmt.where(JobApplication.application_date <= end)

    company_names = filters.get("company_names")
    if company_names:
        stmt = stmt.where(JobApplication.company_name.in_(company_names))

    keywords = filters.get("keywords")
    if keywords:
        pattern = f"%{keywords}%"
        stmt = stmt.where(
            or_(
                JobApplication.company_name.ilike(pattern),
                JobApplication.position_title.ilike(pattern),
                JobApplication.notes.ilike(pattern),
            )
        )

    return stmt.order_by(
        JobApplication.application_date.desc(),
        JobApplication.created_at.desc(),
        JobApplication.id.desc(),
    )


def transform_job_application_row(application: JobApplication) -> Dict[str, Any]:
    """Transform a JobApplication ORM object to a dictionary for export."""

    return {
        "id": application.id,
        "company_name": application.company_name,
        "position_title": application.position_title,
        "application_date": application.application_date,
        "status": application.status,
        "salary_range": application.salary_range,
        "work_location": application.work_location,
        "interview_time": application.interview_time,
        "interview_location": application.interview_location,
        "interview_type": application.interview_type,
        "hr_name": application.hr_name,
        "hr_phone": application.hr_phone,
        "hr_email": application.hr_email,
        "reminder_time": application.reminder_time,
        "follow_up_date": application.follow_up_date,
        "notes": application.notes,
        "created_at": application.created_at,
        "updated_at": application.updated_at,
    }


class JobApplicationRecordSource(RecordSource):
    """Record source backed by the ``job_applications`` table."""

    def __init__(self, session_factory: sessionmaker = None):
        self.session_factory = session_factory or SessionLocal

    def count(self, owner_id: int, filters: Dict[str, Any]) -> Optional[int]:
        query = build_job_application_export_query(owner_id, filters).order_by(None)
        stmt = select(func.count()).select_from(query.subquery())
        with session_scope(self.session_factory) as db:
            return db.execute(stmt).scalar_one()

    def fetch_batch(
        self, owner_id: int, filters: Dict[str, Any], offset: int, limit: int
    ) -> List[Dict[str, Any]]:
        stmt = build_job_application_export_query(owner_id, filters).offset(offset).limit(limit)
        with session_scope(self.session_factory) as db:
            rows = db.execute(stmt).scalars().all()
            return [transform_job_application_row(row) for row in rows]
