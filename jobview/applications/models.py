# jobview/applications/models.py

"""
Job application records.

Owned by the application CRUD module; the export engine only reads them.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from jobview.core.db import Base
from jobview.utils.general import utcnow


class JobApplication(Base):
    """A single job application submitted by a user."""

    __tablename__ = "job_applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    company_name: Mapped[str] = mapped_column(String(200), nullable=False)
    position_title: Mapped[str] = mapped_column(String(200), nullable=False)
    application_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    job_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    salary_range: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    work_location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    contact_info: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    interview_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    interview_location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    interview_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    reminder_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    reminder_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    follow_up_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    hr_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    hr_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    hr_email: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self):
        return (
            f"<JobApplication(id={self.id}, company={self.company_name}, "
            f"status={self.status})>"
        )
