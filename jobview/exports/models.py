### jobview/exports/models.py

"""
Database models for tracking async export tasks.

Stores export task metadata, lifecycle status and artifact location.
"""

import uuid
from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from jobview.core.db import Base
from jobview.utils.general import utcnow


class ExportStatus(str, PyEnum):
    """Export task status enumeration"""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset(
    {ExportStatus.COMPLETED, ExportStatus.FAILED, ExportStatus.CANCELLED}
)


class ExportFormat(str, PyEnum):
    """Export file format enumeration"""
    XLSX = "xlsx"
    CSV = "csv"
    JSON = "json"


def generate_task_id() -> str:
    return uuid.uuid4().hex


class ExportTask(Base):
    """
    Model for tracking async export tasks.

    Stores all metadata about an export request including filters,
    status, progress and location of the generated artifact.
    """
    __tablename__ = "export_tasks"
    __table_args__ = (
        Index("ix_export_tasks_status_created_at", "status", "created_at"),
        Index("ix_export_tasks_owner_created_at", "owner_id", "created_at"),
    )

    # Primary Key
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=generate_task_id)

    # Ownership
    owner_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
        comment="User who requested the export"
    )

    # Export Configuration
    format: Mapped[ExportFormat] = mapped_column(
        Enum(ExportFormat),
        nullable=False,
        comment="Export file format (xlsx, csv, json)"
    )

    filters: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="JSON object containing all filter parameters applied"
    )

    options: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Selected fields, statistics flag and requested filename"
    )

    # Task Status
    status: Mapped[ExportStatus] = mapped_column(
        Enum(ExportStatus),
        nullable=False,
        default=ExportStatus.PENDING,
        index=True,
        comment="Current status of export task"
    )

    cancel_requested: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Set when a running task has been asked to stop"
    )

    # Progress
    progress: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Progress percentage (0-100)"
    )

    row_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Rows written so far; final once completed"
    )

    total_records: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Matching rows reported by the record store"
    )

    # Results
    artifact_ref: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Storage reference of the generated file"
    )

    file_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Download filename"
    )

    file_size: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Artifact size in bytes"
    )

    # Error Handling
    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Error details if export failed"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        index=True,
        comment="When export was requested"
    )

    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment="When a worker picked the task up"
    )

    last_progress_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment="Last progress report from the worker"
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment="When export reached a terminal status"
    )

    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment="When the artifact becomes eligible for purge"
    )

    def __repr__(self):
        return (
            f"<ExportTask(id={self.id}, owner={self.owner_id}, "
            f"format={self.format}, status={self.status})>"
        )
