"""
Pydantic schemas for export API requests and responses.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from jobview.exports.catalog import EXPORTABLE_FIELDS
from jobview.exports.models import ExportFormat, ExportStatus


class DateRange(BaseModel):
    """Inclusive application date range"""

    model_config = ConfigDict(extra="forbid")

    start: date = Field(..., description="First application date included")
    end: date = Field(..., description="Last application date included")

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("date_range.start must not be after date_range.end")
        return self


class ExportFilters(BaseModel):
    """Filters applied to the job application query"""

    model_config = ConfigDict(extra="forbid")

    status: List[str] = Field(
        default_factory=list,
        max_length=50,
        description="Only include applications in these statuses"
    )

    date_range: Optional[DateRange] = Field(
        None,
        description="Only include applications submitted within this range"
    )

    company_names: List[str] = Field(
        default_factory=list,
        max_length=100,
        description="Only include applications to these companies"
    )

    keywords: Optional[str] = Field(
        None,
        max_length=200,
        description="Case-insensitive match on company, position and notes"
    )

    @field_validator("status", "company_names")
    @classmethod
    def strip_blank_entries(cls, values: List[str]) -> List[str]:
        cleaned = [value.strip() for value in values]
        if any(not value for value in cleaned):
            raise ValueError("entries must not be blank")
        return cleaned

    @field_validator("keywords")
    @classmethod
    def normalize_keywords(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class ExportOptions(BaseModel):
    """Presentation options for the generated file"""

    model_config = ConfigDict(extra="forbid")

    fields: List[str] = Field(
        default_factory=list,
        description="Ordered list of fields to export (defaults apply when empty)"
    )

    include_statistics: bool = Field(
        False,
        description="Add a status distribution summary (xlsx only)"
    )

    filename: Optional[str] = Field(
        None,
        max_length=100,
        description="Download file name without extension"
    )

    @field_validator("fields")
    @classmethod
    def check_fields(cls, values: List[str]) -> List[str]:
        unknown = [name for name in values if name not in EXPORTABLE_FIELDS]
        if unknown:
            raise ValueError(f"unsupported export fields: {', '.join(unknown)}")
        if len(set(values)) != len(values):
            raise ValueError("export fields must not repeat")
        return values

    @field_validator("filename")
    @classmethod
    def check_filename(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not value:
            return None
        if any(sep in value for sep in ("/", "\\", "\x00")) or value.startswith("."):
            raise ValueError("filename must be a plain file name")
        if '"' in value or not value.isprintable():
            raise ValueError("filename must not contain quotes or control characters")
        return value


class ExportRequest(BaseModel):
    """Request schema for creating an export task"""

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "format": "xlsx",
                "filters": {
                    "status": ["First Interview"],
                    "date_range": {"start": "2024-01-01", "end": "2024-01-31"},
                },
                "options": {"include_statistics": True},
            }
        },
    )

    format: ExportFormat = Field(..., description="Export format (xlsx, csv, json)")

    filters: ExportFilters = Field(
        default_factory=ExportFilters,
        description="Filter parameters to apply to export query"
    )

    options: ExportOptions = Field(
        default_factory=ExportOptions,
        description="Field selection and file options"
    )


class ExportCreatedResponse(BaseModel):
    """Response schema for export task creation"""

    task_id: str = Field(..., description="Unique export task ID")

    status: ExportStatus = Field(..., description="Current status of export task")

    message: str = Field(..., description="User-friendly status message")

    status_url: str = Field(..., description="URL to poll for status")


class ExportTaskResponse(BaseModel):
    """Full projection of an export task"""

    model_config = ConfigDict(from_attributes=True)

    task_id: str
    format: ExportFormat
    status: ExportStatus
    progress: int = Field(..., ge=0, le=100)
    row_count: int
    total_records: Optional[int] = None
    cancel_requested: bool = False
    error_message: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[str] = Field(None, description="Human readable artifact size")
    download_url: Optional[str] = Field(None, description="Present while the artifact is downloadable")
    created_at: datetime
    started_at: Optional[datetime] = None
    last_progress_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class ExportHistoryItem(BaseModel):
    """Schema for a single export in the history list"""

    task_id: str
    format: ExportFormat
    status: ExportStatus
    row_count: int
    file_name: Optional[str] = None
    file_size: Optional[str] = None
    download_url: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class PaginatedExportHistoryResponse(BaseModel):
    """Response schema for paginated export history"""

    items: List[ExportHistoryItem] = Field(..., description="List of exports, newest first")

    total_items: int = Field(..., description="Total number of exports")

    page: int = Field(..., description="Current page number")

    per_page: int = Field(..., description="Items per page")

    total_pages: int = Field(..., description="Total number of pages")

    has_next: bool

    has_prev: bool


class CancelExportResponse(BaseModel):
    """Result of a cancellation request"""

    task_id: str
    status: ExportStatus
    cancel_requested: bool
    message: str
