# jobview/exports/catalog.py

"""
Static export capabilities: supported formats, exportable fields and the
request template served to clients.

Formats and fields are closed sets. Requests naming anything outside them are
rejected before a task is created.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from jobview.exports.models import ExportFormat


@dataclass(frozen=True)
class FormatInfo:
    format: ExportFormat
    label: str
    description: str
    extension: str
    media_type: str


@dataclass(frozen=True)
class FieldInfo:
    name: str
    label: str
    description: str
    required: bool = False
    width: float = 15


SUPPORTED_FORMATS: Dict[ExportFormat, FormatInfo] = {
    ExportFormat.XLSX: FormatInfo(
        format=ExportFormat.XLSX,
        label="Excel workbook (.xlsx)",
        description="Excel 2007+ workbook with styled header and optional statistics sheet",
        extension="xlsx",
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ),
    ExportFormat.CSV: FormatInfo(
        format=ExportFormat.CSV,
        label="CSV file (.csv)",
        description="Comma separated values, opens anywhere but carries no styling",
        extension="csv",
        media_type="text/csv",
    ),
    ExportFormat.JSON: FormatInfo(
        format=ExportFormat.JSON,
        label="JSON file (.json)",
        description="Array of objects keyed by field name, for programmatic use",
        extension="json",
        media_type="application/json",
    ),
}

DEFAULT_FORMAT = ExportFormat.XLSX


EXPORTABLE_FIELDS: Dict[str, FieldInfo] = {
    field.name: field
    for field in [
        FieldInfo("company_name", "Company", "Company the application was sent to", True, 20),
        FieldInfo("position_title", "Position", "Title of the position applied for", True, 25),
        FieldInfo("application_date", "Applied On", "Date the application was submitted", False, 12),
        FieldInfo("status", "Status", "Current application status", False, 18),
        FieldInfo("salary_range", "Salary Range", "Expected or offered salary range", False, 15),
        FieldInfo("work_location", "Location", "City or site of the job", False, 15),
        FieldInfo("interview_time", "Interview Time", "Scheduled interview time", False, 18),
        FieldInfo("interview_location", "Interview Location", "Interview venue or meeting link", False, 20),
        FieldInfo("interview_type", "Interview Type", "Online, onsite, phone, ...", False, 12),
        FieldInfo("hr_name", "HR Name", "Name of the recruiter", False, 12),
        FieldInfo("hr_phone", "HR Phone", "Recruiter phone number", False, 15),
        FieldInfo("hr_email", "HR Email", "Recruiter email address", False, 20),
        FieldInfo("reminder_time", "Reminder", "Reminder time set for this application", False, 18),
        FieldInfo("follow_up_date", "Follow Up", "Planned follow-up date", False, 12),
        FieldInfo("notes", "Notes", "Free form notes", False, 30),
        FieldInfo("created_at", "Created", "When the record was created", False, 20),
        FieldInfo("updated_at", "Updated", "When the record was last updated", False, 20),
    ]
}

DEFAULT_FIELDS: List[str] = [
    "company_name",
    "position_title",
    "application_date",
    "status",
    "salary_range",
    "work_location",
    "interview_time",
    "notes",
]

SUPPORTED_FILTERS: List[str] = ["status", "date_range", "company_names", "keywords"]

# Background tint of the status column in spreadsheet exports
STATUS_COLORS: Dict[str, str] = {
    "Applied": "E3F2FD",
    "Resume Screening": "FFF3E0",
    "Written Test": "F3E5F5",
    "First Interview": "E8F5E8",
    "Second Interview": "E8F5E8",
    "Third Interview": "E8F5E8",
    "HR Interview": "E8F5E8",
    "Offer Received": "C8E6C9",
    "Offer Accepted": "4CAF50",
    "Rejected": "FFCDD2",
    "Process Finished": "F5F5F5",
}


def get_format_info(export_format: ExportFormat) -> FormatInfo:
    return SUPPORTED_FORMATS[ExportFormat(export_format)]


def resolve_fields(fields: List[str] = None) -> List[FieldInfo]:
    """Map requested field names to catalogue entries, defaulting when empty."""
    names = fields or DEFAULT_FIELDS
    return [EXPORTABLE_FIELDS[name] for name in names]


def formats_payload() -> Dict[str, Any]:
    return {
        "formats": [
            {
                "value": info.format.value,
                "label": info.label,
                "description": info.description,
            }
            for info in SUPPORTED_FORMATS.values()
        ],
        "default_format": DEFAULT_FORMAT.value,
    }


def fields_payload() -> Dict[str, Any]:
    return {
        "fields": [
            {
                "value": info.name,
                "label": info.label,
                "required": info.required,
                "description": info.description,
            }
            for info in EXPORTABLE_FIELDS.values()
        ],
        "default_fields": list(DEFAULT_FIELDS),
    }


def template_payload(max_records_hint: int) -> Dict[str, Any]:
    return {
        "template": {
            "name": "Job application export",
            "description": "Export your job applications to a spreadsheet or data file",
            "options": {
                "formats": [fmt.value for fmt in SUPPORTED_FORMATS],
                "max_records": max_records_hint,
                "supported_filters": list(SUPPORTED_FILTERS),
            },
        },
        "examples": {
            "basic_export": {
                "format": "xlsx",
                "options": {
                    "fields": ["company_name", "position_title", "application_date", "status"],
                },
            },
            "full_export": {
                "format": "xlsx",
                "filters": {
                    "status": ["First Interview", "Second Interview"],
                    "date_range": {"start": "2024-01-01", "end": "2024-12-31"},
                },
                "options": {
                    "fields": list(DEFAULT_FIELDS),
                    "include_statistics": True,
                    "filename": "my_applications",
                },
            },
        },
    }
