# jobview/utils/general.py

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the form stored in the database)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_file_size(size: int) -> str:
    """
    Human readable file size using 1024 multiples.

    >>> format_file_size(512)
    '512 B'
    >>> format_file_size(2048)
    '2.0 KB'
    """
    unit = 1024
    if size < unit:
        return f"{size} B"

    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.1f} {'KMGTPE'[exp]}B"


def serialize_value(value: Any) -> str:
    """
    Serialize a value for flat export formats (handle dates, decimals, None, etc.)
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, Decimal):
        return str(float(value))
    return str(value)
