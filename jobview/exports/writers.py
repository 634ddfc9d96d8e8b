### jobview/exports/writers.py

"""
Format Writers - incremental encoders for export artifacts.

Each writer wraps a binary stream supplied by the storage layer and accepts
rows in batches, so memory stays bounded regardless of export size:
- Write-only mode for Excel (openpyxl)
- Incremental CSV writing
- Incremental JSON array writing
"""

import csv
import io
import json
from abc import ABC, abstractmethod
from collections import Counter
from datetime import date, datetime
from decimal import Decimal
from typing import IO, Any, Dict, Iterable, List, Type

from openpyxl import Workbook
from openpyxl.cell import WriteOnlyCell
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from jobview.exports.catalog import STATUS_COLORS, FieldInfo
from jobview.exports.exceptions import WriterStateError
from jobview.exports.models import ExportFormat
from jobview.utils.general import serialize_value
from jobview.utils.logger import get_logger

logger = get_logger(__name__)

Record = Dict[str, Any]


class FormatWriter(ABC):
    """
    Base class for export encoders.

    Lifecycle: ``write_header`` once, ``write_row``/``write_rows`` any number
    of times, then ``finalize`` exactly once. Any call after ``finalize``
    raises WriterStateError.
    ``abort`` releases an unfinished document instead of ``finalize``.
    """

    def __init__(self, stream: IO[bytes], fields: List[FieldInfo], include_statistics: bool = False):
        self.stream = stream
        self.fields = list(fields)
        self.include_statistics = include_statistics
        self.rows_written = 0
        self._header_written = False
        self._finalized = False

    @property
    def finalized(self) -> bool:
        return self._finalized

    def _ensure_open(self) -> None:
        if self._finalized:
            raise WriterStateError(f"{type(self).__name__} has already been finalized")

    def write_header(self) -> None:
        self._ensure_open()
        if self._header_written:
            raise WriterStateError("header already written")
        self._write_header()
        self._header_written = True

    def write_row(self, record: Record) -> None:
        self._ensure_open()
        if not self._header_written:
            self.write_header()
        self._write_row(record)
        self.rows_written += 1

    def write_rows(self, records: Iterable[Record]) -> int:
        """Write one batch of records; returns how many were written."""
        count = 0
        for record in records:
            self.write_row(record)
            count += 1
        self._flush_batch()
        return count

    def finalize(self) -> IO[bytes]:
        """Complete the document and flush it to the underlying stream."""
        self._ensure_open()
        if not self._header_written:
            self.write_header()
        self._finalize()
        self._finalized = True
        self.stream.flush()
        logger.debug("Writer finalized", writer=type(self).__name__, rows=self.rows_written)
        return self.stream

    def abort(self) -> None:
        """Drop an unfinished document. Does nothing once finalized or aborted."""
        if self._finalized:
            return
        self._finalized = True
        try:
            self._abort()
        except Exception as e:
            logger.warning(f"Failed to release {type(self).__name__} resources: {e}", exc_info=True)

    @abstractmethod
    def _write_header(self) -> None:
        ...

    @abstractmethod
    def _write_row(self, record: Record) -> None:
        ...

    def _flush_batch(self) -> None:
        pass

    @abstractmethod
    def _finalize(self) -> None:
        ...

    def _abort(self) -> None:
        pass


class CsvWriter(FormatWriter):
    """
    CSV encoder.

    Written as UTF-8 with a byte order mark so spreadsheet applications pick
    the right encoding.
    """

    def __init__(self, stream: IO[bytes], fields: List[FieldInfo], include_statistics: bool = False):
        super().__init__(stream, fields, include_statistics)
        self._text = io.TextIOWrapper(stream, encoding="utf-8-sig", newline="")
        self._writer = csv.writer(self._text)

    def _write_header(self) -> None:
        self._writer.writerow([field.label for field in self.fields])

    def _write_row(self, record: Record) -> None:
        self._writer.writerow([serialize_value(record.get(field.name)) for field in self.fields])

    def _flush_batch(self) -> None:
        self._text.flush()

    def _finalize(self) -> None:
        self._text.flush()
        # Hand the binary stream back to the caller open
        self._text.detach()

    def _abort(self) -> None:
        self._text.detach()


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


class JsonWriter(FormatWriter):
    """JSON encoder producing a single array of objects keyed by field name."""

    def __init__(self, stream: IO[bytes], fields: List[FieldInfo], include_statistics: bool = False):
        super().__init__(stream, fields, include_statistics)
        self._text = io.TextIOWrapper(stream, encoding="utf-8", newline="")

    def _write_header(self) -> None:
        self._text.write("[")

    def _write_row(self, record: Record) -> None:
        if self.rows_written:
            self._text.write(",")
        self._text.write("\n")
        payload = {field.name: record.get(field.name) for field in self.fields}
        json.dump(payload, self._text, default=_json_default, ensure_ascii=False)

    def _flush_batch(self) -> None:
        self._text.flush()

    def _finalize(self) -> None:
        self._text.write("\n]" if self.rows_written else "]")
        self._text.flush()
        self._text.detach()

    def _abort(self) -> None:
        self._text.detach()


class XlsxWriter(FormatWriter):
    """
    Excel encoder using openpyxl write-only mode.

    Write-only worksheets stream rows to a temporary file instead of keeping
    the whole sheet in memory. Column widths must be set before the first
    row, and styling is applied per cell through WriteOnlyCell.
    """

    SHEET_TITLE = "Job Applications"
    STATS_SHEET_TITLE = "Statistics"

    def __init__(self, stream: IO[bytes], fields: List[FieldInfo], include_statistics: bool = False):
        super().__init__(stream, fields, include_statistics)
        self._workbook = Workbook(write_only=True)
        self._sheet = self._workbook.create_sheet(self.SHEET_TITLE)
        self._status_counts: Counter = Counter()

        thin = Side(style="thin", color="000000")
        light = Side(style="thin", color="CCCCCC")
        self._header_font = Font(bold=True, size=12)
        self._header_fill = PatternFill(fill_type="solid", start_color="4CAF50", end_color="4CAF50")
        self._header_alignment = Alignment(horizontal="center", vertical="center")
        self._header_border = Border(left=thin, right=thin, top=thin, bottom=thin)
        self._data_border = Border(left=light, right=light, top=light, bottom=light)
        self._data_alignment = Alignment(horizontal="left", vertical="center", wrap_text=True)
        self._center_alignment = Alignment(horizontal="center", vertical="center")
        self._status_fills = {
            status: PatternFill(fill_type="solid", start_color=color, end_color=color)
            for status, color in STATUS_COLORS.items()
        }

        # Sequence column plus one column per field
        self._sheet.column_dimensions["A"].width = 6
        for index, field in enumerate(self.fields, start=2):
            self._sheet.column_dimensions[get_column_letter(index)].width = field.width

    def _header_cell(self, value: Any, sheet=None) -> WriteOnlyCell:
        cell = WriteOnlyCell(sheet or self._sheet, value=value)
        cell.font = self._header_font
        cell.fill = self._header_fill
        cell.alignment = self._header_alignment
        cell.border = self._header_border
        return cell

    def _write_header(self) -> None:
        self._sheet.append(
            [self._header_cell("No.")] + [self._header_cell(field.label) for field in self.fields]
        )

    def _data_cell(self, field: FieldInfo, value: Any) -> WriteOnlyCell:
        if isinstance(value, Decimal):
            value = float(value)
        cell = WriteOnlyCell(self._sheet, value="" if value is None else value)
        cell.border = self._data_border

        if isinstance(value, datetime):
            cell.number_format = "yyyy-mm-dd hh:mm:ss"
            cell.alignment = self._center_alignment
        elif isinstance(value, date):
            cell.number_format = "yyyy-mm-dd"
            cell.alignment = self._center_alignment
        elif field.name == "status":
            cell.alignment = self._center_alignment
            fill = self._status_fills.get(value)
            if fill is not None:
                cell.fill = fill
        else:
            cell.alignment = self._data_alignment
        return cell

    def _write_row(self, record: Record) -> None:
        sequence = WriteOnlyCell(self._sheet, value=self.rows_written + 1)
        sequence.border = self._data_border
        sequence.alignment = self._center_alignment
        self._sheet.append(
            [sequence] + [self._data_cell(field, record.get(field.name)) for field in self.fields]
        )
        if self.include_statistics:
            self._status_counts[record.get("status") or "Unknown"] += 1

    def _write_statistics(self) -> None:
        sheet = self._workbook.create_sheet(self.STATS_SHEET_TITLE)
        sheet.column_dimensions["A"].width = 24
        sheet.column_dimensions["B"].width = 10
        sheet.column_dimensions["C"].width = 12

        sheet.append([self._header_cell(title, sheet) for title in ("Status", "Count", "Percentage")])
        total = sum(self._status_counts.values())
        for status, count in self._status_counts.most_common():
            percentage = (count / total * 100) if total else 0.0
            sheet.append([status, count, f"{percentage:.1f}%"])
        sheet.append(["Total", total, "100.0%" if total else "0.0%"])

    def _finalize(self) -> None:
        if self.include_statistics:
            self._write_statistics()
        self._workbook.save(self.stream)

    def _abort(self) -> None:
        # Same teardown save() does per sheet: close the row stream, drop the temp file
        for sheet in self._workbook.worksheets:
            if not sheet.closed:
                sheet.close()
            sheet._writer.cleanup()


WRITERS: Dict[ExportFormat, Type[FormatWriter]] = {
    ExportFormat.XLSX: XlsxWriter,
    ExportFormat.CSV: CsvWriter,
    ExportFormat.JSON: JsonWriter,
}


def get_writer_class(export_format: ExportFormat) -> Type[FormatWriter]:
    try:
        return WRITERS[ExportFormat(export_format)]
    except (KeyError, ValueError):
        raise ValueError(f"Unsupported export format: {export_format}")
