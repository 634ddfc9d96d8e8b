### jobview/exports/generator.py

"""
Export Generator - pages records out of the record store into a format writer.

Batch size is fixed by configuration. Between batches the generator reports
progress and checks the task's cancellation token; it never retries.
"""

from typing import Any, Callable, Dict, Optional

from jobview.exports.cancellation import CancellationToken
from jobview.exports.exceptions import ExportCancelled, GenerationError, WriterStateError
from jobview.exports.record_source import RecordSource
from jobview.exports.writers import FormatWriter
from jobview.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 1000

ProgressCallback = Callable[[int, int, Optional[int]], None]


def compute_progress(rows_written: int, total: Optional[int]) -> int:
    """Percentage complete, capped at 99 until the artifact is committed."""
    if not total:
        return 0
    return min(99, (rows_written * 100) // total)


class ExportGenerator:
    """
    Drives one export: record source -> format writer, batch by batch.
    """

    def __init__(self, record_source: RecordSource, batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.record_source = record_source
        self.batch_size = batch_size

    def run(
        self,
        task_id: str,
        owner_id: int,
        filters: Dict[str, Any],
        writer: FormatWriter,
        token: CancellationToken,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """
        Stream all matching records into ``writer`` and finalize it.

        Returns:
            Number of rows written

        Raises:
            ExportCancelled: cancellation observed at a batch boundary
            GenerationError: record store or encoding failure
        """
        if token.is_cancelled():
            raise ExportCancelled(task_id, 0)

        try:
            total = self.record_source.count(owner_id, filters)
        except Exception as e:
            raise GenerationError(f"Failed to count export records: {e}") from e

        logger.info("Starting export generation", task_id=task_id, total=total, batch_size=self.batch_size)
        if on_progress is not None:
            on_progress(0, 0, total)

        try:
            writer.write_header()
        except Exception as e:
            raise GenerationError(f"Failed to write export header: {e}") from e

        rows_written = 0
        batch_number = 0
        while True:
            if token.is_cancelled():
                raise ExportCancelled(task_id, rows_written)

            batch_number += 1
            try:
                batch = self.record_source.fetch_batch(owner_id, filters, rows_written, self.batch_size)
            except Exception as e:
                raise GenerationError(f"Failed to fetch batch {batch_number}: {e}") from e

            try:
                rows_written += writer.write_rows(batch)
            except WriterStateError:
                raise
            except Exception as e:
                raise GenerationError(f"Failed to encode batch {batch_number}: {e}") from e

            if on_progress is not None and batch:
                on_progress(rows_written, compute_progress(rows_written, total), total)

            if len(batch) < self.batch_size:
                break

        # Last checkpoint before the artifact is sealed
        if token.is_cancelled():
            raise ExportCancelled(task_id, rows_written)

        try:
            writer.finalize()
        except WriterStateError:
            raise
        except Exception as e:
            raise GenerationError(f"Failed to finalize export file: {e}") from e

        logger.info("Export generation finished", task_id=task_id, rows=rows_written, batches=batch_number)
        return rows_written
