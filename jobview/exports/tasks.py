### jobview/exports/tasks.py

"""
Celery Tasks for Export Housekeeping

The retention sweep runs from Celery beat. Exports themselves never run in
Celery: they run in the API process or in ``jobview.worker.run_export_pool``.
"""

from celery import shared_task

from jobview.core.config import settings
from jobview.exports.repository import ExportTaskRepository
from jobview.exports.service import build_retention_service
from jobview.exports.storage import ExportStorage
from jobview.utils.logger import get_logger

logger = get_logger(__name__)


@shared_task(name="exports.run_retention_sweep")
def run_retention_sweep():
    """
    Purge expired artifacts, delete old task records and fail stalled tasks.

    Returns:
        dict: Counts per sweep step
    """
    logger.info("Starting export retention sweep")
    try:
        retention = build_retention_service(
            settings,
            ExportTaskRepository(),
            ExportStorage(settings.export_storage_dir),
        )
        result = retention.run_sweep()
        return {"status": "success", **result}
    except Exception as e:
        logger.error(f"Error in run_retention_sweep: {e}", exc_info=True)
        raise

