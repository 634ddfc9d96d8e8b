"""
Standalone export pool process.

Runs the export scheduler without the HTTP API, for deployments that set
``EXPORT_SCHEDULER_EMBEDDED=false`` on the API servers. Several pool
processes may share one database; admission is a compare-and-set claim.
"""

import signal
import threading
from datetime import timedelta

from jobview.core.config import settings
from jobview.core.db import init_db
from jobview.exports.service import build_export_engine
from jobview.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


def run_export_pool():
    """Run the pool until SIGINT/SIGTERM."""
    configure_logging(settings.log_level)
    init_db()

    engine = build_export_engine(settings)
    engine.storage.sweep_partials(older_than=timedelta(minutes=settings.export_stall_timeout_minutes))

    shutdown = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Shutdown signal received", signal=signum)
        shutdown.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    engine.scheduler.start()
    engine.scheduler.wake()
    logger.info(
        "Export pool running",
        capacity=settings.export_worker_capacity,
        storage=settings.export_storage_dir,
    )

    shutdown.wait()
    engine.scheduler.stop(wait=True)


if __name__ == "__main__":
    run_export_pool()
