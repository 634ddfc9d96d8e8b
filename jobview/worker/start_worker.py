"""
Celery worker startup script

Starts the celery worker (with embedded beat) that runs the export
housekeeping tasks.
"""

# Local imports
from jobview.core.config import settings
from jobview.utils.logger import configure_logging, get_logger
from jobview.worker.app import app

logger = get_logger(__name__)


def start_worker():
    """Start the celery worker."""
    configure_logging(settings.log_level)

    argv = [
        "worker",
        "--beat",  # Run the beat scheduler in this worker for the retention sweep
        f"--loglevel={settings.log_level.lower()}",
        "--concurrency=2",  # Housekeeping only; exports run in the export pool
        "--max-tasks-per-child=100",
        "--prefetch-multiplier=1",
    ]

    logger.info(
        "Starting Celery worker",
        redis=f"{settings.redis_host}:{settings.redis_port}",
        sweep_interval_minutes=settings.export_sweep_interval_minutes,
    )

    app.worker_main(argv)


if __name__ == "__main__":
    start_worker()
