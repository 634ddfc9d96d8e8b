"""
FastAPI application factory for the JobView export backend.
"""

from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from jobview.core.config import Settings, settings as default_settings
from jobview.core.db import SessionLocal, init_db
from jobview.exports.router import router as export_router
from jobview.exports.service import build_export_engine
from jobview.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


def create_app(
    settings: Settings = None,
    session_factory: sessionmaker = None,
    start_scheduler: bool = None,
) -> FastAPI:
    """
    Build the API application.

    ``start_scheduler`` defaults to ``settings.export_scheduler_embedded``;
    disable it when a separate pool process (``run_export_pool``) runs the
    exports.
    """
    settings = settings or default_settings
    session_factory = session_factory or SessionLocal
    if start_scheduler is None:
        start_scheduler = settings.export_scheduler_embedded

    engine = build_export_engine(settings, session_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        # Unreachable database is fatal
        init_db(session_factory.kw["bind"])
        engine.storage.sweep_partials(older_than=timedelta(minutes=settings.export_stall_timeout_minutes))
        if start_scheduler:
            engine.scheduler.start()
            engine.scheduler.wake()
        logger.info("JobView export API started", environment=settings.environment)
        try:
            yield
        finally:
            if start_scheduler:
                engine.scheduler.stop(wait=True)
            logger.info("JobView export API stopped")

    app = FastAPI(lifespan=lifespan, title="JobView Export API")
    app.state.export_engine = engine
    app.state.export_service = engine.service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(export_router)

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "scheduler_running": engine.scheduler.running,
            "capacity": engine.scheduler.capacity,
            "active": engine.scheduler.active_count,
        }

    return app
