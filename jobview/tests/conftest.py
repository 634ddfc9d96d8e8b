# jobview/tests/conftest.py

import threading
import time
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest

from jobview.core.db import build_engine, build_session_factory, init_db
from jobview.exports.generator import ExportGenerator
from jobview.exports.models import ExportFormat, ExportStatus, ExportTask
from jobview.exports.record_source import RecordSource
from jobview.exports.repository import ExportTaskRepository
from jobview.exports.runner import ExportRunner
from jobview.exports.storage import ExportStorage


def make_records(count: int, start: int = 1) -> List[Dict[str, Any]]:
    """Job application rows shaped like the record source output"""
    statuses = ["Applied", "First Interview", "Rejected"]
    return [
        {
            "id": i,
            "company_name": f"Company {i}",
            "position_title": "Backend Engineer",
            "application_date": date(2024, 1, 1) + timedelta(days=i % 28),
            "status": statuses[i % len(statuses)],
            "salary_range": "100k-120k",
            "work_location": "Remote",
            "interview_time": None,
            "notes": f"note {i}",
            "created_at": datetime(2024, 1, 1, 9, 30) + timedelta(hours=i),
        }
        for i in range(start, start + count)
    ]


class ListRecordSource(RecordSource):
    """In-memory record source"""

    def __init__(self, records: List[Dict[str, Any]]):
        self.records = records
        self.fetch_calls = 0

    def count(self, owner_id: int, filters: Dict[str, Any]) -> Optional[int]:
        return len(self.records)

    def fetch_batch(self, owner_id, filters, offset, limit):
        self.fetch_calls += 1
        return self.records[offset:offset + limit]


class FailingRecordSource(ListRecordSource):
    """Raises on the given (1-based) fetch"""

    def __init__(self, records, fail_on_fetch: int = 2):
        super().__init__(records)
        self.fail_on_fetch = fail_on_fetch

    def fetch_batch(self, owner_id, filters, offset, limit):
        if self.fetch_calls + 1 == self.fail_on_fetch:
            self.fetch_calls += 1
            raise RuntimeError("record store connection lost")
        return super().fetch_batch(owner_id, filters, offset, limit)


class BlockingRecordSource(ListRecordSource):
    """
    Blocks every fetch until ``release`` is set, so tests can hold workers
    inside a task. ``entered`` counts fetches that have started.
    """

    def __init__(self, records):
        super().__init__(records)
        self.release = threading.Event()
        self._lock = threading.Lock()
        self.entered = 0

    def fetch_batch(self, owner_id, filters, offset, limit):
        with self._lock:
            self.entered += 1
        self.release.wait(timeout=10)
        return super().fetch_batch(owner_id, filters, offset, limit)


def wait_for(predicate, timeout: float = 10.0, interval: float = 0.02) -> bool:
    """Poll until ``predicate`` returns truthy or the timeout passes"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def db_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def repository(session_factory):
    return ExportTaskRepository(session_factory)


@pytest.fixture
def storage(tmp_path):
    return ExportStorage(str(tmp_path / "exports"))


@pytest.fixture
def create_task(repository):
    """Factory creating PENDING tasks"""

    def _create(
        owner_id: int = 1,
        export_format: ExportFormat = ExportFormat.CSV,
        created_at: datetime = None,
        **options,
    ) -> ExportTask:
        task = ExportTask(
            owner_id=owner_id,
            format=export_format,
            filters={},
            options=options,
        )
        if created_at is not None:
            task.created_at = created_at
        return repository.create(task)

    return _create


@pytest.fixture
def make_runner(repository, storage):
    """Factory building a runner around a given record source"""

    def _make(record_source: RecordSource, batch_size: int = 10) -> ExportRunner:
        return ExportRunner(
            repository,
            storage,
            ExportGenerator(record_source, batch_size=batch_size),
            retention=timedelta(hours=24),
        )

    return _make


def task_status(repository: ExportTaskRepository, task_id: str) -> ExportStatus:
    return repository.get(task_id).status
