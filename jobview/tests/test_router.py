# jobview/tests/test_router.py

import csv
import io
from datetime import date

import pytest
from fastapi.testclient import TestClient

from jobview.applications.models import JobApplication
from jobview.core.config import Settings
from jobview.core.db import session_scope
from jobview.core.security import CurrentUser, get_current_user
from jobview.exports.models import ExportStatus
from jobview.main import create_app
from jobview.tests.conftest import wait_for


def _settings(tmp_path, **overrides) -> Settings:
    values = {
        "export_storage_dir": str(tmp_path / "exports"),
        "export_worker_capacity": 2,
        "export_batch_size": 2,
        "export_tick_interval_seconds": 0.05,
        "export_max_daily_per_user": 10,
    }
    values.update(overrides)
    return Settings(**values)


def _login(app, user_id: int, is_admin: bool = False):
    app.dependency_overrides[get_current_user] = lambda: CurrentUser(id=user_id, is_admin=is_admin)


@pytest.fixture
def applications(session_factory):
    with session_scope(session_factory) as db:
        db.add_all(
            [
                JobApplication(
                    user_id=1,
                    company_name=f"Company {i}",
                    position_title="Data Engineer",
                    application_date=date(2024, 2, i),
                    status="Applied" if i % 2 else "Rejected",
                )
                for i in range(1, 6)
            ]
            + [
                JobApplication(
                    user_id=2,
                    company_name="Other Co",
                    position_title="Analyst",
                    application_date=date(2024, 2, 1),
                    status="Applied",
                )
            ]
        )


@pytest.fixture
def make_client(tmp_path, session_factory):
    clients = []

    def _make(start_scheduler: bool = True, **overrides):
        app = create_app(_settings(tmp_path, **overrides), session_factory, start_scheduler=start_scheduler)
        _login(app, 1)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return app, client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client, applications):
    return make_client()


@pytest.fixture
def idle_client(make_client):
    """Client whose scheduler never runs, so tasks stay PENDING"""
    return make_client(start_scheduler=False)


def _wait_terminal(client, task_id):
    def terminal():
        status = client.get(f"/api/v1/export/status/{task_id}").json()["status"]
        return status in {"COMPLETED", "FAILED", "CANCELLED"}

    assert wait_for(terminal)
    return client.get(f"/api/v1/export/status/{task_id}").json()


class TestCreateExport:

    def test_export_runs_to_completion(self, client):
        app, http = client

        response = http.post(
            "/api/v1/export",
            json={
                "format": "csv",
                "filters": {"status": ["Applied"]},
                "options": {"fields": ["company_name", "status"], "filename": "applied"},
            },
        )

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "PENDING"
        assert body["status_url"] == f"/api/v1/export/status/{body['task_id']}"

        status = _wait_terminal(http, body["task_id"])
        assert status["status"] == "COMPLETED"
        assert status["progress"] == 100
        assert status["row_count"] == 3
        assert status["download_url"] == f"/api/v1/export/download/{body['task_id']}"

        download = http.get(status["download_url"])
        assert download.status_code == 200
        assert download.headers["content-type"].startswith("text/csv")
        assert 'filename="applied.csv"' in download.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(download.content.decode("utf-8-sig"))))
        assert rows[0] == ["Company", "Status"]
        assert sorted(row[0] for row in rows[1:]) == ["Company 1", "Company 3", "Company 5"]

    def test_unsupported_format_rejected_without_task(self, idle_client):
        app, http = idle_client

        response = http.post("/api/v1/export", json={"format": "Z"})

        assert response.status_code == 422
        assert http.get("/api/v1/export/history").json()["total_items"] == 0

    @pytest.mark.parametrize(
        "payload",
        [
            {"format": "csv", "options": {"fields": ["password"]}},
            {"format": "csv", "options": {"filename": "../etc/passwd"}},
            {"format": "csv", "options": {"filename": 'my "report"'}},
            {"format": "csv", "options": {"filename": "line\nbreak"}},
            {"format": "csv", "filters": {"date_range": {"start": "2024-02-01", "end": "2024-01-01"}}},
            {"format": "csv", "unexpected": True},
        ],
    )
    def test_invalid_requests_rejected(self, idle_client, payload):
        app, http = idle_client

        assert http.post("/api/v1/export", json=payload).status_code == 422
        assert http.get("/api/v1/export/history").json()["total_items"] == 0

    def test_daily_quota_returns_429(self, make_client):
        app, http = make_client(start_scheduler=False, export_max_daily_per_user=1)

        assert http.post("/api/v1/export", json={"format": "json"}).status_code == 202
        response = http.post("/api/v1/export", json={"format": "json"})

        assert response.status_code == 429
        assert "Retry-After" in response.headers

    def test_backlog_full_returns_429(self, make_client):
        app, http = make_client(start_scheduler=False, export_max_pending_tasks=1)

        assert http.post("/api/v1/export", json={"format": "json"}).status_code == 202
        assert http.post("/api/v1/export", json={"format": "json"}).status_code == 429

    def test_active_exports_per_user_limited(self, make_client):
        app, http = make_client(start_scheduler=False, export_max_active_per_user=1)
        first = http.post("/api/v1/export", json={"format": "json"}).json()["task_id"]

        response = http.post("/api/v1/export", json={"format": "json"})
        assert response.status_code == 429
        assert "Retry-After" in response.headers

        # Other users have their own allowance
        _login(app, 2)
        assert http.post("/api/v1/export", json={"format": "json"}).status_code == 202

        # A finished task frees the slot
        _login(app, 1)
        assert http.delete(f"/api/v1/export/cancel/{first}").json()["status"] == "CANCELLED"
        assert http.post("/api/v1/export", json={"format": "json"}).status_code == 202

    def test_non_ascii_filename_downloads(self, client):
        app, http = client
        task_id = http.post(
            "/api/v1/export", json={"format": "csv", "options": {"filename": "求职记录"}}
        ).json()["task_id"]
        assert _wait_terminal(http, task_id)["status"] == "COMPLETED"

        download = http.get(f"/api/v1/export/download/{task_id}")

        assert download.status_code == 200
        disposition = download.headers["content-disposition"]
        assert "filename*=UTF-8''%E6%B1%82%E8%81%8C%E8%AE%B0%E5%BD%95.csv" in disposition
        assert 'filename="export.csv"' in disposition
        assert download.content.decode("utf-8-sig").startswith("Company")


class TestTaskAccess:

    def test_other_owner_sees_not_found(self, idle_client):
        app, http = idle_client
        task_id = http.post("/api/v1/export", json={"format": "csv"}).json()["task_id"]

        _login(app, 2)
        assert http.get(f"/api/v1/export/status/{task_id}").status_code == 404
        assert http.get(f"/api/v1/export/download/{task_id}").status_code == 404
        assert http.delete(f"/api/v1/export/cancel/{task_id}").status_code == 404

        _login(app, 99, is_admin=True)
        assert http.get(f"/api/v1/export/status/{task_id}").status_code == 200

    def test_unknown_task_not_found(self, idle_client):
        app, http = idle_client

        assert http.get("/api/v1/export/status/doesnotexist").status_code == 404

    def test_download_before_completion_conflicts(self, idle_client):
        app, http = idle_client
        task_id = http.post("/api/v1/export", json={"format": "csv"}).json()["task_id"]

        response = http.get(f"/api/v1/export/download/{task_id}")

        assert response.status_code == 409

    def test_download_after_purge_is_gone(self, client):
        app, http = client
        task_id = http.post("/api/v1/export", json={"format": "xlsx"}).json()["task_id"]
        status = _wait_terminal(http, task_id)
        assert status["status"] == "COMPLETED"

        engine = app.state.export_engine
        task = engine.repository.get(task_id)
        engine.storage.delete(task.artifact_ref)
        engine.repository.clear_artifact(task_id, task.artifact_ref)

        assert http.get(f"/api/v1/export/download/{task_id}").status_code == 410
        assert http.get(f"/api/v1/export/status/{task_id}").json()["status"] == "COMPLETED"


class TestCancel:

    def test_cancel_pending_is_idempotent(self, idle_client):
        app, http = idle_client
        task_id = http.post("/api/v1/export", json={"format": "csv"}).json()["task_id"]

        first = http.delete(f"/api/v1/export/cancel/{task_id}")
        second = http.delete(f"/api/v1/export/cancel/{task_id}")

        assert first.status_code == 200
        assert first.json()["status"] == "CANCELLED"
        assert second.json()["status"] == "CANCELLED"

        # The scheduler never picks it up
        engine = app.state.export_engine
        assert engine.scheduler.tick() == 0
        assert engine.repository.get(task_id).status == ExportStatus.CANCELLED

    def test_cancel_completed_reports_status(self, client):
        app, http = client
        task_id = http.post("/api/v1/export", json={"format": "json"}).json()["task_id"]
        _wait_terminal(http, task_id)

        response = http.delete(f"/api/v1/export/cancel/{task_id}")

        assert response.status_code == 200
        assert response.json()["status"] == "COMPLETED"
        assert response.json()["cancel_requested"] is False

    def test_cancel_failed_leaves_task_unchanged(self, idle_client):
        app, http = idle_client
        task_id = http.post("/api/v1/export", json={"format": "csv"}).json()["task_id"]
        engine = app.state.export_engine
        assert engine.repository.claim_next_pending().id == task_id
        assert engine.repository.transition(
            task_id, [ExportStatus.RUNNING], ExportStatus.FAILED, error_message="record store connection lost"
        )

        response = http.delete(f"/api/v1/export/cancel/{task_id}")

        assert response.status_code == 200
        assert response.json()["status"] == "FAILED"
        assert response.json()["cancel_requested"] is False
        stored = engine.repository.get(task_id)
        assert stored.status == ExportStatus.FAILED
        assert stored.error_message == "record store connection lost"
        assert stored.cancel_requested is False


class TestHistoryAndDiscovery:

    def test_history_paginates_newest_first(self, idle_client):
        app, http = idle_client
        ids = [http.post("/api/v1/export", json={"format": "csv"}).json()["task_id"] for _ in range(3)]

        page = http.get("/api/v1/export/history", params={"page": 1, "per_page": 2}).json()

        assert page["total_items"] == 3
        assert page["total_pages"] == 2
        assert page["has_next"] is True
        assert len(page["items"]) == 2
        assert set(item["task_id"] for item in page["items"]) <= set(ids)

    def test_history_per_page_limit(self, idle_client):
        app, http = idle_client

        assert http.get("/api/v1/export/history", params={"per_page": 51}).status_code == 422

    def test_formats_fields_template(self, idle_client):
        app, http = idle_client

        formats = http.get("/api/v1/export/formats").json()
        assert [fmt["value"] for fmt in formats["formats"]] == ["xlsx", "csv", "json"]
        assert formats["default_format"] == "xlsx"

        fields = http.get("/api/v1/export/fields").json()
        assert "company_name" in fields["default_fields"]
        assert any(field["required"] for field in fields["fields"])

        template = http.get("/api/v1/export/template").json()
        assert "basic_export" in template["examples"]

    def test_health(self, client):
        app, http = client

        body = http.get("/health").json()

        assert body["status"] == "ok"
        assert body["capacity"] == 2
        assert body["scheduler_running"] is True
