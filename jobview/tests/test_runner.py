# jobview/tests/test_runner.py

import json
from datetime import timedelta
from unittest.mock import patch

from openpyxl.worksheet._writer import ALL_TEMP_FILES
from sqlalchemy.exc import OperationalError

from jobview.exports.cancellation import CancellationToken
from jobview.exports.models import ExportFormat, ExportStatus
from jobview.exports.writers import XlsxWriter
from jobview.tests.conftest import FailingRecordSource, ListRecordSource, make_records


def _claim(repository, create_task, **kwargs):
    task = create_task(**kwargs)
    claimed = repository.claim_next_pending()
    assert claimed.id == task.id
    return claimed


class TestExportRunner:

    def test_completes_and_commits_artifact(self, repository, storage, create_task, make_runner):
        task = _claim(repository, create_task, export_format=ExportFormat.JSON)
        runner = make_runner(ListRecordSource(make_records(23)), batch_size=10)

        status = runner.run(task.id, CancellationToken(task.id))

        assert status == ExportStatus.COMPLETED
        stored = repository.get(task.id)
        assert stored.status == ExportStatus.COMPLETED
        assert stored.row_count == 23
        assert stored.total_records == 23
        assert stored.progress == 100
        assert stored.file_name.endswith(".json")
        assert stored.file_size == storage.size(stored.artifact_ref)
        assert stored.expires_at == stored.completed_at + timedelta(hours=24)
        with storage.open(stored.artifact_ref) as stream:
            assert len(json.load(stream)) == 23

    def test_zero_records_still_completes(self, repository, storage, create_task, make_runner):
        task = _claim(repository, create_task, export_format=ExportFormat.XLSX)

        status = make_runner(ListRecordSource([])).run(task.id, CancellationToken(task.id))

        assert status == ExportStatus.COMPLETED
        stored = repository.get(task.id)
        assert stored.row_count == 0
        assert storage.size(stored.artifact_ref) > 0

    def test_requested_filename_used(self, repository, create_task, make_runner):
        task = _claim(repository, create_task, filename="my_applications")

        make_runner(ListRecordSource(make_records(1))).run(task.id, CancellationToken(task.id))

        assert repository.get(task.id).file_name == "my_applications.csv"

    def test_failure_on_second_batch_leaves_no_artifact(self, repository, storage, create_task, make_runner):
        task = _claim(repository, create_task)
        runner = make_runner(FailingRecordSource(make_records(30), fail_on_fetch=2), batch_size=10)

        status = runner.run(task.id, CancellationToken(task.id))

        assert status == ExportStatus.FAILED
        stored = repository.get(task.id)
        assert "batch 2" in stored.error_message
        assert stored.artifact_ref is None
        assert list(storage.artifact_root.iterdir()) == []
        assert list(storage.partial_root.iterdir()) == []

    def test_cancelled_task_discards_partial(self, repository, storage, create_task, make_runner):
        task = _claim(repository, create_task)
        token = CancellationToken(task.id)
        token.cancel()

        status = make_runner(ListRecordSource(make_records(5))).run(task.id, token)

        assert status == ExportStatus.CANCELLED
        assert repository.get(task.id).artifact_ref is None
        assert list(storage.artifact_root.iterdir()) == []
        assert list(storage.partial_root.iterdir()) == []

    def test_persisted_cancel_flag_is_honoured(self, repository, create_task, make_runner):
        task = _claim(repository, create_task)
        repository.request_cancel(task.id)
        token = CancellationToken(task.id, read_flag=lambda: repository.is_cancel_requested(task.id))

        status = make_runner(ListRecordSource(make_records(5))).run(task.id, token)

        assert status == ExportStatus.CANCELLED

    def test_lost_final_transition_deletes_artifact(self, repository, storage, create_task, make_runner):
        task = _claim(repository, create_task)
        runner = make_runner(ListRecordSource(make_records(3)))
        real_transition = repository.transition

        def stall_before_completion(task_id, expected, target, **values):
            if target == ExportStatus.COMPLETED:
                # Stall sweep wins the race right before completion
                real_transition(task_id, [ExportStatus.RUNNING], ExportStatus.FAILED, error_message="stalled")
            return real_transition(task_id, expected, target, **values)

        with patch.object(repository, "transition", side_effect=stall_before_completion):
            status = runner.run(task.id, CancellationToken(task.id))

        assert status == ExportStatus.FAILED
        stored = repository.get(task.id)
        assert stored.artifact_ref is None
        assert list(storage.artifact_root.iterdir()) == []

    def test_unexpected_error_fails_task(self, repository, create_task, make_runner):
        task = _claim(repository, create_task)
        runner = make_runner(ListRecordSource(make_records(3)))

        with patch.object(runner.storage, "stage", side_effect=KeyError("disk gone")):
            status = runner.run(task.id, CancellationToken(task.id))

        assert status == ExportStatus.FAILED
        assert "Unexpected export error" in repository.get(task.id).error_message

    def test_task_not_running_is_left_alone(self, repository, create_task, make_runner):
        task = create_task()

        status = make_runner(ListRecordSource([])).run(task.id, CancellationToken(task.id))

        assert status == ExportStatus.PENDING
        assert repository.get(task.id).status == ExportStatus.PENDING


def _locked(*args, **kwargs):
    raise OperationalError("UPDATE export_tasks", {}, Exception("database is locked"))


class TestStoreFailures:

    def test_completion_write_failure_fails_task_and_drops_artifact(self, repository, storage, create_task, make_runner):
        task = _claim(repository, create_task)
        runner = make_runner(ListRecordSource(make_records(3)))
        real_transition = repository.transition

        def locked_on_completion(task_id, expected, target, **values):
            if target == ExportStatus.COMPLETED:
                _locked()
            return real_transition(task_id, expected, target, **values)

        with patch.object(repository, "transition", side_effect=locked_on_completion):
            status = runner.run(task.id, CancellationToken(task.id))

        assert status == ExportStatus.FAILED
        stored = repository.get(task.id)
        assert stored.status == ExportStatus.FAILED
        assert "completion" in stored.error_message
        assert stored.artifact_ref is None
        assert list(storage.artifact_root.iterdir()) == []

    def test_store_down_at_completion_does_not_escape(self, repository, storage, create_task, make_runner):
        task = _claim(repository, create_task)
        runner = make_runner(ListRecordSource(make_records(3)))

        with patch.object(repository, "transition", side_effect=_locked):
            status = runner.run(task.id, CancellationToken(task.id))

        assert status == ExportStatus.FAILED
        assert repository.get(task.id).status == ExportStatus.RUNNING
        assert list(storage.artifact_root.iterdir()) == []

    def test_load_failure_does_not_escape(self, repository, create_task, make_runner):
        task = _claim(repository, create_task)
        runner = make_runner(ListRecordSource(make_records(3)))

        with patch.object(repository, "get", side_effect=_locked):
            status = runner.run(task.id, CancellationToken(task.id))

        assert status == ExportStatus.FAILED
        stored = repository.get(task.id)
        assert stored.status == ExportStatus.FAILED
        assert "Failed to load export task" in stored.error_message

    def test_cancel_write_failure_does_not_escape(self, repository, storage, create_task, make_runner):
        task = _claim(repository, create_task)
        token = CancellationToken(task.id)
        token.cancel()

        with patch.object(repository, "transition", side_effect=_locked):
            status = make_runner(ListRecordSource(make_records(5))).run(task.id, token)

        assert status == ExportStatus.CANCELLED
        assert list(storage.artifact_root.iterdir()) == []
        assert list(storage.partial_root.iterdir()) == []


class TestWriterRelease:

    def test_failed_xlsx_export_releases_writer(self, repository, storage, create_task, make_runner):
        task = _claim(repository, create_task, export_format=ExportFormat.XLSX)
        runner = make_runner(FailingRecordSource(make_records(40), fail_on_fetch=3), batch_size=10)
        temp_files_before = len(ALL_TEMP_FILES)

        with patch.object(XlsxWriter, "abort", autospec=True, side_effect=XlsxWriter.abort) as abort:
            status = runner.run(task.id, CancellationToken(task.id))

        assert status == ExportStatus.FAILED
        abort.assert_called_once()
        assert len(ALL_TEMP_FILES) == temp_files_before
        assert list(storage.partial_root.iterdir()) == []

    def test_cancelled_xlsx_export_releases_writer(self, repository, create_task, make_runner):
        task = _claim(repository, create_task, export_format=ExportFormat.XLSX)
        answers = iter([False, False, True])
        token = CancellationToken(task.id, read_flag=lambda: next(answers, True))
        temp_files_before = len(ALL_TEMP_FILES)

        status = make_runner(ListRecordSource(make_records(40)), batch_size=10).run(task.id, token)

        assert status == ExportStatus.CANCELLED
        assert len(ALL_TEMP_FILES) == temp_files_before

    def test_completed_export_is_not_aborted(self, repository, create_task, make_runner):
        task = _claim(repository, create_task, export_format=ExportFormat.XLSX)

        with patch.object(XlsxWriter, "abort", autospec=True) as abort:
            status = make_runner(ListRecordSource(make_records(5))).run(task.id, CancellationToken(task.id))

        assert status == ExportStatus.COMPLETED
        abort.assert_not_called()
