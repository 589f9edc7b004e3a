from pathlib import Path

import pytest

from power_importer.core.errors import ChunkError, JobNotFoundError, StateError, ValidationError
from power_importer.services.chunk_executor import ChunkResult
from power_importer.services.job_engine import ExecutionMode, ImportJobEngine
from power_importer.services.job_store import JobPatch, JobStatus


def _messages(engine, job_id):
    return [entry.message for entry in engine.get_logs(job_id)]


def _force_status(store, job_id, status):
    return store.update(job_id, JobPatch(status=status))


def test_validate_records_total_rows(make_job, simple_rows, engine):
    job = make_job(simple_rows(7), validate=False, start=False)
    assert job.status is JobStatus.PENDING

    job = engine.validate(job.id)

    assert job.status is JobStatus.VALIDATED
    assert job.total_rows == 7
    assert "Total data rows: 7" in _messages(engine, job.id)[-1]


def test_validate_twice_yields_same_total(make_job, simple_rows, engine):
    job = make_job(simple_rows(7), start=False)

    again = engine.validate(job.id)

    assert again.status is JobStatus.VALIDATED
    assert again.total_rows == job.total_rows == 7


def test_validation_failure_fails_the_job(make_job, engine):
    job = make_job([("Shirt", "10")], header=("Name", "Price"), validate=False, start=False)

    with pytest.raises(ValidationError):
        engine.validate(job.id)

    job = engine.get_job(job.id)
    assert job.status is JobStatus.FAILED
    assert job.error_message == "Missing required columns: SKU, Type"


@pytest.mark.parametrize(
    "status",
    [
        JobStatus.RUNNING_FOREGROUND,
        JobStatus.RUNNING_BACKGROUND,
        JobStatus.QUEUED_BACKGROUND,
        JobStatus.COMPLETED,
    ],
)
def test_start_rejected_outside_allowed_statuses(make_job, simple_rows, engine, store, status):
    job = make_job(simple_rows(2), start=False)
    _force_status(store, job.id, status)

    with pytest.raises(StateError) as excinfo:
        engine.start(job.id)

    assert excinfo.value.current == status.value
    assert engine.get_job(job.id).status is status


def test_start_from_pending_validates_first(make_job, simple_rows, engine):
    job = make_job(simple_rows(4), validate=False, start=False)

    job = engine.start(job.id)

    assert job.status is JobStatus.RUNNING_FOREGROUND
    assert job.total_rows == 4


def test_start_from_pending_with_bad_file_fails(make_job, engine):
    job = make_job([("Shirt", "10")], header=("Name", "Price"), validate=False, start=False)

    with pytest.raises(ValidationError):
        engine.start(job.id)

    assert engine.get_job(job.id).status is JobStatus.FAILED


def test_start_resets_progress_and_timestamps(make_job, simple_rows, engine):
    job = make_job(simple_rows(20))
    engine.run_chunk(job.id, 5)
    engine.pause(job.id)

    job = engine.start(job.id)

    assert job.status is JobStatus.RUNNING_FOREGROUND
    assert job.processed_rows == 0
    assert job.started_at is not None
    assert job.finished_at is None


def test_start_after_failure_revalidates(make_job, simple_rows, engine, write_csv):
    job = make_job(simple_rows(3))
    engine.fail(job.id, "network down")
    write_csv(simple_rows(6))

    job = engine.start(job.id)

    assert job.status is JobStatus.RUNNING_FOREGROUND
    assert job.total_rows == 6
    assert job.error_message is None


def test_start_after_cancel_fails_when_file_is_gone(make_job, simple_rows, engine):
    job = make_job(simple_rows(3))
    engine.cancel(job.id)
    Path(job.file_path).unlink()

    with pytest.raises(ValidationError):
        engine.start(job.id)
    assert engine.get_job(job.id).status is JobStatus.FAILED


def test_pause_and_resume_keep_offset(make_job, simple_rows, engine):
    job = make_job(simple_rows(30))
    engine.run_chunk(job.id, 10)

    paused = engine.pause(job.id)
    resumed = engine.resume(job.id)

    assert paused.status is JobStatus.PAUSED
    assert resumed.status is JobStatus.RUNNING_FOREGROUND
    assert resumed.processed_rows == 10


def test_pause_twice_is_rejected(make_job, simple_rows, engine):
    job = make_job(simple_rows(3))
    engine.pause(job.id)

    with pytest.raises(StateError):
        engine.pause(job.id)


def test_cancel_terminal_job_is_rejected(make_job, simple_rows, engine):
    job = make_job(simple_rows(2))
    engine.run_chunk(job.id, 10)

    with pytest.raises(StateError):
        engine.cancel(job.id)
    assert engine.get_job(job.id).status is JobStatus.COMPLETED


def test_cancel_sets_finished_at(make_job, simple_rows, engine):
    job = make_job(simple_rows(2))

    job = engine.cancel(job.id)

    assert job.status is JobStatus.CANCELLED
    assert job.finished_at is not None


def test_reset_clears_everything(make_job, simple_rows, engine):
    job = make_job(simple_rows(10))
    engine.run_chunk(job.id, 4)
    engine.fail(job.id, "gave up")

    job = engine.reset(job.id)

    assert job.status is JobStatus.PENDING
    assert job.processed_rows == 0
    assert job.total_rows == 0
    assert job.error_message is None
    assert job.started_at is None
    assert job.finished_at is None
    assert job.dedup_snapshot == {}


def test_fail_requires_an_active_run(make_job, simple_rows, engine):
    job = make_job(simple_rows(2), start=False)

    with pytest.raises(StateError):
        engine.fail(job.id, "nope")


@pytest.mark.parametrize("operation", ["start", "resume", "validate"])
def test_rejected_operation_is_logged(make_job, simple_rows, engine, operation):
    job = make_job(simple_rows(3))
    before = len(engine.get_logs(job.id))

    with pytest.raises(StateError):
        getattr(engine, operation)(job.id)

    entries = engine.get_logs(job.id)
    assert len(entries) == before + 1
    assert entries[-1].level.value == "WARNING"
    assert entries[-1].message == (
        f"Attempt to {operation} job in status 'running_foreground' was prevented."
    )
    assert engine.get_job(job.id).status is JobStatus.RUNNING_FOREGROUND


def test_rejected_fail_and_cancel_are_logged(make_job, simple_rows, engine):
    validated = make_job(simple_rows(2), start=False)
    done = make_job(simple_rows(2))
    engine.run_chunk(done.id, 5)

    with pytest.raises(StateError):
        engine.fail(validated.id, "nope")
    with pytest.raises(StateError):
        engine.cancel(done.id)

    assert _messages(engine, validated.id)[-1] == (
        "Attempt to fail job in status 'validated' was prevented."
    )
    assert _messages(engine, done.id)[-1] == (
        "Attempt to cancel job in status 'completed' was prevented."
    )


def test_run_chunk_rejected_when_not_running(make_job, simple_rows, engine):
    job = make_job(simple_rows(5))
    engine.pause(job.id)

    with pytest.raises(StateError):
        engine.run_chunk(job.id, 2)

    assert engine.get_job(job.id).processed_rows == 0
    assert "Chunk requested but job status is 'paused'" in _messages(engine, job.id)[-1]


def test_foreground_chunk_rejected_for_background_job(make_job, simple_rows, engine, store):
    job = make_job(simple_rows(5))
    _force_status(store, job.id, JobStatus.RUNNING_BACKGROUND)

    with pytest.raises(StateError):
        engine.run_chunk(job.id, 2)

    report = engine.run_chunk(job.id, 2, mode=ExecutionMode.BACKGROUND)
    assert report.total_processed == 2


def test_chunk_size_must_be_positive(make_job, simple_rows, engine):
    job = make_job(simple_rows(1))

    with pytest.raises(ValueError):
        engine.run_chunk(job.id, 0)


def test_header_only_file_completes_on_first_chunk(make_job, engine):
    job = make_job([])

    report = engine.run_chunk(job.id, 10)

    assert report.is_complete
    assert report.total_processed == 0
    assert engine.get_job(job.id).status is JobStatus.COMPLETED


def test_processed_rows_never_exceed_total(make_job, simple_rows, engine, write_csv):
    job = make_job(simple_rows(3))
    # File grows after validation
    write_csv(simple_rows(5))

    report = engine.run_chunk(job.id, 10)

    assert report.total_processed == 3
    assert report.is_complete


def test_chunk_error_leaves_status_and_progress(make_job, simple_rows, engine):
    job = make_job(simple_rows(3))
    Path(job.file_path).unlink()

    with pytest.raises(ChunkError):
        engine.run_chunk(job.id, 2)

    job = engine.get_job(job.id)
    assert job.status is JobStatus.RUNNING_FOREGROUND
    assert job.processed_rows == 0
    assert "Chunk processing error at row offset 0" in _messages(engine, job.id)[-1]


class CancellingExecutor:
    """Cancels the job while its chunk is in flight."""

    def __init__(self, engine_ref):
        self.engine_ref = engine_ref

    def execute(self, job, offset, chunk_size):
        self.engine_ref[0].cancel(job.id)
        return ChunkResult(rows_consumed=chunk_size, is_source_exhausted=True)


def test_cancel_during_chunk_keeps_progress_but_not_completion(
    make_job, simple_rows, store, logs, engine
):
    job = make_job(simple_rows(4))
    engine_ref = []
    cancelling = ImportJobEngine(store, logs, CancellingExecutor(engine_ref))
    engine_ref.append(cancelling)

    report = cancelling.run_chunk(job.id, 4)

    assert report.is_complete is False
    assert report.status is JobStatus.CANCELLED
    assert report.total_processed == 4
    assert engine.get_job(job.id).status is JobStatus.CANCELLED


class OvertakingExecutor:
    """Lets a background run move the job further along while this chunk runs."""

    def __init__(self, store):
        self.store = store

    def execute(self, job, offset, chunk_size):
        self.store.update(
            job.id,
            JobPatch(
                status=JobStatus.RUNNING_BACKGROUND,
                processed_rows=15,
                dedup_snapshot={"bg-sku": 9},
            ),
        )
        return ChunkResult(rows_consumed=chunk_size, dedup_snapshot={"fg-sku": 1})


def test_stale_chunk_cannot_move_progress_backwards(make_job, simple_rows, store, logs, engine):
    job = make_job(simple_rows(20))
    stale = ImportJobEngine(store, logs, OvertakingExecutor(store))

    with pytest.raises(StateError):
        stale.run_chunk(job.id, 5)

    job = engine.get_job(job.id)
    assert job.processed_rows == 15
    assert job.dedup_snapshot == {"bg-sku": 9}
    assert _messages(engine, job.id)[-1] == (
        "Chunk at row offset 0 finished after the job reached row 15; "
        "its progress was discarded."
    )


def test_missing_job(engine):
    with pytest.raises(JobNotFoundError):
        engine.get_job(404)
    with pytest.raises(JobNotFoundError):
        engine.delete_job(404)


def test_list_delete_and_clear(make_job, simple_rows, engine):
    done = make_job(simple_rows(1))
    engine.run_chunk(done.id, 5)
    running = make_job(simple_rows(2))
    pending = make_job(simple_rows(2), validate=False, start=False)

    assert [job.id for job in engine.list_jobs()] == [pending.id, running.id, done.id]
    assert [job.id for job in engine.list_jobs(status=JobStatus.COMPLETED)] == [done.id]

    assert engine.clear_finished_jobs() == 1
    engine.delete_job(pending.id)

    assert [job.id for job in engine.list_jobs()] == [running.id]
