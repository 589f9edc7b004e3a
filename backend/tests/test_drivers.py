from pathlib import Path

import pytest

from power_importer.core.errors import ChunkError, JobNotFoundError, StateError
from power_importer.services.drivers import BackgroundDriver, ForegroundDriver
from power_importer.services.job_engine import ChunkReport
from power_importer.services.job_store import JobStatus


class ScriptedRunner:
    """Plays back a list of reports/exceptions for ``run_chunk``."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = 0
        self.failed = []

    def run_chunk(self, job_id, chunk_size):
        self.calls += 1
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step

    def fail(self, job_id, message):
        self.failed.append(message)


def _report(total, of, complete=False, status=JobStatus.RUNNING_FOREGROUND):
    return ChunkReport(
        processed=10, total_processed=total, total_rows=of, is_complete=complete, status=status
    )


def test_foreground_runs_until_complete_with_delay(make_job, simple_rows, engine):
    job = make_job(simple_rows(25))
    sleeps = []

    outcome = ForegroundDriver(engine, chunk_size=10, delay_seconds=1.0, sleep=sleeps.append).run(
        job.id
    )

    assert outcome.status == "completed"
    assert outcome.chunks == 3
    assert outcome.total_processed == 25
    assert sleeps == [1.0, 1.0]


def test_foreground_retries_with_exponential_backoff():
    runner = ScriptedRunner(
        [ChunkError("timeout"), ChunkError("timeout"), _report(10, 10, complete=True)]
    )
    sleeps = []

    outcome = ForegroundDriver(
        runner, max_retries=3, backoff_base_seconds=0.5, sleep=sleeps.append
    ).run(1)

    assert outcome.retries == 2
    assert sleeps == [0.5, 1.0]
    assert runner.failed == []
    assert outcome.total_processed == 10


def test_foreground_fails_job_after_max_retries():
    runner = ScriptedRunner([ChunkError("down")] * 4)
    sleeps = []

    outcome = ForegroundDriver(runner, max_retries=3, sleep=sleeps.append).run(1)

    assert runner.calls == 4
    assert sleeps == [1.0, 2.0, 4.0]
    assert outcome.status == "failed"
    assert runner.failed == ["Chunk failed after 3 retries: down"]


def test_retry_counter_resets_after_success():
    runner = ScriptedRunner(
        [
            ChunkError("blip"),
            _report(10, 30),
            ChunkError("blip"),
            _report(20, 30),
            _report(30, 30, complete=True),
        ]
    )
    sleeps = []

    ForegroundDriver(runner, max_retries=1, delay_seconds=0, sleep=sleeps.append).run(1)

    assert sleeps == [1.0, 1.0]
    assert runner.failed == []


def test_foreground_stops_when_job_is_paused_elsewhere():
    runner = ScriptedRunner([_report(10, 30), StateError(1, "paused", ["running_foreground"])])

    outcome = ForegroundDriver(runner, sleep=lambda _: None).run(1)

    assert outcome.status == "paused"
    assert outcome.total_processed == 10
    assert runner.failed == []


def test_foreground_stops_on_status_change_in_report():
    runner = ScriptedRunner([_report(10, 30, status=JobStatus.CANCELLED)])

    outcome = ForegroundDriver(runner, sleep=lambda _: None).run(1)

    assert outcome.status == "cancelled"
    assert runner.calls == 1


def _queued(engine, make_job, rows):
    job = make_job(rows, start=False)
    return engine.enable_background(job.id)


def test_background_runs_queued_job_to_completion(make_job, simple_rows, engine, session_factory):
    job = _queued(engine, make_job, simple_rows(250))

    result = BackgroundDriver(engine, chunk_size=100, memory_limit=0).run(job.id)

    assert result.status is JobStatus.COMPLETED
    assert result.processed_rows == 250
    messages = [entry.message for entry in engine.get_logs(job.id)]
    assert "Background processing started." in messages


def test_background_aborts_cancelled_job_before_starting(make_job, simple_rows, engine):
    job = _queued(engine, make_job, simple_rows(5))
    engine.cancel(job.id)

    assert BackgroundDriver(engine, memory_limit=0).run(job.id) is None


def test_background_stops_when_job_is_deleted_mid_run(make_job, simple_rows, engine):
    job = _queued(engine, make_job, simple_rows(30))
    run_chunk = engine.run_chunk

    def run_then_delete(job_id, chunk_size, **kwargs):
        report = run_chunk(job_id, chunk_size, **kwargs)
        engine.delete_job(job_id)
        return report

    engine.run_chunk = run_then_delete

    assert BackgroundDriver(engine, chunk_size=10, memory_limit=0).run(job.id) is None
    with pytest.raises(JobNotFoundError):
        engine.get_job(job.id)


def test_background_ignores_job_deleted_before_pickup(make_job, simple_rows, engine):
    job = _queued(engine, make_job, simple_rows(5))
    engine.delete_job(job.id)

    assert BackgroundDriver(engine, memory_limit=0).run(job.id) is None
    assert engine.get_job(job.id).processed_rows == 0


def test_background_ignores_job_that_is_not_queued(make_job, simple_rows, engine):
    job = make_job(simple_rows(5))

    assert BackgroundDriver(engine, memory_limit=0).run(job.id) is None
    assert engine.get_job(job.id).status is JobStatus.RUNNING_FOREGROUND


def test_background_stops_at_chunk_boundary_after_cancel(make_job, simple_rows, engine):
    job = _queued(engine, make_job, simple_rows(30))
    original = engine.run_chunk

    def run_then_cancel(job_id, chunk_size, **kwargs):
        report = original(job_id, chunk_size, **kwargs)
        engine.cancel(job_id)
        return report

    engine.run_chunk = run_then_cancel
    result = BackgroundDriver(engine, chunk_size=10, memory_limit=0).run(job.id)

    assert result.status is JobStatus.CANCELLED
    assert result.processed_rows == 10


def test_background_chunk_error_fails_job(make_job, simple_rows, engine):
    job = _queued(engine, make_job, simple_rows(5))
    Path(job.file_path).unlink()
    result = BackgroundDriver(engine, memory_limit=0).run(job.id)

    assert result.status is JobStatus.FAILED
    assert "not found" in result.error_message


def test_background_memory_ceiling_fails_job(make_job, simple_rows, engine):
    job = _queued(engine, make_job, simple_rows(5))

    result = BackgroundDriver(engine, memory_limit=1).run(job.id)

    assert result.status is JobStatus.FAILED
    assert result.error_message.startswith("Memory limit exceeded")
    assert result.processed_rows == 0


def test_background_unexpected_error_fails_job_and_propagates(make_job, simple_rows, engine):
    job = _queued(engine, make_job, simple_rows(5))

    def explode(*args, **kwargs):
        raise RuntimeError("soft time limit")

    engine.run_chunk = explode

    with pytest.raises(RuntimeError):
        BackgroundDriver(engine, memory_limit=0).run(job.id)

    job = engine.get_job(job.id)
    assert job.status is JobStatus.FAILED
    assert job.error_message == "Critical error in background processing: soft time limit"
    assert engine.get_logs(job.id)[-1].level.value == "CRITICAL"
