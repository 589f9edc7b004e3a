from power_importer.services.dispatcher import celery_trigger
from power_importer.services.job_store import JobStatus
from power_importer.workers.celery_app import IMPORT_TASK_NAME, celery_app
from power_importer.workers.tasks import import_products


def test_task_is_registered_on_imports_queue():
    assert IMPORT_TASK_NAME in celery_app.tasks
    assert celery_app.conf.task_routes[IMPORT_TASK_NAME] == {"queue": "imports"}
    assert celery_app.conf.task_acks_late is True
    assert celery_app.conf.task_soft_time_limit < celery_app.conf.task_time_limit


def test_task_runs_queued_job(monkeypatch, make_job, simple_rows, engine):
    job = make_job(simple_rows(120), start=False)
    engine.enable_background(job.id)
    monkeypatch.setattr(import_products, "build_import_engine", lambda settings: engine)

    result = import_products.run_background_import.apply(args=[job.id]).get()

    assert result["status"] == "completed"
    assert result["processed_rows"] == 120
    assert engine.get_job(job.id).status is JobStatus.COMPLETED


def test_redelivered_task_leaves_job_alone(monkeypatch, make_job, simple_rows, engine):
    job = make_job(simple_rows(3))
    monkeypatch.setattr(import_products, "build_import_engine", lambda settings: engine)

    result = import_products.run_background_import.apply(args=[job.id]).get()

    assert result["status"] is None
    assert engine.get_job(job.id).status is JobStatus.RUNNING_FOREGROUND


def test_celery_trigger_publishes_without_retry(monkeypatch):
    calls = []

    class FakeResult:
        id = "task-1"

    def fake_apply_async(*args, **kwargs):
        calls.append(kwargs)
        return FakeResult()

    monkeypatch.setattr(import_products.run_background_import, "apply_async", fake_apply_async)

    celery_trigger(42)

    assert calls == [{"args": [42], "queue": "imports", "retry": False}]
