import pytest

from jobrunner import shutdown
from jobrunner.app import create_app, main
from jobrunner.core import JobConfig, JobStatus
from jobrunner.jobs import PeriodicJob
from jobrunner.manager import JobManager
from jobrunner.notify import JOB_UPDATE_SUBJECT, get_broker
from jobrunner.store import JobStore

YEARLY = "0 0 0 1 1 *"


@pytest.fixture(autouse=True)
def _reset_hooks():
    shutdown._reset()
    yield
    shutdown._reset()


@pytest.fixture
def manager():
    mgr = JobManager(JobStore())
    yield mgr
    mgr.shutdown(1)


@pytest.fixture
def client(manager):
    return create_app(manager).test_client()


def _add_job(manager, job_id="job-a", name="Alpha"):
    cfg = JobConfig(
        id=job_id, name=name, is_periodic=True, schedule=YEARLY, job_function=lambda: None
    )
    manager.setup_job(PeriodicJob(cfg), YEARLY)
    manager.start_job(job_id)
    return job_id


def test_root_reports_ok_and_env(client, monkeypatch):
    monkeypatch.setenv("ENV", "staging")
    response = client.get("/")
    assert response.status_code == 200
    assert response.get_json() == {"response": "OK", "ENV": "staging"}


def test_jobs_page_lists_jobs(client, manager):
    _add_job(manager)
    response = client.get("/jobs")
    assert response.status_code == 200
    assert response.mimetype == "text/html"
    body = response.get_data(as_text=True)
    assert "<title>Jobs</title>" in body
    assert "<td>Alpha</td>" in body


def test_jobs_page_uses_configured_styles(manager):
    app = create_app(manager)
    app.config["TABLE_STYLES"] = "th { font-weight: bold; }"
    body = app.test_client().get("/jobs").get_data(as_text=True)
    assert "<style>th { font-weight: bold; }</style>" in body


def test_table_rows_only(client, manager):
    _add_job(manager)
    body = client.get("/jobs-table-rows").get_data(as_text=True)
    assert body.startswith("<tr>")
    assert "<html>" not in body
    assert 'data-job-id="job-a"' in body


def test_pause_and_resume(client, manager):
    job_id = _add_job(manager)

    paused = client.post(f"/pause-job/{job_id}")
    assert paused.status_code == 200
    assert paused.get_json() == {"jobID": job_id, "status": "paused"}
    assert manager.get_job_status(job_id) == JobStatus.PAUSED

    resumed = client.post(f"/resume-job/{job_id}")
    assert resumed.status_code == 200
    assert resumed.get_json() == {"jobID": job_id, "status": "resumed"}
    assert manager.get_job_status(job_id) == JobStatus.RUNNING


def test_pause_unknown_job_fails(client):
    response = client.post("/pause-job/missing")
    assert response.status_code == 500
    assert "not found" in response.get_json()["error"]


def test_resume_job_that_is_not_paused_fails(client, manager):
    job_id = _add_job(manager)
    response = client.post(f"/resume-job/{job_id}")
    assert response.status_code == 500
    assert "is not paused" in response.get_json()["error"]


def test_pause_requires_post(client, manager):
    job_id = _add_job(manager)
    assert client.get(f"/pause-job/{job_id}").status_code == 405


def test_update_stream_forwards_job_updates(client):
    broker = get_broker()
    baseline = broker.subscriber_count(JOB_UPDATE_SUBJECT)

    response = client.get("/jobs-update")
    assert response.mimetype == "text/event-stream"
    assert broker.subscriber_count(JOB_UPDATE_SUBJECT) == baseline + 1

    broker.publish(JOB_UPDATE_SUBJECT, "updated")
    chunk = next(iter(response.response))
    assert chunk == b"event: job-update\ndata: updated\n\n"

    response.close()
    assert broker.subscriber_count(JOB_UPDATE_SUBJECT) == baseline


def test_main_help_exits_cleanly(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--help"])
    assert excinfo.value.code == 0
    assert "--port" in capsys.readouterr().out