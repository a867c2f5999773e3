import random
import re
import threading
import time
from datetime import timedelta

import pytest

from jobrunner.core import FreqType, JobConfig
from jobrunner.jobs import (
    BaseJob,
    DummyJob,
    JobCancelledError,
    JobTimeoutError,
    LoggingJob,
    PeriodicJob,
)


def test_base_job_returns_work_message():
    job = BaseJob("b1", "Base", FreqType.ONE_TIME, work_func=lambda cancel: "ok")
    stats = job.run(threading.Event())
    assert stats.success_msg == "ok"
    assert stats.error is None
    assert stats.succeeded
    assert stats.duration >= timedelta(0)


def test_base_job_properties():
    job = BaseJob("b1", "Base", FreqType.PERIODIC, work_func=lambda cancel: "")
    assert (job.id, job.name, job.freq_type) == ("b1", "Base", FreqType.PERIODIC)


def test_base_job_reports_work_error():
    def failing(cancel):
        raise ValueError("broken")

    stats = BaseJob("b2", "Base", FreqType.ONE_TIME, work_func=failing).run(threading.Event())
    assert isinstance(stats.error, ValueError)
    assert str(stats.error) == "broken"
    assert not stats.succeeded


def test_base_job_without_work_function_fails():
    stats = BaseJob("b3", "Base", FreqType.ONE_TIME).run(threading.Event())
    assert stats.succeeded is False
    assert isinstance(stats.error, TypeError)


def test_base_job_cancelled():
    never = threading.Event()
    cancel = threading.Event()
    cancel.set()
    job = BaseJob("b4", "Base", FreqType.ONE_TIME, work_func=lambda c: never.wait(1) and "")
    stats = job.run(cancel)
    assert isinstance(stats.error, JobCancelledError)
    assert stats.success_msg == "Job was canceled"


def test_base_job_times_out_after_grace():
    never = threading.Event()
    job = BaseJob(
        "b5", "Base", FreqType.ONE_TIME, work_func=lambda c: never.wait(2) and "", max_work_time=0.05
    )
    job.grace_period = 0.05
    stats = job.run(threading.Event())
    assert isinstance(stats.error, JobTimeoutError)
    assert str(stats.error) == "job execution exceeded maximum duration"
    assert stats.success_msg == "Job timed out but didn't respect cancellation"


def test_base_job_finishing_within_grace_keeps_result():
    def slow(cancel):
        time.sleep(0.1)
        return "late but done"

    job = BaseJob("b6", "Base", FreqType.ONE_TIME, work_func=slow, max_work_time=0.02)
    job.grace_period = 2.0
    stats = job.run(threading.Event())
    assert stats.error is None
    assert stats.success_msg == "late but done"


def test_dummy_job_success():
    job = DummyJob("d1", "Dummy", FreqType.ONE_TIME, 0.02, 1.0)
    stats = job.run(threading.Event())
    assert stats.error is None
    assert stats.success_msg == "Job d1 completed successfully"


def test_dummy_job_failure():
    job = DummyJob("d1", "Dummy", FreqType.ONE_TIME, 0.02, 0.0)
    stats = job.run(threading.Event())
    assert isinstance(stats.error, RuntimeError)
    assert str(stats.error) == "job d1 failed with simulated error"


def test_dummy_job_uses_given_rng_deterministically():
    outcomes = [
        DummyJob("d2", "Dummy", FreqType.ONE_TIME, 0.0, 0.5, rng=random.Random(7))
        .run(threading.Event())
        .succeeded
        for _ in range(2)
    ]
    assert outcomes[0] == outcomes[1]


def test_dummy_job_cancelled():
    cancel = threading.Event()
    cancel.set()
    stats = DummyJob("d3", "Dummy", FreqType.ONE_TIME, 1.0, 1.0).run(cancel)
    assert stats.succeeded is False
    assert isinstance(stats.error, JobCancelledError)


def test_logging_job_counts_messages():
    job = LoggingJob("l1", "Logger", FreqType.ONE_TIME, 0.25, [0.05])
    stats = job.run(threading.Event())
    assert stats.error is None
    match = re.fullmatch(r"Job completed after (\d+) log messages", stats.success_msg)
    assert match is not None
    assert int(match.group(1)) >= 1


def test_logging_job_without_intervals_logs_nothing():
    job = LoggingJob("l2", "Logger", FreqType.ONE_TIME, 0.05, [])
    stats = job.run(threading.Event())
    assert stats.success_msg == "Job completed after 0 log messages"


def test_logging_job_cancelled():
    cancel = threading.Event()
    cancel.set()
    stats = LoggingJob("l3", "Logger", FreqType.ONE_TIME, 1.0, [0.1]).run(cancel)
    assert stats.succeeded is False
    assert isinstance(stats.error, JobCancelledError)


def test_periodic_job_calls_function_once():
    calls = []
    job = PeriodicJob(JobConfig(id="job1", name="Example Job 1", is_periodic=True,
                                job_function=lambda: calls.append(1)))
    stats = job.run(threading.Event())
    assert calls == [1]
    assert stats.error is None
    assert stats.success_msg == "Periodic job completed with 1 run"
    assert job.freq_type is FreqType.PERIODIC
    assert (job.id, job.name) == ("job1", "Example Job 1")


def test_periodic_job_swallows_function_error():
    def failing():
        raise RuntimeError("boom")

    job = PeriodicJob(JobConfig(id="p2", name="P", is_periodic=True, job_function=failing))
    stats = job.run(threading.Event())
    assert stats.error is None
    assert stats.success_msg == "Periodic job completed with 1 run"


def test_periodic_job_cancelled_before_execution():
    calls = []
    cancel = threading.Event()
    cancel.set()
    job = PeriodicJob(JobConfig(id="p3", name="P", is_periodic=True,
                                job_function=lambda: calls.append(1)))
    stats = job.run(cancel)
    assert calls == []
    assert isinstance(stats.error, JobCancelledError)


def test_periodic_job_with_period_runs_until_time_limit():
    calls = []
    job = PeriodicJob(JobConfig(id="p4", name="P", is_periodic=True,
                                job_function=lambda: calls.append(1)))
    job.period = 0.05
    job.max_work_time = 0.3
    job.grace_period = 2.0
    stats = job.run(threading.Event())
    assert stats.error is None
    match = re.fullmatch(r"Job shutdown after (\d+) runs", stats.success_msg)
    assert match is not None
    assert int(match.group(1)) == len(calls)
    assert len(calls) >= 1


@pytest.mark.parametrize("job_cls_args", [("x", "X", FreqType.ONE_TIME, 0.0, 1.0)])
def test_dummy_job_zero_work_time_completes(job_cls_args):
    stats = DummyJob(*job_cls_args).run(threading.Event())
    assert stats.success_msg == "Job x completed successfully"