"""Concrete jobs: a base job with time limits and a few ready-made kinds."""

from __future__ import annotations

import logging
import random
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from .core import FreqType, Job, JobConfig, Stats

logger = logging.getLogger(__name__)

WorkFunc = Callable[[threading.Event], str]

_POLL_INTERVAL = 0.01


class JobTimeoutError(Exception):
    """A job ran past its maximum work time and its grace period."""


class JobCancelledError(Exception):
    """A job was cancelled before it finished.

    ``detail`` carries what the job had done by then, if anything.
    """

    def __init__(self, message: str = "context canceled", detail: str = "") -> None:
        super().__init__(message)
        self.detail = detail


class _Outcome:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.msg = ""
        self.error: Optional[BaseException] = None


class BaseJob(Job):
    """A job that runs a work function under an optional time limit.

    The work function receives the cancel event and returns a success
    message, or raises on failure. ``max_work_time`` is in seconds; 0
    means no limit. Once the limit passes, the job still waits
    ``grace_period`` seconds for the work to finish.
    """

    grace_period = 5.0

    def __init__(
        self,
        id: str,
        name: str,
        freq_type: FreqType,
        work_func: Optional[WorkFunc] = None,
        max_work_time: float = 0.0,
    ) -> None:
        self._id = id
        self._name = name
        self._freq_type = freq_type
        self._work_func = work_func
        self.max_work_time = max_work_time

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def freq_type(self) -> FreqType:
        return self._freq_type

    def _work(self, cancel: threading.Event) -> str:
        if self._work_func is None:
            raise TypeError(f"job {self._id} has no work function")
        return self._work_func(cancel)

    def run(self, cancel: threading.Event) -> Stats:
        """Run the work and report how it went; failures go in ``Stats.error``."""
        stats = Stats(start_time_utc=datetime.now(timezone.utc))
        started = time.monotonic()
        outcome = _Outcome()

        def _worker() -> None:
            try:
                outcome.msg = self._work(cancel)
            except Exception as exc:
                outcome.error = exc
            finally:
                outcome.done.set()

        threading.Thread(target=_worker, name=f"job-{self._id}", daemon=True).start()

        deadline = started + self.max_work_time if self.max_work_time > 0 else None
        while True:
            if outcome.done.is_set():
                return self._finish(stats, started, outcome)
            if cancel.is_set():
                stats.success_msg = "Job was canceled"
                stats.error = JobCancelledError()
                return self._stamp(stats, started)
            now = time.monotonic()
            if deadline is not None and now >= deadline:
                if outcome.done.wait(self.grace_period):
                    return self._finish(stats, started, outcome)
                stats.success_msg = "Job timed out but didn't respect cancellation"
                stats.error = JobTimeoutError("job execution exceeded maximum duration")
                return self._stamp(stats, started)
            wait = _POLL_INTERVAL if deadline is None else min(_POLL_INTERVAL, deadline - now)
            outcome.done.wait(max(0.0, wait))

    @staticmethod
    def _stamp(stats: Stats, started: float) -> Stats:
        stats.duration = timedelta(seconds=time.monotonic() - started)
        return stats

    def _finish(self, stats: Stats, started: float, outcome: _Outcome) -> Stats:
        stats.error = outcome.error
        if isinstance(outcome.error, JobCancelledError):
            stats.success_msg = outcome.error.detail
        else:
            stats.success_msg = outcome.msg
        return self._stamp(stats, started)


class DummyJob(BaseJob):
    """Simulates work by sleeping, then succeeds with a given probability."""

    def __init__(
        self,
        id: str,
        name: str,
        freq_type: FreqType,
        work_time: float,
        success_prob: float,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(id, name, freq_type, max_work_time=work_time)
        self.success_prob = success_prob
        self._random = (rng or random.Random()).random

    def _work(self, cancel: threading.Event) -> str:
        if cancel.wait(self.max_work_time):
            raise JobCancelledError()
        if self._random() < self.success_prob:
            return f"Job {self.id} completed successfully"
        raise RuntimeError(f"job {self.id} failed with simulated error")


class LoggingJob(BaseJob):
    """Logs a message at each of several intervals until its work time ends."""

    def __init__(
        self,
        id: str,
        name: str,
        freq_type: FreqType,
        work_time: float,
        log_intervals: Iterable[float],
    ) -> None:
        super().__init__(id, name, freq_type, max_work_time=work_time)
        self.log_intervals = list(log_intervals)

    def _work(self, cancel: threading.Event) -> str:
        started = time.monotonic()
        deadline = started + self.max_work_time
        tickers = [
            [started + interval, interval, f"Log message at interval {interval:g}s"]
            for interval in self.log_intervals
        ]
        log_count = 0
        while True:
            if cancel.is_set():
                raise JobCancelledError(detail=f"Job interrupted after {log_count} log messages")
            now = time.monotonic()
            if now >= deadline:
                return f"Job completed after {log_count} log messages"
            for ticker in tickers:
                due, interval, msg = ticker
                if now >= due:
                    logger.info(msg)
                    log_count += 1
                    # Missed ticks are dropped rather than replayed.
                    while due <= now:
                        due += interval
                    ticker[0] = due
            cancel.wait(_POLL_INTERVAL)


class PeriodicJob(BaseJob):
    """Calls a configured function, once per run or every ``period`` seconds.

    Errors raised by the function are logged and do not fail the run.
    """

    def __init__(self, config: JobConfig) -> None:
        super().__init__(config.id, config.name, FreqType.PERIODIC, max_work_time=0.0)
        self.period = 0.0
        self.call = config.job_function

    def _invoke(self) -> None:
        if self.call is None:
            return
        try:
            self.call()
        except Exception:
            logger.exception("Job %s function failed", self.id)

    def _work(self, cancel: threading.Event) -> str:
        started = time.monotonic()
        deadline = started + self.max_work_time if self.max_work_time > 0 else None
        run_count = 0

        if self.period > 0:
            next_tick = started + self.period
            while True:
                if cancel.is_set():
                    raise JobCancelledError(detail=f"Job interrupted after {run_count} runs")
                now = time.monotonic()
                if deadline is not None and now >= deadline:
                    return f"Job shutdown after {run_count} runs"
                if now >= next_tick:
                    logger.info("Process Catalog trigger %gs", self.period)
                    self._invoke()
                    run_count += 1
                    while next_tick <= time.monotonic():
                        next_tick += self.period
                cancel.wait(_POLL_INTERVAL)

        if cancel.is_set():
            raise JobCancelledError(detail="Job interrupted before execution")
        if deadline is not None and time.monotonic() >= deadline:
            return "Job timed out before execution"
        logger.info("Running job %s", self.id)
        self._invoke()
        run_count += 1
        return f"Periodic job completed with {run_count} run"