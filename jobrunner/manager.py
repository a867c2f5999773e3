"""The job manager: sets up, schedules, runs and tracks jobs."""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from datetime import datetime
from typing import Any, Optional

from .core import FreqType, Job, JobDef, JobResult, JobRun, JobStatus
from .cron import CronError, Scheduler, parse_schedule
from .store import JobStore, StoreError

logger = logging.getLogger(__name__)

RESULTS_BUFFER = 256
LIST_LIMIT = 100
UPDATED = "updated"

_STOP = object()


class JobManagerError(Exception):
    """A job manager operation could not be carried out."""


class _WaitGroup:
    """Counts outstanding runs and lets callers wait for them to finish."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._count = 0

    def add(self, n: int = 1) -> None:
        with self._cond:
            self._count += n
            if self._count <= 0:
                self._count = 0
                self._cond.notify_all()

    def done(self) -> None:
        self.add(-1)

    def wait(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout)


def _parse_rfc3339(text: str) -> datetime:
    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    moment = datetime.fromisoformat(candidate)
    if moment.tzinfo is None:
        raise ValueError(f"missing time zone offset in {text!r}")
    return moment


class JobManager:
    """Keeps jobs in memory, schedules periodic ones and records every run.

    Periodic jobs run on their cron schedule once started; one-time jobs
    run once, immediately. Updates are announced on ``jobs_updated``, a
    queue holding at most one pending notice.
    """

    def __init__(self, store: JobStore, scheduler: Optional[Scheduler] = None) -> None:
        self._store = store
        self._cron = scheduler or Scheduler()
        self._jobs: dict[str, Job] = {}
        self._cron_entries: dict[str, int] = {}
        self._running: dict[str, threading.Event] = {}
        self._lock = threading.RLock()
        self._wg = _WaitGroup()
        self._results: queue.Queue[Any] = queue.Queue(maxsize=RESULTS_BUFFER)
        self._jobs_updated: queue.Queue[Any] = queue.Queue(maxsize=1)
        self._shutdown = False

        self._processor = threading.Thread(
            target=self._process_results, name="job-results", daemon=True
        )
        self._processor.start()
        self._cron.start()

    @property
    def jobs_updated(self) -> queue.Queue:
        """Queue that receives a notice when at least one job changed."""
        return self._jobs_updated

    def _notify(self, what: str) -> None:
        try:
            self._jobs_updated.put_nowait(UPDATED)
        except queue.Full:
            return
        logger.debug("Job update (%s) notification sent", what)

    def _process_results(self) -> None:
        while True:
            result = self._results.get()
            if result is _STOP:
                return
            try:
                self._handle_result(result)
            finally:
                with self._lock:
                    self._running.pop(result.job_id, None)
                self._wg.done()

    def _handle_result(self, result: JobResult) -> None:
        try:
            self._store.record_job_result(result)
        except StoreError as exc:
            logger.error("Error recording job result for %s: %s", result.job_id, exc)

        if result.status not in (JobStatus.COMPLETE, JobStatus.FAILED):
            return
        try:
            job_def = self._store.get_job(result.job_id)
        except StoreError as exc:
            logger.error("Error getting job definition for %s: %s", result.job_id, exc)
            return
        # Periodic jobs keep their status; only one-time jobs take the outcome.
        if job_def.sched_type != FreqType.PERIODIC:
            try:
                self._store.update_job_status(result.job_id, result.status)
            except StoreError as exc:
                logger.error("Error updating job status for %s: %s", result.job_id, exc)
        self._notify("completed")

    def _require_job(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobManagerError(f"job {job_id} not found")
        return job

    def _schedule(self, job_id: str, spec: str) -> None:
        self._cron_entries[job_id] = self._cron.add_func(
            spec, lambda: self._execute_job(job_id)
        )

    def setup_job(self, job: Job, schedule: str = "") -> str:
        """Register ``job`` and save its definition; return its id.

        Periodic jobs take a six-field cron schedule. One-time jobs take
        an RFC 3339 time, or nothing to mean now.
        """
        with self._lock:
            if self._shutdown:
                raise JobManagerError("job manager is shutting down")

            job_id = job.id or str(uuid.uuid4())
            if job_id in self._jobs:
                raise JobManagerError(f"job with ID {job_id} already exists")

            next_run: Optional[datetime] = None
            if job.freq_type == FreqType.PERIODIC and schedule:
                try:
                    cron_schedule = parse_schedule(schedule)
                except CronError as exc:
                    raise JobManagerError(f"unable to parse schedule: {exc}") from exc
                next_run = cron_schedule.next(datetime.now().astimezone())
            elif job.freq_type == FreqType.ONE_TIME:
                if not schedule:
                    next_run = datetime.now().astimezone()
                else:
                    try:
                        next_run = _parse_rfc3339(schedule)
                    except ValueError as exc:
                        raise JobManagerError(
                            f"invalid time format for one-time job (should be RFC 3339): {exc}"
                        ) from exc

            job_def = JobDef(
                job_id=job_id,
                job_name=job.name,
                sched_type=job.freq_type,
                schedule=schedule,
                next_run_time=next_run,
                status=JobStatus.CREATED,
            )
            try:
                self._store.save_job(job_def)
            except StoreError as exc:
                raise JobManagerError(f"failed to save job: {exc}") from exc

            self._jobs[job_id] = job
            return job_id

    def start_job(self, job_id: str) -> None:
        """Begin a job: schedule a periodic one, or run a one-time one now."""
        with self._lock:
            if self._shutdown:
                raise JobManagerError("job manager is shutting down")

            job = self._jobs.get(job_id)
            if job is None:
                try:
                    self._store.get_job(job_id)
                except StoreError as exc:
                    raise JobManagerError(f"job not found: {exc}") from exc
                raise JobManagerError(
                    f"job {job_id} exists in store but not in memory, cannot start"
                )

            if job_id in self._running:
                raise JobManagerError(f"job {job_id} is already running")

            try:
                self._store.update_job_status(job_id, JobStatus.RUNNING)
            except StoreError as exc:
                raise JobManagerError(f"failed to update job status: {exc}") from exc

            if job.freq_type == FreqType.PERIODIC:
                try:
                    job_def = self._store.get_job(job_id)
                except StoreError as exc:
                    raise JobManagerError(f"failed to get job details: {exc}") from exc
                if job_id not in self._cron_entries:
                    try:
                        self._schedule(job_id, job_def.schedule)
                    except CronError as exc:
                        raise JobManagerError(f"failed to schedule job: {exc}") from exc
            else:
                threading.Thread(
                    target=self._execute_job, args=(job_id,), name=f"run-{job_id}", daemon=True
                ).start()

    def _execute_job(self, job_id: str) -> None:
        with self._lock:
            if self._shutdown:
                return
            job = self._jobs.get(job_id)
            if job is None:
                logger.warning("Job %s not found for execution", job_id)
                return
            cancel = threading.Event()
            self._running[job_id] = cancel
            self._wg.add()

        start = datetime.now().astimezone()
        stats = job.run(cancel)
        end = datetime.now().astimezone()

        result = JobResult(
            job_id=job_id,
            start_time=start,
            end_time=end,
            duration=end - start,
            status=JobStatus.COMPLETE,
            success_msg=stats.success_msg,
        )
        if stats.error is not None:
            result.status = JobStatus.FAILED
            result.error_msg = str(stats.error)

        try:
            self._results.put_nowait(result)
        except queue.Full:
            logger.warning("Results queue full, dropping result for job %s", job_id)
            self._wg.done()

    def stop_job(self, job_id: str) -> None:
        """Unschedule a job, cancel it if running and mark it stopped."""
        with self._lock:
            self._require_job(job_id)

            entry_id = self._cron_entries.pop(job_id, None)
            if entry_id is not None:
                self._cron.remove(entry_id)

            cancel = self._running.pop(job_id, None)
            if cancel is not None:
                cancel.set()

            try:
                self._store.update_job_status(job_id, JobStatus.STOPPED)
            except StoreError as exc:
                raise JobManagerError(f"failed to update job status: {exc}") from exc
            self._notify("stopped")

    def pause_job(self, job_id: str) -> None:
        """Suspend a job; a one-time job cannot be paused while it runs."""
        with self._lock:
            job = self._require_job(job_id)

            # The entry stays known so that resuming reschedules it.
            entry_id = self._cron_entries.get(job_id)
            if entry_id is not None:
                self._cron.remove(entry_id)

            if job.freq_type != FreqType.PERIODIC and job_id in self._running:
                raise JobManagerError(
                    f"job {job_id} is currently running and cannot be paused"
                )

            try:
                self._store.update_job_status(job_id, JobStatus.PAUSED)
            except StoreError as exc:
                raise JobManagerError(f"failed to update job status: {exc}") from exc
            self._notify("paused")

    def resume_job(self, job_id: str) -> None:
        """Continue a paused job, rescheduling it if it was scheduled."""
        with self._lock:
            job = self._require_job(job_id)

            try:
                job_def = self._store.get_job(job_id)
            except StoreError as exc:
                raise JobManagerError(f"failed to get job details: {exc}") from exc

            if job_def.status != JobStatus.PAUSED:
                raise JobManagerError(f"job {job_id} is not paused")

            try:
                self._store.update_job_status(job_id, JobStatus.RUNNING)
            except StoreError as exc:
                raise JobManagerError(f"failed to update job status: {exc}") from exc

            if job.freq_type == FreqType.PERIODIC and job_id in self._cron_entries:
                try:
                    self._schedule(job_id, job_def.schedule)
                except CronError as exc:
                    raise JobManagerError(f"failed to reschedule job: {exc}") from exc
            self._notify("resume")

    def delete_job(self, job_id: str) -> None:
        """Unschedule, cancel and forget a job, removing it and its results from the store."""
        with self._lock:
            self._require_job(job_id)

            entry_id = self._cron_entries.pop(job_id, None)
            if entry_id is not None:
                self._cron.remove(entry_id)

            cancel = self._running.pop(job_id, None)
            if cancel is not None:
                cancel.set()

            del self._jobs[job_id]

            try:
                self._store.delete_job(job_id)
            except StoreError as exc:
                raise JobManagerError(f"failed to delete job from store: {exc}") from exc

    def get_job_status(self, job_id: str) -> JobStatus:
        """Return a job's status, reporting RUNNING while a run is in progress."""
        with self._lock:
            in_memory = job_id in self._jobs
            try:
                job_def = self._store.get_job(job_id)
            except StoreError as exc:
                if not in_memory:
                    raise JobManagerError(f"job not found: {exc}") from exc
                raise JobManagerError(f"failed to get job status: {exc}") from exc
            if in_memory and job_id in self._running:
                return JobStatus.RUNNING
            return job_def.status

    def load_jobs(self) -> list[JobDef]:
        """Read all job definitions from the store and return them."""
        try:
            jobs = self._store.list_jobs()
        except StoreError as exc:
            raise JobManagerError(f"failed to list jobs: {exc}") from exc
        logger.info("Loaded %d jobs from store", len(jobs))
        return jobs

    def list_jobs(self) -> list[JobRun]:
        """Return up to 100 job and run rows for display."""
        try:
            runs = self._store.get_job_runs(LIST_LIMIT)
        except StoreError as exc:
            raise JobManagerError(f"error listing jobs: {exc}") from exc
        logger.info("Loaded %d jobs results from store", len(runs))
        return runs

    def shutdown(self, timeout: float) -> bool:
        """Stop scheduling, cancel running jobs, wait and close the store.

        Waits up to ``timeout`` seconds for running jobs. Returns True when
        they all finished in time.
        """
        with self._lock:
            self._shutdown = True
            cron_done = self._cron.stop()
            for job_id, cancel in self._running.items():
                logger.info("Cancelling job %s during shutdown", job_id)
                cancel.set()

        completed = self._wg.wait(timeout)
        if completed:
            logger.info("All jobs completed gracefully")
        else:
            logger.warning("Shutdown timed out, some jobs may not have completed")

        self._results.put(_STOP)
        self._processor.join()
        cron_done.wait()

        try:
            self._store.close()
        except StoreError as exc:
            raise JobManagerError(f"error closing job store: {exc}") from exc
        return completed