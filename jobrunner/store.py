"""SQLite-backed persistence for job definitions and run results."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterator, Optional

from .core import FreqType, JobDef, JobResult, JobRun, JobStatus

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS jobs (
        job_id TEXT PRIMARY KEY,
        job_name TEXT NOT NULL,
        schedule_type TEXT NOT NULL,
        schedule TEXT,
        next_run_time TEXT,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_results (
        result_id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_id TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        duration_micro INTEGER NOT NULL,
        status TEXT NOT NULL,
        success_msg TEXT,
        error_msg TEXT,
        FOREIGN KEY (job_id) REFERENCES jobs(job_id)
    )
    """,
)

_JOB_COLUMNS = (
    "job_id, job_name, schedule_type, schedule, next_run_time, status, created_at, updated_at"
)

_RUNS_QUERY = """
    SELECT * FROM (
        SELECT j.job_id, NULL AS job_name, NULL AS frequency, NULL AS status,
               j.created_at, NULL AS updated_at,
               r.result_id, r.start_time, r.duration_micro,
               r.status AS result_status, r.error_msg
        FROM job_results r JOIN jobs j ON r.job_id = j.job_id
        UNION ALL
        SELECT j.job_id, j.job_name,
               CASE WHEN j.schedule IS NULL OR j.schedule = '' THEN 'one-time'
                    ELSE j.schedule END AS frequency,
               j.status, j.created_at, j.updated_at,
               NULL, NULL, NULL, NULL, NULL
        FROM jobs j
    )
    ORDER BY created_at DESC, result_id IS NULL DESC, result_id DESC
    LIMIT ?
"""

_ONE_MICROSECOND = timedelta(microseconds=1)


class StoreError(Exception):
    """A job store operation failed."""


def _plain(value: object) -> object:
    return value.value if isinstance(value, Enum) else value


def _to_db_time(moment: Optional[datetime]) -> Optional[str]:
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    else:
        moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="microseconds")


def _from_db_time(text: Optional[str]) -> Optional[datetime]:
    return None if text is None else datetime.fromisoformat(text)


def _to_micro(duration: timedelta) -> int:
    return duration // _ONE_MICROSECOND


def _job_from_row(row: tuple) -> JobDef:
    job_id, name, sched_type, schedule, next_run, status, created, updated = row
    return JobDef(
        job_id=job_id,
        job_name=name,
        sched_type=FreqType(sched_type),
        schedule=schedule or "",
        next_run_time=_from_db_time(next_run),
        status=JobStatus(status),
        created_at=_from_db_time(created),
        updated_at=_from_db_time(updated),
    )


class JobStore:
    """Stores jobs and their results in an SQLite database.

    An empty path keeps everything in memory. Times are stored in UTC;
    naive datetimes are taken to be UTC already.
    """

    def __init__(self, db_path: str = "") -> None:
        path = db_path or IN_MEMORY
        logger.info("Job Store DB Path: %s", path)
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StoreError(f"failed to open database: {exc}") from exc
        self._lock = threading.RLock()
        try:
            with self._conn:
                self._conn.execute("PRAGMA foreign_keys = ON")
                for statement in _SCHEMA:
                    self._conn.execute(statement)
        except sqlite3.Error as exc:
            self._conn.close()
            raise StoreError(f"failed to create tables: {exc}") from exc

    def __enter__(self) -> "JobStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _op(self, message: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as exc:
                raise StoreError(f"{message}: {exc}") from exc

    def save_job(self, job: JobDef) -> None:
        """Insert a job definition, or update it if the id exists (keeping created_at)."""
        with self._op("failed to save job") as conn, conn:
            conn.execute(
                f"""
                INSERT INTO jobs ({_JOB_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (job_id) DO UPDATE SET
                    job_name = excluded.job_name,
                    schedule_type = excluded.schedule_type,
                    schedule = excluded.schedule,
                    next_run_time = excluded.next_run_time,
                    status = excluded.status,
                    updated_at = excluded.updated_at
                """,
                (
                    job.job_id,
                    job.job_name,
                    _plain(job.sched_type),
                    job.schedule,
                    _to_db_time(job.next_run_time),
                    _plain(job.status),
                    _to_db_time(job.created_at),
                    _to_db_time(job.updated_at),
                ),
            )

    def get_job(self, job_id: str) -> JobDef:
        """Return the job with this id; raise StoreError if there is none."""
        with self._op("failed to get job") as conn:
            row = conn.execute(
                f"SELECT {_JOB_COLUMNS} FROM jobs WHERE job_id = ?", (job_id,)
            ).fetchone()
        if row is None:
            raise StoreError(f"failed to get job: no job with id {job_id}")
        return _job_from_row(row)

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        freq_type: Optional[FreqType] = None,
    ) -> list[JobDef]:
        """Return jobs, optionally filtered, earliest next run first."""
        where = []
        args: list[object] = []
        if status:
            where.append("status = ?")
            args.append(_plain(status))
        if freq_type:
            where.append("schedule_type = ?")
            args.append(_plain(freq_type))
        query = f"SELECT {_JOB_COLUMNS} FROM jobs"
        if where:
            query += " WHERE " + " AND ".join(where)
        query += " ORDER BY next_run_time IS NULL, next_run_time ASC"
        with self._op("failed to list jobs") as conn:
            rows = conn.execute(query, args).fetchall()
        return [_job_from_row(row) for row in rows]

    def update_job_status(self, job_id: str, status: JobStatus) -> None:
        """Set a job's status and touch its updated_at."""
        with self._op("failed to update job status") as conn, conn:
            conn.execute(
                "UPDATE jobs SET status = ?, updated_at = ? WHERE job_id = ?",
                (_plain(status), _to_db_time(datetime.now(timezone.utc)), job_id),
            )

    def update_next_run_time(self, job_id: str, next_run: Optional[datetime]) -> None:
        """Set when a job should next run and touch its updated_at."""
        with self._op("failed to update next run time") as conn, conn:
            conn.execute(
                "UPDATE jobs SET next_run_time = ?, updated_at = ? WHERE job_id = ?",
                (_to_db_time(next_run), _to_db_time(datetime.now(timezone.utc)), job_id),
            )

    def delete_job(self, job_id: str) -> None:
        """Remove a job and all of its results in one transaction."""
        with self._op("failed to delete job") as conn, conn:
            conn.execute("DELETE FROM job_results WHERE job_id = ?", (job_id,))
            conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))

    def record_job_result(self, result: JobResult) -> None:
        """Store the outcome of a run; the job must exist."""
        with self._op("failed to record job result") as conn, conn:
            conn.execute(
                """
                INSERT INTO job_results (
                    job_id, start_time, end_time, duration_micro,
                    status, success_msg, error_msg
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.job_id,
                    _to_db_time(result.start_time),
                    _to_db_time(result.end_time),
                    _to_micro(result.duration),
                    _plain(result.status),
                    result.success_msg,
                    result.error_msg,
                ),
            )

    def get_job_results(self, job_id: str, limit: int) -> list[JobResult]:
        """Return up to ``limit`` results of a job, newest first."""
        with self._op("failed to get job results") as conn:
            rows = conn.execute(
                """
                SELECT job_id, start_time, end_time, duration_micro,
                       status, success_msg, error_msg
                FROM job_results
                WHERE job_id = ?
                ORDER BY start_time DESC
                LIMIT ?
                """,
                (job_id, limit),
            ).fetchall()
        return [
            JobResult(
                job_id=row_job_id,
                start_time=_from_db_time(start),
                end_time=_from_db_time(end),
                duration=timedelta(microseconds=micro),
                status=JobStatus(status),
                success_msg=success or "",
                error_msg=error or "",
            )
            for row_job_id, start, end, micro, status, success, error in rows
        ]

    def get_job_runs(self, limit: int = 0) -> list[JobRun]:
        """Return job rows and run rows together for a listing.

        Newest jobs come first; each job's own row precedes its runs,
        which run from the latest result down. A limit of 0 means all.
        """
        sql_limit = limit if limit > 0 else -1
        with self._op("failed to get job runs") as conn:
            rows = conn.execute(_RUNS_QUERY, (sql_limit,)).fetchall()
        return [
            JobRun(
                job_id=job_id,
                job_name=name or "",
                freq_type=freq or "",
                job_status=status or "",
                created_at=_from_db_time(created),
                updated_at=_from_db_time(updated),
                result_id=result_id or 0,
                start_time=_from_db_time(start),
                duration=timedelta(microseconds=micro or 0),
                result_status=result_status or "",
                error_msg=error or "",
            )
            for (
                job_id,
                name,
                freq,
                status,
                created,
                updated,
                result_id,
                start,
                micro,
                result_status,
                error,
            ) in rows
        ]

    def close(self) -> None:
        """Close the database connection."""
        with self._op("failed to close store") as conn:
            conn.close()