"""Core job types: statuses, definitions, results and the Job interface."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """The state of a job or the outcome of one of its runs."""

    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETE = "complete"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class FreqType(str, Enum):
    """Whether a job runs once or periodically."""

    ONE_TIME = "onetime"
    PERIODIC = "periodic"

    def __str__(self) -> str:
        return self.value


@dataclass
class Stats:
    """Runtime metrics of one job execution; ``error`` is None on success."""

    start_time_utc: datetime = field(default_factory=_utc_now)
    duration: timedelta = timedelta(0)
    success_msg: str = ""
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class Job(ABC):
    """Something the job manager can run."""

    @property
    @abstractmethod
    def id(self) -> str:
        """Unique identifier of the job."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of the job."""

    @property
    @abstractmethod
    def freq_type(self) -> FreqType:
        """Whether the job runs once or periodically."""

    @abstractmethod
    def run(self, cancel: threading.Event) -> Stats:
        """Run the job until done or until ``cancel`` is set.

        Failures are reported in the returned ``Stats.error``.
        """


@dataclass
class JobDef:
    """Stored metadata about a job."""

    job_id: str
    job_name: str
    sched_type: FreqType
    schedule: str = ""
    next_run_time: Optional[datetime] = None
    status: JobStatus = JobStatus.CREATED
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)


@dataclass
class JobResult:
    """The outcome of one job execution."""

    job_id: str
    start_time: datetime
    end_time: datetime
    duration: timedelta
    status: JobStatus
    success_msg: str = ""
    error_msg: str = ""


@dataclass
class JobRun:
    """A row of the jobs listing: either a job itself or one of its runs.

    Job rows have ``result_id`` 0; run rows carry the run's details.
    """

    job_id: str
    job_name: str = ""
    freq_type: str = ""
    job_status: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    result_id: int = 0
    start_time: Optional[datetime] = None
    duration: timedelta = timedelta(0)
    result_status: str = ""
    error_msg: str = ""

    @property
    def is_job_row(self) -> bool:
        return self.result_id == 0


@dataclass
class JobConfig:
    """Registration settings for a job.

    ``priority`` and ``retry_count`` are accepted but not yet acted on.
    ``job_function`` signals failure by raising.
    """

    id: str
    name: str
    is_periodic: bool = False
    schedule: str = ""
    priority: int = 0
    max_run_time: int = 0
    retry_count: int = 0
    job_function: Optional[Callable[[], None]] = None