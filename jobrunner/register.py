"""Registry of job configurations and set-up of the job manager."""

from __future__ import annotations

import logging
import os
import threading

from .core import JobConfig
from .jobs import PeriodicJob
from .manager import JobManager, JobManagerError
from .shutdown import register_hook
from .store import JobStore

logger = logging.getLogger(__name__)

DB_PATH_ENV = "DB_FIlE_PATH"
"""Environment variable read for the database path when none is given."""

_configs: list[JobConfig] = []
_configs_lock = threading.Lock()


def register_job(cfg: JobConfig) -> None:
    """Add a job configuration to be set up by ``load_jobs``.

    Only periodic jobs are supported so far.
    """
    with _configs_lock:
        _configs.append(cfg)


def registered_jobs() -> list[JobConfig]:
    """Return the registered job configurations in registration order."""
    with _configs_lock:
        return list(_configs)


def _clear_registry() -> None:
    with _configs_lock:
        _configs.clear()


def _setup_job(mgr: JobManager, cfg: JobConfig) -> str:
    if not cfg.is_periodic:
        raise JobManagerError("One-time jobs are not supported yet")
    job = PeriodicJob(cfg)
    try:
        job_id = mgr.setup_job(job, cfg.schedule)
    except JobManagerError as exc:
        raise JobManagerError(f"failed to create job: {exc}") from exc
    logger.info("Created job: %s", cfg)

    try:
        mgr.start_job(job_id)
    except JobManagerError as exc:
        logger.error("Failed to start periodic job: %s", exc)
    return job_id


def load_jobs(mgr: JobManager) -> list[str]:
    """Set up and start every registered job; return their ids.

    Stops at the first job that cannot be set up and raises
    JobManagerError. A job that is set up but fails to start is only
    logged.
    """
    job_ids = []
    for cfg in registered_jobs():
        try:
            job_ids.append(_setup_job(mgr, cfg))
        except JobManagerError as exc:
            raise JobManagerError(f"Failed to register job: {exc}") from exc
    return job_ids


def init_manager(db_file_path: str = "") -> JobManager:
    """Open the job store and create a manager that stops on shutdown.

    An empty path falls back to the ``DB_FIlE_PATH`` environment
    variable, and then to an in-memory database.
    """
    logger.info("Starting job processor")
    path = db_file_path or os.environ.get(DB_PATH_ENV, "")
    store = JobStore(path)
    manager = JobManager(store)

    def _shutdown_manager(grace_period: float) -> None:
        try:
            manager.shutdown(grace_period)
        except JobManagerError:
            logger.exception("Error during job manager shutdown")
            raise
        logger.info("Job manager shutdown")

    register_hook(_shutdown_manager)
    return manager