"""The web front end of the job runner and the command that starts it."""

from __future__ import annotations

import argparse
import logging
import queue
import threading
from typing import Iterator, Optional, Sequence

from flask import Flask, Response, jsonify
import os

from .broker import Subscription
from .core import JobConfig
from .manager import JobManager, JobManagerError
from .notify import CLOSE_SIGNAL, listen_for_updates, start_pubsub, subscribe_to_updates
from .register import init_manager, load_jobs, register_job
from .render import JOB_EVENT, render_jobs_table, render_jobs_table_rows
from .shutdown import init_shutdown_service
from .store import StoreError

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "jobs.db"
DEFAULT_PORT = 8000
KEEPALIVE_SECONDS = 15.0


def _event_stream(out: queue.Queue, subscription: Subscription) -> Iterator[str]:
    try:
        while True:
            try:
                msg = out.get(timeout=KEEPALIVE_SECONDS)
            except queue.Empty:
                yield ": keep-alive\n\n"
                continue
            if msg == CLOSE_SIGNAL:
                return
            data = "".join(f"data: {line}\n" for line in (str(msg).splitlines() or [""]))
            yield f"event: {JOB_EVENT}\n{data}\n"
    finally:
        subscription.unsubscribe()


def create_app(manager: JobManager) -> Flask:
    """Build the web application serving the jobs page and job controls.

    The stylesheet for the jobs page is taken from ``TABLE_STYLES`` in the
    app's config.
    """
    app = Flask(__name__)
    app.config.setdefault("TABLE_STYLES", "")

    @app.get("/")
    def root():
        return jsonify({"response": "OK", "ENV": os.environ.get("ENV", "")})

    @app.get("/jobs")
    def jobs_page():
        try:
            jobs = manager.list_jobs()
        except JobManagerError as exc:
            logger.error("Failed to list jobs: %s", exc)
            return Response(str(exc), status=500, mimetype="text/plain")
        return Response(
            render_jobs_table(jobs, app.config["TABLE_STYLES"]), mimetype="text/html"
        )

    @app.get("/jobs-table-rows")
    def jobs_table_rows():
        try:
            jobs = manager.list_jobs()
        except JobManagerError as exc:
            logger.error("Failed to list jobs: %s", exc)
            return Response(str(exc), status=500, mimetype="text/plain")
        return Response(render_jobs_table_rows(jobs), mimetype="text/html")

    @app.get("/jobs-update")
    def jobs_update():
        out: queue.Queue = queue.Queue(maxsize=1)
        subscription = subscribe_to_updates(out)
        return Response(
            _event_stream(out, subscription),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @app.post("/pause-job/<job_id>")
    def pause_job(job_id: str):
        try:
            manager.pause_job(job_id)
        except JobManagerError as exc:
            logger.error("Failed to pause job %s: %s", job_id, exc)
            return jsonify({"error": str(exc)}), 500
        return jsonify({"jobID": job_id, "status": "paused"})

    @app.post("/resume-job/<job_id>")
    def resume_job(job_id: str):
        try:
            manager.resume_job(job_id)
        except JobManagerError as exc:
            logger.error("Failed to resume job %s: %s", job_id, exc)
            return jsonify({"error": str(exc)}), 500
        return jsonify({"jobID": job_id, "status": "resumed"})

    return app


def _example_work() -> None:
    print("doing work")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the job runner with its web front end until SIGINT or SIGTERM."""
    parser = argparse.ArgumentParser(prog="jobrunner", description="Run scheduled jobs.")
    parser.add_argument("--db", default=DEFAULT_DB_PATH, help="job database file")
    parser.add_argument("--host", default="0.0.0.0", help="address to listen on")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="port to listen on")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)

    done = threading.Event()
    init_shutdown_service(done)

    try:
        manager = init_manager(args.db)
    except StoreError as exc:
        logger.error("Failed to initialize job store: %s", exc)
        return 1

    start_pubsub()
    listen_for_updates(iter(manager.jobs_updated.get, None))

    register_job(
        JobConfig(
            id="job1",
            name="Example Job 1",
            is_periodic=True,
            schedule="*/10 * * * * *",
            job_function=_example_work,
        )
    )
    try:
        load_jobs(manager)
    except JobManagerError as exc:
        logger.error("Failed to load jobs: %s", exc)
        return 1

    app = create_app(manager)
    server = threading.Thread(
        target=app.run,
        kwargs={"host": args.host, "port": args.port, "threaded": True, "use_reloader": False},
        name="web",
        daemon=True,
    )
    server.start()

    while not done.wait(0.5):
        pass
    print("App exited")
    return 0