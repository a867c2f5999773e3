# jobrunner

jobrunner runs background jobs inside your application. Job definitions and
the history of every run are kept in an SQLite database. Periodic jobs run on
six-field cron expressions, with seconds as the first field. A small Flask web
application lists jobs and their runs and lets you pause or resume a job.

## Installing

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Running the dashboard

```
jobrunner
```

This command does the following:

- opens the job database (`jobs.db` by default);
- registers an example job that prints `doing work` every ten seconds;
- loads and starts the registered jobs;
- serves HTTP on port 8000.

Options:

| Option   | Default   | Meaning               |
|----------|-----------|-----------------------|
| `--db`   | `jobs.db` | job database file     |
| `--host` | `0.0.0.0` | address to listen on  |
| `--port` | `8000`    | port to listen on     |

Routes served by `jobrunner.app.create_app(manager)`:

| Method | Path                    | Purpose                                                 |
|--------|-------------------------|---------------------------------------------------------|
| GET    | `/`                     | Health check: `{"response": "OK", "ENV": <$ENV>}`       |
| GET    | `/jobs`                 | Full jobs table page                                    |
| GET    | `/jobs-table-rows`      | Table rows only                                         |
| GET    | `/jobs-update`          | Server-sent events (`job-update`) when jobs change      |
| POST   | `/pause-job/<job_id>`   | Pause a job; JSON reply, status 500 with `error` on failure |
| POST   | `/resume-job/<job_id>`  | Resume a paused job; same reply shape                   |

The table shows one row per job, then that job's runs, newest first. At most
100 rows are shown.

Press Ctrl-C or send SIGTERM to stop. The registered shutdown hooks then run
together and get a 15-second grace period. One of these hooks shuts down the
job manager, which cancels running jobs and closes the store.

## Registering your own jobs

```python
from jobrunner.core import JobConfig
from jobrunner.register import register_job, init_manager, load_jobs
from jobrunner.app import create_app


def refresh_cache():
    print("refreshing")


register_job(JobConfig(
    id="refresh",
    name="Refresh cache",
    is_periodic=True,
    schedule="0 */5 * * * *",  # every five minutes, on the minute
    job_function=refresh_cache,
))

manager = init_manager("jobs.db")
load_jobs(manager)
app = create_app(manager)
app.config["TABLE_STYLES"] = "table { border-collapse: collapse; }"
```

`init_manager` takes the database path. With an empty path it reads the
`DB_FIlE_PATH` environment variable. If that is empty too, it keeps the data
in memory. It also registers a shutdown hook for the manager.

If a job function raises, the error is logged and the run still counts as
complete. `register_job` accepts only periodic jobs: for a one-time job,
`load_jobs` raises `JobManagerError`.

## Using the manager directly

`jobrunner.manager.JobManager(store)` has these methods:

- `setup_job`, `start_job`, `stop_job`, `pause_job`, `resume_job`, `delete_job`;
- `get_job_status`, `load_jobs`, `list_jobs`;
- `shutdown(timeout)`.

Failures raise `JobManagerError`. The `jobs_updated` queue receives a notice
whenever a job changes.

One-time jobs are supported here. Pass an RFC 3339 time as the schedule, or
leave it empty to mean now. `start_job` runs a one-time job at once:

```python
from jobrunner.core import FreqType
from jobrunner.jobs import BaseJob
from jobrunner.manager import JobManager
from jobrunner.store import JobStore

manager = JobManager(JobStore())  # in-memory store
job = BaseJob("once", "Run once", FreqType.ONE_TIME,
              work_func=lambda cancel: "done", max_work_time=30)
manager.start_job(manager.setup_job(job))
```

A work function receives a `threading.Event` that is set on cancellation. It
returns a success message, or raises to fail the run.

Statuses are members of `jobrunner.core.JobStatus`: `CREATED`, `RUNNING`,
`PAUSED`, `STOPPED`, `COMPLETE`, `FAILED`.

## Modules

- `jobrunner.jobs`: `BaseJob` runs its work with an optional time limit and a
  5-second grace period. The module also has `PeriodicJob`, `DummyJob` and
  `LoggingJob`.
- `jobrunner.cron`: `parse_schedule` and the thread-based `Scheduler`.
  Schedules have six fields: second, minute, hour, day of month, month and day
  of week. Month and weekday names are accepted. `@` descriptors are not.
- `jobrunner.store`: `JobStore`, the SQLite store for jobs and results.
- `jobrunner.broker` and `jobrunner.notify`: an in-process publish/subscribe
  broker that fans job updates out to queues.
- `jobrunner.render`: HTML for the jobs page and its rows.
- `jobrunner.shutdown`: use `register_hook` to add your own clean-up, and
  `initiate_shutdown` to run the hooks yourself.

## What it does not do

- **Live updates.** The page's live updates rely on htmx. The page loads it
  from `/static/htmx.min.js` and `/static/htmx-ext-sse.js`, and the package
  does not ship these files. Until you serve them, the table does not refresh
  by itself; reload the page instead. The pause and resume buttons work
  without them.
- **Stylesheet.** No stylesheet is included. Set `TABLE_STYLES` in the app's
  config to supply one.
- **HTTP routes for other operations.** Stopping, deleting and creating jobs
  are only available through `JobManager`, not over HTTP.
- **Resuming after a restart.** Jobs saved in the database are not run again
  after a restart. They run only once they are registered and loaded again.