"""HTML rendering of the jobs table and its rows."""

from __future__ import annotations

from datetime import datetime
from html import escape
from typing import Iterable, Mapping, Optional

from .core import JobRun

JOB_EVENT = "job-update"
"""Name of the server-sent event that makes the table refresh its rows."""

COLUMNS = (
    "Job",
    "ID",
    "Freq",
    "Status",
    "Created",
    "Updated",
    "Run ID",
    "Run Start",
    "Run Duration",
    "Run Status",
    "Run Error Msg",
    "Controls",
)

SCRIPT_SOURCES = ("/static/htmx.min.js", "/static/htmx-ext-sse.js")
"""Where the page loads htmx and its SSE extension from."""

_TIME_FORMAT = "%Y-%m-%d %H:%M %Z"

_STATUS_CLASSES = {
    "running": "badge badge-active",
    "paused": "badge badge-pending",
    "pending": "badge badge-pending",
    "error": "badge badge-error",
}
_DEFAULT_STATUS_CLASS = "badge badge-inactive"

_PAUSE_ICON = (
    '<svg width="20" height="20" viewBox="0 0 20 20" fill="none" '
    'style="vertical-align: middle;">'
    '<rect x="4" y="4" width="4" height="12" rx="1" fill="currentColor"/>'
    '<rect x="12" y="4" width="4" height="12" rx="1" fill="currentColor"/>'
    "</svg>"
)
_PLAY_ICON = (
    '<svg width="20" height="20" viewBox="0 0 20 20" fill="none" '
    'style="vertical-align: middle;">'
    '<polygon points="5,4 15,10 5,16" fill="currentColor"/>'
    "</svg>"
)


def _element(tag: str, body: str = "", attrs: Optional[Mapping[str, str]] = None) -> str:
    attr_text = "".join(
        f' {name}="{escape(str(value), quote=True)}"' for name, value in (attrs or {}).items()
    )
    return f"<{tag}{attr_text}>{body}</{tag}>"


def _td(text: str = "", css_class: Optional[str] = None) -> str:
    return _element("td", escape(text), {"class": css_class} if css_class else None)


def _timestamp(moment: Optional[datetime]) -> str:
    return "" if moment is None else moment.strftime(_TIME_FORMAT)


def _control_script(path: str, done: str, doing: str) -> str:
    return (
        f"fetch('/{path}/' + this.getAttribute('data-job-id'), {{method: 'POST'}})"
        ".then(response => {"
        " if (response.ok) return response.json();"
        " throw new Error('Network response was not ok'); })"
        f".then(data => console.log('Job {done}:', data))"
        f".catch(error => console.error('Error {doing} job:', error))"
    )


def _control_button(job_id: str, title: str, script: str, icon: str) -> str:
    return _element(
        "a",
        icon,
        {
            "class": "btn btn-primary",
            "data-job-id": job_id,
            "title": title,
            "onClick": script,
        },
    )


def _job_cells(job: JobRun) -> list[str]:
    status_class = _STATUS_CLASSES.get(job.job_status.lower(), _DEFAULT_STATUS_CLASS)
    controls = _control_button(
        job.job_id, "Pause Job", _control_script("pause-job", "paused", "pausing"), _PAUSE_ICON
    ) + _control_button(
        job.job_id, "Resume Job", _control_script("resume-job", "resumed", "resuming"), _PLAY_ICON
    )
    return [
        _td(job.freq_type),
        _element("td", _element("span", escape(job.job_status), {"class": status_class})),
        _td(_timestamp(job.created_at), "timestamp"),
        _td(_timestamp(job.updated_at), "timestamp"),
        *(_td() for _ in range(5)),
        _element("td", controls),
    ]


def _run_cells(job: JobRun) -> list[str]:
    millis = job.duration.total_seconds() * 1000
    return [
        *(_td() for _ in range(4)),
        _td(str(job.result_id)),
        _td(_timestamp(job.start_time), "timestamp"),
        _td(f"{millis:.1f} ms"),
        _td(job.result_status),
        _td(job.error_msg),
        _td(),
    ]


def render_jobs_table_rows(jobs: Iterable[JobRun]) -> str:
    """Render one table row per entry: job rows with controls, run rows with run details."""
    rows = []
    for job in jobs:
        cells = [_td(job.job_name), _td(job.job_id)]
        cells += _job_cells(job) if job.is_job_row else _run_cells(job)
        rows.append(_element("tr", "".join(cells)))
    return "".join(rows)


def render_jobs_table(jobs: Iterable[JobRun], styles: str = "") -> str:
    """Render the full jobs page; its rows refresh on each job update event."""
    head = "".join(
        [
            _element("title", "Jobs"),
            '<meta name="viewport" content="width=device-width, initial-scale=1.0">',
            _element("style", styles),
            *(_element("script", "", {"src": src}) for src in SCRIPT_SOURCES),
        ]
    )
    header_row = _element("tr", "".join(_element("th", escape(col)) for col in COLUMNS))
    body_attrs = {
        "id": "jobs-table-body",
        "hx-ext": "sse",
        "sse-connect": "/jobs-update",
        "hx-trigger": f"sse:{JOB_EVENT}",
        "hx-get": "/jobs-table-rows",
        "hx-swap": "innerHTML",
    }
    table = _element(
        "table",
        _element("thead", header_row) + _element("tbody", render_jobs_table_rows(jobs), body_attrs),
    )
    body = _element(
        "div",
        _element("h1", "Jobs") + _element("div", table, {"class": "table-responsive"}),
        {"class": "container"},
    )
    return _element("html", _element("head", head) + _element("body", body))