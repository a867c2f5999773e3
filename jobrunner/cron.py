"""Six-field cron schedules (with seconds) and a thread-based scheduler."""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

logger = logging.getLogger(__name__)

_MONTH_NAMES = {
    name: number
    for number, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"),
        start=1,
    )
}
_DAY_NAMES = {
    name: number
    for number, name in enumerate(("sun", "mon", "tue", "wed", "thu", "fri", "sat"))
}

# name, lowest value, highest value, accepted names
_FIELDS = (
    ("second", 0, 59, None),
    ("minute", 0, 59, None),
    ("hour", 0, 23, None),
    ("day of month", 1, 31, None),
    ("month", 1, 12, _MONTH_NAMES),
    ("day of week", 0, 6, _DAY_NAMES),
)

_SEARCH_YEARS = 5


class CronError(ValueError):
    """A cron specification could not be parsed."""


@dataclass(frozen=True)
class CronSchedule:
    """A parsed schedule: the allowed values of each field.

    Days of the week count from Sunday as 0. When either day field was
    given as ``*`` or ``?`` both day fields must match; otherwise a day
    matches when either of them does.
    """

    seconds: frozenset
    minutes: frozenset
    hours: frozenset
    days_of_month: frozenset
    months: frozenset
    days_of_week: frozenset
    dom_star: bool = False
    dow_star: bool = False

    def _day_matches(self, moment: datetime) -> bool:
        dom_ok = moment.day in self.days_of_month
        dow_ok = (moment.weekday() + 1) % 7 in self.days_of_week
        if self.dom_star or self.dow_star:
            return dom_ok and dow_ok
        return dom_ok or dow_ok

    def next(self, after: datetime) -> Optional[datetime]:
        """Return the first matching time strictly after ``after``.

        The result keeps the time zone of ``after``. Returns None when no
        match exists within five years.
        """
        tz = after.tzinfo
        moment = after.replace(tzinfo=None, microsecond=0) + timedelta(seconds=1)
        limit = moment.year + _SEARCH_YEARS

        while moment.year <= limit:
            if moment.month not in self.months:
                if moment.month == 12:
                    moment = datetime(moment.year + 1, 1, 1)
                else:
                    moment = datetime(moment.year, moment.month + 1, 1)
                continue
            if not self._day_matches(moment):
                moment = datetime(moment.year, moment.month, moment.day) + timedelta(days=1)
                continue
            if moment.hour not in self.hours:
                moment = moment.replace(minute=0, second=0) + timedelta(hours=1)
                continue
            if moment.minute not in self.minutes:
                moment = moment.replace(second=0) + timedelta(minutes=1)
                continue
            if moment.second not in self.seconds:
                moment += timedelta(seconds=1)
                continue
            return moment.replace(tzinfo=tz)
        return None


def _parse_value(text: str, names: Optional[dict]) -> int:
    if names is not None and text.lower() in names:
        return names[text.lower()]
    if not text.isdigit():
        raise CronError(f"failed to parse int from {text!r}")
    return int(text)


def _parse_range(part: str, low: int, high: int, names: Optional[dict]) -> tuple[set, bool]:
    range_and_step = part.split("/")
    low_and_high = range_and_step[0].split("-")
    single = len(low_and_high) == 1
    star = False

    if low_and_high[0] in ("*", "?"):
        start, end = low, high
        star = True
    else:
        start = _parse_value(low_and_high[0], names)
        if len(low_and_high) == 1:
            end = start
        elif len(low_and_high) == 2:
            end = _parse_value(low_and_high[1], names)
        else:
            raise CronError(f"too many hyphens: {part!r}")

    if len(range_and_step) == 1:
        step = 1
    elif len(range_and_step) == 2:
        step = _parse_value(range_and_step[1], None)
        if single:
            end = high
        if step > 1:
            star = False
    else:
        raise CronError(f"too many slashes: {part!r}")

    if start < low:
        raise CronError(f"beginning of range ({start}) below minimum ({low}): {part!r}")
    if end > high:
        raise CronError(f"end of range ({end}) above maximum ({high}): {part!r}")
    if start > end:
        raise CronError(f"beginning of range ({start}) beyond end of range ({end}): {part!r}")
    if step == 0:
        raise CronError(f"step of range should be a positive number: {part!r}")

    return set(range(start, end + 1, step)), star


def _parse_field(expr: str, low: int, high: int, names: Optional[dict]) -> tuple[frozenset, bool]:
    values: set = set()
    star = False
    for part in expr.split(","):
        part_values, part_star = _parse_range(part, low, high, names)
        values |= part_values
        star = star or part_star
    return frozenset(values), star


def parse_schedule(spec: str) -> CronSchedule:
    """Parse a spec of six fields: second minute hour day-of-month month day-of-week."""
    if not spec or not spec.strip():
        raise CronError("empty spec string")
    if spec.startswith("@"):
        raise CronError(f"parser does not accept descriptors: {spec}")
    fields = spec.split()
    if len(fields) != len(_FIELDS):
        raise CronError(f"expected exactly {len(_FIELDS)} fields, found {len(fields)}: {fields}")

    parsed = [
        _parse_field(expr, low, high, names)
        for expr, (_, low, high, names) in zip(fields, _FIELDS)
    ]
    (seconds, _), (minutes, _), (hours, _), (dom, dom_star), (months, _), (dow, dow_star) = parsed
    return CronSchedule(
        seconds=seconds,
        minutes=minutes,
        hours=hours,
        days_of_month=dom,
        months=months,
        days_of_week=dow,
        dom_star=dom_star,
        dow_star=dow_star,
    )


@dataclass
class _Entry:
    schedule: CronSchedule
    fn: Callable[[], object]
    next: Optional[datetime] = None


class Scheduler:
    """Runs functions on cron schedules, each run in its own thread."""

    def __init__(self, now: Optional[Callable[[], datetime]] = None) -> None:
        self._now = now or datetime.now
        self._cond = threading.Condition()
        self._entries: dict[int, _Entry] = {}
        self._ids = itertools.count(1)
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._active_runs = 0
        self._idle_waiters: list[threading.Event] = []

    def add_func(self, spec: str, fn: Callable[[], object]) -> int:
        """Schedule ``fn`` by ``spec`` and return the new entry's id."""
        schedule = parse_schedule(spec)
        with self._cond:
            entry_id = next(self._ids)
            self._entries[entry_id] = _Entry(schedule, fn, schedule.next(self._now()))
            self._cond.notify_all()
        return entry_id

    def remove(self, entry_id: int) -> None:
        """Stop scheduling the entry; unknown ids are ignored."""
        with self._cond:
            self._entries.pop(entry_id, None)
            self._cond.notify_all()

    def start(self) -> None:
        """Start the scheduler in a background thread, if not running."""
        with self._cond:
            if self._running:
                return
            self._running = True
            now = self._now()
            for entry in self._entries.values():
                entry.next = entry.schedule.next(now)
            self._thread = threading.Thread(target=self._loop, name="cron", daemon=True)
            self._thread.start()

    def stop(self) -> threading.Event:
        """Stop scheduling; the returned event is set once running jobs finish."""
        done = threading.Event()
        with self._cond:
            self._running = False
            self._cond.notify_all()
            thread = self._thread
            self._thread = None
            if self._active_runs == 0:
                done.set()
            else:
                self._idle_waiters.append(done)
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        return done

    def _loop(self) -> None:
        with self._cond:
            while self._running:
                now = self._now()
                for entry in self._entries.values():
                    if entry.next is not None and entry.next <= now:
                        self._launch(entry.fn)
                        entry.next = entry.schedule.next(now)
                pending = [e.next for e in self._entries.values() if e.next is not None]
                timeout = None
                if pending:
                    timeout = max(0.0, (min(pending) - self._now()).total_seconds())
                self._cond.wait(timeout)

    def _launch(self, fn: Callable[[], object]) -> None:
        self._active_runs += 1
        threading.Thread(target=self._run_entry, args=(fn,), daemon=True).start()

    def _run_entry(self, fn: Callable[[], object]) -> None:
        try:
            fn()
        except Exception:
            logger.exception("Scheduled function failed")
        finally:
            with self._cond:
                self._active_runs -= 1
                if self._active_runs == 0:
                    for waiter in self._idle_waiters:
                        waiter.set()
                    self._idle_waiters.clear()