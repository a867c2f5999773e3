"""Job scheduling with cron schedules, SQLite run history and a Flask dashboard."""

__version__ = "0.1.0"