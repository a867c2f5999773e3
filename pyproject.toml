[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "jobrunner"
version = "0.1.0"
description = "A job scheduler with cron schedules, run history in SQLite and a live web dashboard."
requires-python = ">=3.10"
keywords = ["jobs", "scheduler", "cron", "background-tasks", "dashboard", "sqlite"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Scheduling",
]
dependencies = [
    "flask",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
jobrunner = "jobrunner.app:main"

[tool.hatch.build.targets.wheel]
packages = ["jobrunner"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
