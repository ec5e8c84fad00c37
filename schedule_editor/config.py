from __future__ import annotations

import os

DEFAULT_WEEK_COUNT = 8


def get_bootstrap_token() -> str:
    return os.getenv("BOOTSTRAP_TOKEN", "")


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def get_log_file() -> str | None:
    return os.getenv("LOG_FILE") or None


def get_week_count() -> int:
    raw = os.getenv("SCHEDULE_WEEK_COUNT", "")
    try:
        value = int(raw) if raw else DEFAULT_WEEK_COUNT
    except ValueError:
        return DEFAULT_WEEK_COUNT
    return value if value > 0 else DEFAULT_WEEK_COUNT


def get_environment() -> str:
    return os.getenv("ENVIRONMENT", "local")
