import os
from datetime import time

import pytz
from dotenv import load_dotenv

load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_clock_time(value: str) -> time:
    hours, minutes = value.strip().split(":", 1)
    return time(int(hours), int(minutes))


APP_ENV = os.getenv("APP_ENV", "development")
DEBUG = _get_bool(os.getenv("DEBUG"), default=False)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./scheduling.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:4200"])

DEFAULT_TIME_ZONE = os.getenv("DEFAULT_TIME_ZONE", "UTC")
BUSINESS_HOURS_START = os.getenv("BUSINESS_HOURS_START", "09:00")
BUSINESS_HOURS_END = os.getenv("BUSINESS_HOURS_END", "17:00")

SUGGESTION_LOOKAHEAD_DAYS = _get_int(os.getenv("SUGGESTION_LOOKAHEAD_DAYS"), 7)
MAX_SUGGESTED_TIMES = _get_int(os.getenv("MAX_SUGGESTED_TIMES"), 5)
MAX_COMMON_SLOTS = _get_int(os.getenv("MAX_COMMON_SLOTS"), 10)

DEFAULT_MINIMUM_NOTICE_HOURS = _get_int(os.getenv("DEFAULT_MINIMUM_NOTICE_HOURS"), 24)
DEFAULT_MAXIMUM_ADVANCE_DAYS = _get_int(os.getenv("DEFAULT_MAXIMUM_ADVANCE_DAYS"), 90)


def business_hours() -> tuple[time, time]:
    return parse_clock_time(BUSINESS_HOURS_START), parse_clock_time(BUSINESS_HOURS_END)


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and not os.getenv("DATABASE_URL"):
        raise RuntimeError("DATABASE_URL must be set in production.")

    if DEFAULT_TIME_ZONE not in pytz.all_timezones_set:
        raise RuntimeError(f"DEFAULT_TIME_ZONE '{DEFAULT_TIME_ZONE}' is not a known time zone.")

    try:
        opens_at, closes_at = business_hours()
    except ValueError as exc:
        raise RuntimeError("BUSINESS_HOURS_START and BUSINESS_HOURS_END must use HH:MM.") from exc
    if closes_at <= opens_at:
        raise RuntimeError("BUSINESS_HOURS_END must be later than BUSINESS_HOURS_START.")

    for name, value in (
        ("SUGGESTION_LOOKAHEAD_DAYS", SUGGESTION_LOOKAHEAD_DAYS),
        ("MAX_SUGGESTED_TIMES", MAX_SUGGESTED_TIMES),
        ("MAX_COMMON_SLOTS", MAX_COMMON_SLOTS),
    ):
        if value < 1:
            raise RuntimeError(f"{name} must be at least 1.")
