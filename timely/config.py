from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_DATABASE_PATH = "timely.db"
DEFAULT_OVERTIME_THRESHOLD_HOURS = 40


@dataclass(frozen=True, slots=True)
class Config:
    discord_token: str
    guild_id: int
    owner_user_id: int
    report_channel_id: int
    timezone: ZoneInfo
    database_path: Path
    overtime_threshold_hours: int


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value.strip()


def _positive_int(name: str, raw: str) -> int:
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc

    if parsed <= 0:
        raise ValueError(f"Environment variable {name} must be positive")
    return parsed


def _required_int_env(name: str) -> int:
    return _positive_int(name, _required_env(name))


def _timezone_from_env(name: str) -> ZoneInfo:
    tz_name = _required_env(name)
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Invalid timezone in {name}: {tz_name}") from exc


def load_config() -> Config:
    threshold_raw = os.getenv("OVERTIME_THRESHOLD_HOURS", str(DEFAULT_OVERTIME_THRESHOLD_HOURS)).strip()
    database_path = os.getenv("DATABASE_PATH", "").strip() or DEFAULT_DATABASE_PATH

    return Config(
        discord_token=_required_env("DISCORD_TOKEN"),
        guild_id=_required_int_env("GUILD_ID"),
        owner_user_id=_required_int_env("OWNER_USER_ID"),
        report_channel_id=_required_int_env("REPORT_CHANNEL_ID"),
        timezone=_timezone_from_env("TIMEZONE"),
        database_path=Path(database_path),
        overtime_threshold_hours=_positive_int("OVERTIME_THRESHOLD_HOURS", threshold_raw),
    )
