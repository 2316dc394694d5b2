"""Threshold and policy settings, with optional YAML overrides."""

import logging
import os
from dataclasses import dataclass, fields, replace
from datetime import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml
from jsonschema import ValidationError, validate

from .errors import SettingsError

logger = logging.getLogger(__name__)

SETTINGS_ENV_VAR = "VEHICLE_COMPLIANCE_SETTINGS"


@dataclass(frozen=True)
class Settings:
    """Classification thresholds and reminder policy."""

    due_soon_mileage: int = 1000
    # Absolute cutoff shared by every mileage category
    critical_overdue_mileage: int = 2000
    due_soon_days: int = 30
    critical_overdue_days: int = 30
    km_per_day: int = 50
    document_urgent_days: int = 7
    document_window_days: int = 30
    reminder_days: Tuple[int, ...] = (30, 14, 7, 3, 1)
    max_daily_reminders: int = 3
    daily_reminder_time: time = time(9, 0)
    immediate_window_days: int = 3
    document_renewal_years: int = 1


DEFAULT_SETTINGS = Settings()

SETTINGS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "dueSoonMileage": {"type": "integer", "minimum": 0},
        "criticalOverdueMileage": {"type": "integer", "minimum": 0},
        "dueSoonDays": {"type": "integer", "minimum": 0},
        "criticalOverdueDays": {"type": "integer", "minimum": 0},
        "kmPerDay": {"type": "integer", "minimum": 1},
        "documentUrgentDays": {"type": "integer", "minimum": 0},
        "documentWindowDays": {"type": "integer", "minimum": 0},
        "reminderDays": {
            "type": "array",
            "items": {"type": "integer", "minimum": 1},
            "minItems": 1,
        },
        "maxDailyReminders": {"type": "integer", "minimum": 0},
        # YAML 1.1 loads an unquoted 10:30 as the base-60 integer 630
        "dailyReminderTime": {
            "anyOf": [
                {"type": "string", "pattern": "^([01][0-9]|2[0-3]):[0-5][0-9]$"},
                {"type": "integer", "minimum": 0, "maximum": 1439},
            ],
        },
        "immediateWindowDays": {"type": "integer", "minimum": 0},
        "documentRenewalYears": {"type": "integer", "minimum": 1},
    },
}


def _snake_case(name: str) -> str:
    return "".join("_" + c.lower() if c.isupper() else c for c in name)


def parse_reminder_time(value: Union[str, int]) -> time:
    """Parse "HH:MM", or minutes since midnight."""
    if isinstance(value, int):
        return time(value // 60, value % 60)
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def settings_from_dict(data: Optional[Dict[str, Any]]) -> Settings:
    """Build Settings from a camelCase mapping, validated against the schema."""
    data = data or {}
    try:
        validate(instance=data, schema=SETTINGS_SCHEMA)
    except ValidationError as e:
        raise SettingsError(f"Invalid settings: {e.message}") from e

    overrides: Dict[str, Any] = {}
    known = {f.name for f in fields(Settings)}
    for key, value in data.items():
        name = _snake_case(key)
        if name not in known:
            continue
        if name == "reminder_days":
            value = tuple(sorted(set(value), reverse=True))
        elif name == "daily_reminder_time":
            value = parse_reminder_time(value)
        overrides[name] = value
    return replace(DEFAULT_SETTINGS, **overrides)


def load_settings(path: Optional[Union[str, Path]] = None) -> Settings:
    """
    Load settings from a YAML file.

    Falls back to the VEHICLE_COMPLIANCE_SETTINGS environment variable,
    then to DEFAULT_SETTINGS when neither names a file.
    """
    path = path or os.environ.get(SETTINGS_ENV_VAR)
    if not path:
        return DEFAULT_SETTINGS

    try:
        with open(path) as fp:
            data = yaml.safe_load(fp)
    except (OSError, yaml.YAMLError) as e:
        raise SettingsError(f"Cannot read settings file {path}: {e}") from e

    if data is not None and not isinstance(data, dict):
        raise SettingsError(f"Settings file {path} must contain a mapping")

    settings = settings_from_dict(data)
    logger.debug("Loaded settings from %s", path)
    return settings
