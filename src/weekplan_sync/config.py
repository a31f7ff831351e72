"""YAML configuration loading for the schedule store and calendar session."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

import yaml

from .models import normalize_hhmm

logger = logging.getLogger("weekplan-sync")

CONFIG_PATH = os.environ.get("WEEKPLAN_CONFIG", "/config/weekplan.yaml")

VALID_TYPES = {"memory", "rest", "caldav", "google"}

REQUIRED_KEYS = {
    "memory": (),
    "rest": ("url", "api_key_env"),
    "caldav": ("url", "username_env", "password_env"),
    "google": ("credentials_file",),
}

# Keys naming environment variables that hold credentials
CREDENTIAL_ENV_KEYS = ("api_key_env", "access_token_env", "username_env", "password_env")


@dataclass
class StoreConfig:
    """Which remote store holds the schedule, plus its type-specific settings."""

    type: str = "memory"  # memory, rest, caldav, google
    config: dict[str, Any] = field(default_factory=dict)


@dataclass
class CalendarSettings:
    """Visible time range of the week view."""

    slot_min_time: str = "07:00"
    slot_max_time: str = "22:00"


@dataclass
class AppConfig:
    store: StoreConfig = field(default_factory=StoreConfig)
    owner_id: str = ""
    calendar: CalendarSettings = field(default_factory=CalendarSettings)


def _load_store(raw: dict[str, Any]) -> StoreConfig:
    store_type = str(raw.get("type", "memory")).strip().lower()
    if store_type not in VALID_TYPES:
        raise ValueError(f"Store: unknown type '{store_type}'. Must be one of: {VALID_TYPES}")

    config = {k: v for k, v in raw.items() if k != "type"}
    for key in REQUIRED_KEYS[store_type]:
        if key not in config:
            raise ValueError(f"Store ({store_type}): '{key}' is required")

    # Warn if env vars not set
    for env_key in CREDENTIAL_ENV_KEYS:
        env_var = config.get(env_key)
        if env_var and not os.environ.get(env_var):
            logger.warning("Store (%s): env var '%s' not set", store_type, env_var)

    return StoreConfig(type=store_type, config=config)


def _load_calendar(raw: dict[str, Any]) -> CalendarSettings:
    settings = CalendarSettings()
    for key in ("slot_min_time", "slot_max_time"):
        if key in raw:
            try:
                setattr(settings, key, normalize_hhmm(str(raw[key])))
            except ValueError:
                raise ValueError(f"Calendar: invalid '{key}': {raw[key]!r}") from None
    if settings.slot_min_time >= settings.slot_max_time:
        raise ValueError("Calendar: 'slot_min_time' must be before 'slot_max_time'")
    return settings


def load_config() -> AppConfig:
    """Load and validate weekplan.yaml.

    A missing file yields the defaults: an in-memory store.
    """
    path = CONFIG_PATH
    if not os.path.isfile(path):
        logger.warning("Config file not found: %s", path)
        return AppConfig()

    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}

    if "store" not in raw:
        logger.warning("No 'store' key in config file, using in-memory store")

    return AppConfig(
        store=_load_store(raw.get("store") or {}),
        owner_id=str(raw.get("owner_id") or ""),
        calendar=_load_calendar(raw.get("calendar") or {}),
    )
