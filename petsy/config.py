"""Configuration constants and environment helpers for Petsy."""

from __future__ import annotations

import os
from datetime import timedelta

DEFAULT_STORE_BACKEND = "postgres"
STORE_BACKENDS = ("memory", "postgres")

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 200

MAX_NAME_LENGTH = 120
MAX_TITLE_LENGTH = 200
MAX_SHORT_TEXT_LENGTH = 200
MAX_TEXT_LENGTH = 5000
MAX_PICTURES = 20
MAX_AGE_YEARS = 100

REGISTER_SCOPE = "register"
ACTIVATION_TOKEN_BYTES = 32
DEFAULT_ACTIVATION_TTL_HOURS = 168
DEFAULT_PURGE_THRESHOLD_HOURS = 24


def get_store_backend() -> str:
    """Return the configured store backend name."""
    value = os.environ.get("PETSY_STORE", "").strip().lower()
    return value or DEFAULT_STORE_BACKEND


def _hours_from_env(name: str, default: int) -> timedelta:
    raw = os.environ.get(name, "").strip()
    try:
        hours = float(raw) if raw else float(default)
    except ValueError:
        hours = float(default)
    if hours <= 0:
        hours = float(default)
    return timedelta(hours=hours)


def get_activation_ttl() -> timedelta:
    """Return how long an activation link stays valid."""
    return _hours_from_env("PETSY_ACTIVATION_TTL_HOURS", DEFAULT_ACTIVATION_TTL_HOURS)


def get_purge_threshold() -> timedelta:
    """Return the grace period kept after a hash store entry expires."""
    return _hours_from_env(
        "PETSY_PURGE_THRESHOLD_HOURS", DEFAULT_PURGE_THRESHOLD_HOURS
    )


def clamp_limit(limit: int | None, default: int = DEFAULT_PAGE_LIMIT) -> int:
    """Clamp a requested page size into the supported range."""
    if limit is None:
        return default
    return max(1, min(int(limit), MAX_PAGE_LIMIT))
