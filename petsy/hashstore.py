"""Expirable (token, value, scope) entries, used for account activation links."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from .errors import DuplicateTokenError, InvalidArgumentError, NoSuchTokenError
from .keys import Key
from .models import HashEntry, utc_now
from .repository import Repository
from .store import Store

logger = logging.getLogger(__name__)


def _require(name: str, value: str) -> None:
    if not value:
        raise InvalidArgumentError(f"{name} can't be empty")


def add_entry(
    store: Store,
    token: str,
    value: str,
    scope: str,
    valid: timedelta,
    *,
    now: datetime | None = None,
) -> Key:
    """Store a new entry whose validity period starts now.

    Raises DuplicateTokenError when the token is already in use.
    """
    _require("token", token)
    _require("value", value)
    _require("scope", scope)
    if valid is None or valid <= timedelta(0):
        raise InvalidArgumentError("validity duration must be positive")

    entry = HashEntry(token=token, value=value, scope=scope, generated=now or utc_now(), valid=valid)
    return Repository(store, HashEntry).add_if_absent(
        entry, filters={"token": token}, conflict=DuplicateTokenError
    )


def get_entry(store: Store, token: str) -> Optional[HashEntry]:
    _require("token", token)
    _, entries = Repository(store, HashEntry).list(filters={"token": token}, limit=1)
    return entries[0] if entries else None


def get_entries_same_value_scope(
    store: Store, value: str, scope: str
) -> tuple[list[Key], list[HashEntry]]:
    _require("value", value)
    _require("scope", scope)
    return Repository(store, HashEntry).list(filters={"value": value, "scope": scope})


def is_valid_entry(
    store: Store, token: str, value: str, scope: str, *, now: datetime | None = None
) -> bool:
    """Return whether a matching entry is still inside its validity period.

    Raises NoSuchTokenError when no entry matches all three fields.
    """
    _require("token", token)
    _, entries = Repository(store, HashEntry).list(
        filters={"token": token, "value": value, "scope": scope}, limit=1
    )
    if not entries:
        raise NoSuchTokenError("no entry with this token found")
    return not entries[0].is_expired(now)


def delete_entry(store: Store, token: str) -> None:
    entry = get_entry(store, token)
    if entry is None:
        raise NoSuchTokenError("no entry with this token found")
    store.delete(entry.key)


def purge_expired_entries(
    store: Store, threshold: timedelta, *, now: datetime | None = None
) -> int:
    """Delete entries that expired more than threshold ago.

    Returns the number of entries removed.
    """
    if threshold is None or threshold <= timedelta(0):
        raise InvalidArgumentError("threshold must be positive")
    current = now or utc_now()
    keys, entries = Repository(store, HashEntry).list()
    expired = [key for key, entry in zip(keys, entries) if entry.is_purgeable(threshold, current)]
    if expired:
        store.delete_multi(expired)
    logger.info(f"Purged {len(expired)} expired hash store entries.")
    return len(expired)
