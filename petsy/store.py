"""Document store interface and the in-memory adapter."""

from __future__ import annotations

import copy
import itertools
import logging
import threading
from typing import Any, Iterable, Optional, Protocol

from .config import STORE_BACKENDS, get_store_backend
from .errors import InvalidArgumentError
from .keys import Key

logger = logging.getLogger(__name__)


class Store(Protocol):
    """Operations the core needs from a hierarchical key-value store."""

    def put(self, key: Key, document: dict) -> Key: ...

    def get(self, key: Key) -> Optional[dict]: ...

    def get_multi(self, keys: Iterable[Key]) -> list[Optional[dict]]: ...

    def delete(self, key: Key) -> None: ...

    def delete_multi(self, keys: Iterable[Key]) -> None: ...

    def query(
        self,
        kind: str,
        *,
        ancestor: Key | None = None,
        parent: Key | None = None,
        filters: dict[str, Any] | None = None,
        order: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[tuple[Key, dict]]: ...

    def put_if_absent(
        self, key: Key, document: dict, *, filters: dict[str, Any] | None = None
    ) -> Optional[Key]: ...


def require_complete(key: Key | None) -> Key:
    if key is None:
        raise InvalidArgumentError("key cannot be None")
    if key.incomplete:
        raise InvalidArgumentError(f"key {key} is incomplete")
    return key


def parse_order(order: str | None) -> tuple[str | None, bool]:
    """Split an order string like "-date" into (field, descending)."""
    if not order:
        return None, False
    descending = order.startswith("-")
    name = order[1:] if descending else order
    if not name:
        raise InvalidArgumentError(f"invalid order {order!r}")
    return name, descending


def check_paging(offset: int, limit: int | None) -> None:
    if offset < 0:
        raise InvalidArgumentError("offset cannot be negative")
    if limit is not None and limit < 0:
        raise InvalidArgumentError("limit cannot be negative")


class MemoryStore:
    """Process-local store keeping documents in a dict.

    Documents are copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self) -> None:
        self._entities: dict[Key, dict] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._entities)

    def put(self, key: Key, document: dict) -> Key:
        if key is None:
            raise InvalidArgumentError("key cannot be None")
        with self._lock:
            if key.incomplete:
                key = key.with_id(next(self._ids))
            self._entities[key] = copy.deepcopy(document)
        return key

    def get(self, key: Key) -> Optional[dict]:
        require_complete(key)
        with self._lock:
            document = self._entities.get(key)
            return copy.deepcopy(document) if document is not None else None

    def get_multi(self, keys: Iterable[Key]) -> list[Optional[dict]]:
        return [self.get(key) for key in keys]

    def delete(self, key: Key) -> None:
        require_complete(key)
        with self._lock:
            self._entities.pop(key, None)

    def delete_multi(self, keys: Iterable[Key]) -> None:
        with self._lock:
            for key in keys:
                self.delete(key)

    def query(
        self,
        kind: str,
        *,
        ancestor: Key | None = None,
        parent: Key | None = None,
        filters: dict[str, Any] | None = None,
        order: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[tuple[Key, dict]]:
        if ancestor is not None:
            require_complete(ancestor)
        if parent is not None:
            require_complete(parent)
        order_field, descending = parse_order(order)
        check_paging(offset, limit)
        with self._lock:
            matches = [
                (key, document)
                for key, document in self._entities.items()
                if key.kind == kind
                and (ancestor is None or key.has_ancestor(ancestor))
                and (parent is None or key.parent == parent)
                and all(document.get(name) == value for name, value in (filters or {}).items())
            ]
            matches.sort(key=lambda item: item[0].id)
            if order_field is not None:
                # Stable sort: ties keep ascending id order in both directions.
                # Missing values sort first when ascending.
                matches.sort(
                    key=lambda item: (
                        item[1].get(order_field) is not None,
                        item[1].get(order_field) if item[1].get(order_field) is not None else 0,
                    ),
                    reverse=descending,
                )
            end = None if limit is None else offset + limit
            return [(key, copy.deepcopy(document)) for key, document in matches[offset:end]]

    def put_if_absent(
        self, key: Key, document: dict, *, filters: dict[str, Any] | None = None
    ) -> Optional[Key]:
        with self._lock:
            if key.parent is not None:
                existing = self.query(key.kind, ancestor=key.parent, filters=filters, limit=1)
            else:
                existing = self.query(key.kind, filters=filters, limit=1)
            if existing:
                logger.debug(f"Skipped {key.kind} insert: {existing[0][0]} already matches.")
                return None
            return self.put(key, document)


def create_store(backend: str | None = None) -> Store:
    """Return a store for the named backend (defaults to PETSY_STORE)."""
    name = (backend or get_store_backend()).strip().lower()
    if name not in STORE_BACKENDS:
        raise InvalidArgumentError(
            f"unknown store backend {name!r}; expected one of {', '.join(STORE_BACKENDS)}"
        )
    if name == "memory":
        logger.info("Using in-memory document store.")
        return MemoryStore()

    from .db import PostgresStore

    logger.info("Using PostgreSQL document store.")
    return PostgresStore()
