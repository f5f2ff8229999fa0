"""Typed create/read/update/delete over the document store."""

from __future__ import annotations

import logging
from typing import Any, Generic, Optional, TypeVar

from .errors import (
    AlreadyStoredError,
    ConflictError,
    InvalidArgumentError,
    MalformedKeyError,
)
from .keys import Key
from .models import Entity
from .store import Store, check_paging

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Entity)


class Repository(Generic[T]):
    """Storage operations for one record class.

    The record class supplies the kind and the document codec, so every
    repository shares the id, email and ancestor lookups below.
    """

    def __init__(self, store: Store, model: type[T]) -> None:
        if not model.KIND:
            raise InvalidArgumentError(f"{model.__name__} does not declare a kind")
        self.store = store
        self.model = model
        self.kind = model.KIND

    def _load(self, key: Key, document: dict) -> T:
        entity = self.model.from_document(document)
        entity.key = key
        return entity

    def _check_new(self, entity: T) -> None:
        if entity.key is not None:
            raise AlreadyStoredError(f"{self.kind} entity is already stored as {entity.key}")

    def add(self, entity: T, parent: Key | None = None) -> Key:
        """Insert entity under a fresh store-generated id, optionally below parent."""
        self._check_new(entity)
        key = self.store.put(Key(self.kind, parent=parent), entity.to_document())
        entity.key = key
        return key

    def add_if_absent(
        self,
        entity: T,
        parent: Key | None = None,
        *,
        filters: dict[str, Any] | None = None,
        conflict: type[ConflictError] = ConflictError,
    ) -> Key:
        """Insert entity unless a sibling under parent already matches filters.

        The check and the insert run as one store operation scoped to the
        parent's entity group.
        """
        self._check_new(entity)
        key = self.store.put_if_absent(
            Key(self.kind, parent=parent), entity.to_document(), filters=filters
        )
        if key is None:
            scope = f" under {parent}" if parent is not None else ""
            raise conflict(f"a matching {self.kind} entity already exists{scope}")
        entity.key = key
        return key

    def get(self, key: Key) -> Optional[T]:
        if key is None:
            raise InvalidArgumentError("key cannot be None")
        if key.kind != self.kind:
            raise InvalidArgumentError(f"key {key} is not a {self.kind} key")
        document = self.store.get(key)
        if document is None:
            return None
        return self._load(key, document)

    def get_by_id(self, encoded_id: str) -> Optional[T]:
        """Return the entity for an encoded id, or None when nothing is stored.

        Raises MalformedKeyError for ids that do not decode to a key of this kind.
        """
        key = Key.decode(encoded_id)
        if key.kind != self.kind:
            raise MalformedKeyError(f"id does not identify a {self.kind} entity")
        return self.get(key)

    def get_by_email(self, email: str) -> Optional[T]:
        if not email:
            raise InvalidArgumentError("email cannot be empty")
        rows = self.store.query(self.kind, filters={"email": email}, limit=2)
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning(f"Found more than one {self.kind} entity for {email}; using {rows[0][0]}.")
        return self._load(*rows[0])

    def get_by_ancestor_key(self, ancestor_key: Key | None) -> Optional[T]:
        if ancestor_key is None:
            raise InvalidArgumentError("ancestor key cannot be None")
        rows = self.store.query(self.kind, ancestor=ancestor_key, limit=1)
        return self._load(*rows[0]) if rows else None

    def list(
        self,
        ancestor: Key | None = None,
        parent: Key | None = None,
        filters: dict[str, Any] | None = None,
        order: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[Key], list[T]]:
        """Return parallel lists of keys and entities.

        ancestor matches every descendant; parent only direct children.
        """
        check_paging(offset, limit)
        rows = self.store.query(
            self.kind,
            ancestor=ancestor,
            parent=parent,
            filters=filters,
            order=order,
            offset=offset,
            limit=limit,
        )
        keys = [key for key, _ in rows]
        entities = [self._load(key, document) for key, document in rows]
        return keys, entities

    def update(self, key: Key, entity: T) -> Key:
        """Overwrite whatever is stored at key with entity."""
        if key is None:
            raise InvalidArgumentError("key cannot be None")
        if key.kind != self.kind:
            raise InvalidArgumentError(f"key {key} is not a {self.kind} key")
        key = self.store.put(key, entity.to_document())
        entity.key = key
        return key

    def delete(self, key: Key) -> None:
        if key is None:
            raise InvalidArgumentError("key cannot be None")
        self.store.delete(key)
