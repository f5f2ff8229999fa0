"""Hierarchical storage keys.

A key names one stored record by its kind and store-assigned id, optionally
under a parent key. The chain of parents forms the record's entity group and
is what ancestor queries match against.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidArgumentError, MalformedKeyError


@dataclass(frozen=True)
class Key:
    kind: str
    id: Optional[int] = None
    parent: Optional["Key"] = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, str) or not self.kind.strip():
            raise InvalidArgumentError("key kind cannot be empty")
        if self.id is not None:
            if isinstance(self.id, bool) or not isinstance(self.id, int) or self.id <= 0:
                raise InvalidArgumentError(f"key id must be a positive integer, got {self.id!r}")
        if self.parent is not None and self.parent.incomplete:
            raise InvalidArgumentError("parent key must be complete")

    @property
    def incomplete(self) -> bool:
        """Return True until the store assigns an id."""
        return self.id is None

    def with_id(self, key_id: int) -> Key:
        return Key(self.kind, key_id, self.parent)

    def ancestors(self) -> list[Key]:
        """Return the parent chain, nearest parent first."""
        chain: list[Key] = []
        current = self.parent
        while current is not None:
            chain.append(current)
            current = current.parent
        return chain

    def root(self) -> Key:
        """Return the top-level key of this key's entity group."""
        chain = self.ancestors()
        return chain[-1] if chain else self

    def has_ancestor(self, other: Key) -> bool:
        """Return True when other is this key or one of its ancestors."""
        return other == self or other in self.ancestors()

    def path(self) -> list[list]:
        """Return the root-first [kind, id] pairs naming this key."""
        pairs = [[key.kind, key.id] for key in reversed(self.ancestors())]
        pairs.append([self.kind, self.id])
        return pairs

    def encode(self) -> str:
        """Return an opaque, URL-safe identifier for this key."""
        if self.incomplete:
            raise InvalidArgumentError(f"cannot encode incomplete {self.kind} key")
        raw = json.dumps(self.path(), separators=(",", ":")).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    @classmethod
    def decode(cls, encoded: str | None) -> Key:
        """Parse an identifier produced by encode()."""
        text = (encoded or "").strip()
        if not text:
            raise MalformedKeyError("encoded key cannot be empty")
        try:
            raw = base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
            path = json.loads(raw.decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise MalformedKeyError(f"invalid encoded key {text!r}") from exc

        if not isinstance(path, list) or not path:
            raise MalformedKeyError(f"invalid encoded key {text!r}")
        key: Key | None = None
        for element in path:
            if not isinstance(element, list) or len(element) != 2:
                raise MalformedKeyError(f"invalid encoded key {text!r}")
            kind, key_id = element
            if not isinstance(kind, str) or not isinstance(key_id, int) or isinstance(key_id, bool):
                raise MalformedKeyError(f"invalid encoded key {text!r}")
            try:
                key = cls(kind, key_id, key)
            except InvalidArgumentError as exc:
                raise MalformedKeyError(f"invalid encoded key {text!r}") from exc
        return key

    def __str__(self) -> str:
        return "/".join(f"{kind}:{key_id if key_id is not None else '?'}" for kind, key_id in self.path())
