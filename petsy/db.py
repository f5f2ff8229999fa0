"""PostgreSQL document store.

Every record lives in one ``entities`` table as a JSONB document, addressed by
its encoded key. The encoded keys of a record's ancestors are kept in an
array column so ancestor queries stay a single indexed lookup.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

try:
    import psycopg
    from psycopg.types.json import Json
except ModuleNotFoundError as exc:  # Optional dependency for the Postgres backend
    psycopg = None
    Json = None
    _PSYCOPG_IMPORT_ERROR = exc
else:
    _PSYCOPG_IMPORT_ERROR = None

from .errors import InvalidArgumentError
from .keys import Key
from .store import check_paging, parse_order, require_complete

logger = logging.getLogger(__name__)


def _require_psycopg() -> None:
    if psycopg is None:
        raise ModuleNotFoundError(
            "psycopg is required for the postgres store. Install it or set PETSY_STORE=memory."
        ) from _PSYCOPG_IMPORT_ERROR


def _get_pg_config() -> dict[str, str | int]:
    return {
        "host": os.environ.get("PGHOST", "localhost"),
        "port": int(os.environ.get("PGPORT", "5432")),
        "user": os.environ.get("PGUSER", "postgres"),
        "password": os.environ.get("PGPASSWORD", "postgres"),
        "dbname": os.environ.get("PGDATABASE", "petsy"),
    }


def get_connection() -> psycopg.Connection:
    _require_psycopg()
    cfg = _get_pg_config()
    try:
        return psycopg.connect(**cfg)
    except psycopg.OperationalError as exc:
        message = str(exc).lower()
        if cfg["host"] != "postgres" or not (
            "resolve host" in message
            or "getaddrinfo" in message
            or "name or service not known" in message
        ):
            raise

        # The compose service name only resolves inside the container network.
        for host in ("localhost", "127.0.0.1"):
            try:
                return psycopg.connect(**{**cfg, "host": host})
            except psycopg.OperationalError:
                continue
        raise


def ensure_schema(conn: psycopg.Connection) -> None:
    with conn.cursor() as cur:
        cur.execute("""
            CREATE SEQUENCE IF NOT EXISTS entity_id_seq;
            """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS entities (
                key TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                id BIGINT NOT NULL,
                parent_key TEXT,
                ancestors TEXT[] NOT NULL DEFAULT '{}',
                data JSONB NOT NULL,
                updated_at_utc TIMESTAMPTZ NOT NULL
            );
            """)
        cur.execute("""
            CREATE INDEX IF NOT EXISTS idx_entities_kind_id
            ON entities (kind, id);
            """)
        cur.execute("""
            CREATE INDEX IF NOT EXISTS idx_entities_parent
            ON entities (parent_key, kind);
            """)
        cur.execute("""
            CREATE INDEX IF NOT EXISTS idx_entities_ancestors
            ON entities USING GIN (ancestors);
            """)
        cur.execute("""
            CREATE INDEX IF NOT EXISTS idx_entities_data
            ON entities USING GIN (data jsonb_path_ops);
            """)
    conn.commit()


def _ancestor_keys(key: Key) -> list[str]:
    return [ancestor.encode() for ancestor in key.ancestors()]


def _where_clause(
    kind: str,
    ancestor: Key | None,
    filters: dict[str, Any] | None,
    parent: Key | None = None,
) -> tuple[str, list]:
    clauses = ["kind = %s"]
    params: list = [kind]
    if ancestor is not None:
        # Ancestor queries also match the ancestor itself.
        clauses.append("(key = %s OR %s = ANY(ancestors))")
        encoded = require_complete(ancestor).encode()
        params.extend([encoded, encoded])
    if parent is not None:
        clauses.append("parent_key = %s")
        params.append(require_complete(parent).encode())
    if filters:
        clauses.append("data @> %s")
        params.append(Json(filters))
    return " AND ".join(clauses), params


class PostgresStore:
    """Store adapter backed by the ``entities`` table."""

    def __init__(
        self,
        connection_factory: Callable = get_connection,
        ensure_schema_fn: Callable = ensure_schema,
    ) -> None:
        self._connection_factory = connection_factory
        self._ensure_schema_fn = ensure_schema_fn

    def _insert(self, cur, key: Key, document: dict) -> Key:
        if key.incomplete:
            cur.execute("SELECT nextval('entity_id_seq');")
            (next_id,) = cur.fetchone()
            key = key.with_id(int(next_id))
        cur.execute(
            """
            INSERT INTO entities (key, kind, id, parent_key, ancestors, data, updated_at_utc)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (key) DO UPDATE
                SET data = EXCLUDED.data,
                    updated_at_utc = EXCLUDED.updated_at_utc;
            """,
            (
                key.encode(),
                key.kind,
                key.id,
                key.parent.encode() if key.parent is not None else None,
                _ancestor_keys(key),
                Json(document),
                datetime.now(timezone.utc),
            ),
        )
        return key

    def put(self, key: Key, document: dict) -> Key:
        _require_psycopg()
        if key is None:
            raise InvalidArgumentError("key cannot be None")
        with self._connection_factory() as conn:
            self._ensure_schema_fn(conn)
            with conn.cursor() as cur:
                key = self._insert(cur, key, document)
            conn.commit()
        return key

    def get(self, key: Key) -> Optional[dict]:
        _require_psycopg()
        encoded = require_complete(key).encode()
        with self._connection_factory() as conn:
            self._ensure_schema_fn(conn)
            with conn.cursor() as cur:
                cur.execute("SELECT data FROM entities WHERE key = %s;", (encoded,))
                row = cur.fetchone()
        return row[0] if row else None

    def get_multi(self, keys: Iterable[Key]) -> list[Optional[dict]]:
        _require_psycopg()
        encoded = [require_complete(key).encode() for key in keys]
        if not encoded:
            return []
        with self._connection_factory() as conn:
            self._ensure_schema_fn(conn)
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT key, data FROM entities WHERE key = ANY(%s);",
                    (list(set(encoded)),),
                )
                found = {row[0]: row[1] for row in cur.fetchall()}
        return [found.get(item) for item in encoded]

    def delete(self, key: Key) -> None:
        self.delete_multi([key])

    def delete_multi(self, keys: Iterable[Key]) -> None:
        _require_psycopg()
        encoded = [require_complete(key).encode() for key in keys]
        if not encoded:
            return
        with self._connection_factory() as conn:
            self._ensure_schema_fn(conn)
            with conn.cursor() as cur:
                cur.execute("DELETE FROM entities WHERE key = ANY(%s);", (encoded,))
            conn.commit()

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
        _require_psycopg()
        order_field, descending = parse_order(order)
        check_paging(offset, limit)
        where, params = _where_clause(kind, ancestor, filters, parent)
        order_by = "id ASC"
        if order_field is not None:
            direction = "DESC NULLS LAST" if descending else "ASC NULLS FIRST"
            order_by = f"data->>%s {direction}, id ASC"
            params.append(order_field)
        params.extend([limit, offset])
        with self._connection_factory() as conn:
            self._ensure_schema_fn(conn)
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT key, data
                    FROM entities
                    WHERE {where}
                    ORDER BY {order_by}
                    LIMIT %s
                    OFFSET %s;
                    """,
                    params,
                )
                rows = cur.fetchall()
        return [(Key.decode(row[0]), row[1]) for row in rows]

    def put_if_absent(
        self, key: Key, document: dict, *, filters: dict[str, Any] | None = None
    ) -> Optional[Key]:
        _require_psycopg()
        if key is None:
            raise InvalidArgumentError("key cannot be None")
        group = key.parent.encode() if key.parent is not None else ""
        where, params = _where_clause(key.kind, key.parent, filters)
        with self._connection_factory() as conn:
            self._ensure_schema_fn(conn)
            with conn.cursor() as cur:
                # Serializes check-then-insert per kind and entity group.
                cur.execute(
                    "SELECT pg_advisory_xact_lock(hashtext(%s));",
                    (f"{key.kind}:{group}",),
                )
                cur.execute(f"SELECT key FROM entities WHERE {where} LIMIT 1;", params)
                existing = cur.fetchone()
                if existing:
                    conn.commit()
                    logger.debug(f"Skipped {key.kind} insert: {existing[0]} already matches.")
                    return None
                key = self._insert(cur, key, document)
            conn.commit()
        return key
