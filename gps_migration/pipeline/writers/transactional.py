"""Idempotent writer for the transactional store (Supabase Postgres).

Every write is keyed by the destination's natural key: when a row with the
same key already exists its id is returned and nothing is inserted, so a
stage can be re-run after an interruption without duplicating data. The
connection runs in autocommit mode; no transaction spans more than one record.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping

import psycopg
from psycopg.types.json import Jsonb

from gps_migration.pipeline.errors import RecordWriteError


logger = logging.getLogger("gps_migration.pipeline.writers.transactional")

_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

# Natural key columns per destination table.
NATURAL_KEYS: dict[str, tuple[str, ...]] = {
    "users": ("email",),
    "speakers": ("slug",),
    "events": ("slug",),
    "ticket_types": ("event_id", "name"),
    "event_schedules": ("event_id", "schedule_date"),
    "seminars": ("slug",),
    "seminar_sessions": ("seminar_id", "session_number"),
    "seminar_registrations": ("user_id", "seminar_id"),
    "seminar_attendance": ("registration_id", "session_id"),
    "orders": ("order_number",),
    "order_items": ("order_id", "event_id", "seminar_id", "ticket_type_id", "item_type"),
    "tickets": ("ticket_code",),
    "attendance": ("ticket_id",),
    "ce_ledger": ("user_id", "event_id", "transaction_type", "awarded_at"),
    "certificates": ("user_id", "event_id"),
    "waitlist": ("event_id", "email"),
    "seminar_waitlist": ("seminar_id", "email"),
    "event_speakers": ("event_id", "speaker_id"),
    "user_migration_map": ("wp_user_id",),
}

# JSONB columns; other list values are sent as Postgres arrays.
JSON_COLUMNS: dict[str, frozenset[str]] = {
    "events": frozenset({"schedule_topics"}),
    "event_schedules": frozenset({"topics"}),
    "speakers": frozenset({"social_links"}),
    "orders": frozenset({"billing_address"}),
    "tickets": frozenset({"qr_code_data"}),
}


@dataclass(frozen=True)
class WriteResult:
    id: str
    created: bool


def _ident(name: str) -> str:
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"invalid identifier: {name!r}")
    return name


def _adapt(table: str, column: str, value: Any) -> Any:
    if value is not None and column in JSON_COLUMNS.get(table, ()):
        return Jsonb(list(value) if isinstance(value, tuple) else value)
    if isinstance(value, tuple):
        return list(value)
    return value


class TransactionalWriter:
    """Natural-key upsert helper on top of a psycopg connection."""

    def __init__(self, conn: "psycopg.Connection") -> None:
        self._conn = conn

    @classmethod
    def connect(cls, dsn: str) -> "TransactionalWriter":
        conn = psycopg.connect(dsn, autocommit=True)
        return cls(conn)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "TransactionalWriter":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # --- statements -------------------------------------------------------------------

    def _key_for(self, table: str, values: Mapping[str, Any]) -> dict[str, Any]:
        try:
            columns = NATURAL_KEYS[table]
        except KeyError:
            raise ValueError(f"no natural key declared for table {table!r}") from None
        return {column: values.get(column) for column in columns}

    def find(
        self,
        table: str,
        key: Mapping[str, Any],
        *,
        returning: str = "id",
        occurrence: int | None = None,
    ) -> str | None:
        """Return the id of a row matching `key`.

        With `occurrence`, rows sharing the key are ordered by `returning` and
        the n-th one (0-based) is returned, so repeated keys map one-to-one.
        """
        where = " and ".join(f"{_ident(column)} is not distinct from %s" for column in key)
        sql = f"select {_ident(returning)}::text from public.{_ident(table)} where {where}"
        params = [_adapt(table, column, value) for column, value in key.items()]
        if occurrence is None:
            sql += " limit 1"
        else:
            sql += f" order by {_ident(returning)} limit 1 offset %s"
            params.append(occurrence)
        with self._conn.cursor() as cur:  # type: ignore[attr-defined]
            cur.execute(sql, tuple(params))
            row = cur.fetchone()
        return None if row is None else str(row[0])

    def _insert(self, table: str, values: Mapping[str, Any], *, returning: str | None) -> str | None:
        columns = ", ".join(_ident(column) for column in values)
        placeholders = ", ".join(["%s"] * len(values))
        sql = f"insert into public.{_ident(table)} ({columns}) values ({placeholders})"
        if returning:
            sql += f" returning {_ident(returning)}::text"
        try:
            with self._conn.cursor() as cur:  # type: ignore[attr-defined]
                cur.execute(sql, tuple(_adapt(table, column, value) for column, value in values.items()))
                row = cur.fetchone() if returning else None
        except (psycopg.IntegrityError, psycopg.DataError) as exc:
            raise RecordWriteError(str(exc).strip(), target=table) from exc
        if returning:
            if row is None:
                raise RecordWriteError("insert returned no id", target=table)
            return str(row[0])
        return None

    # --- public API ----------------------------------------------------------------------

    def write(self, table: str, values: Mapping[str, Any], *, occurrence: int | None = None) -> WriteResult:
        """Insert `values` unless a row with the same natural key exists.

        Returns the id of the existing or inserted row. Constraint and data
        errors raise `RecordWriteError`; connection errors propagate unchanged.
        Pass `occurrence` when one parent legitimately holds several rows with
        the same key (order lines); the n-th record then matches the n-th row.
        """
        key = self._key_for(table, values)
        existing = self.find(table, key, occurrence=occurrence)
        if existing is not None:
            logger.debug("%s %s already present as %s", table, key, existing)
            return WriteResult(id=existing, created=False)
        new_id = self._insert(table, values, returning="id")
        return WriteResult(id=new_id or "", created=True)

    def link(self, table: str, values: Mapping[str, Any]) -> bool:
        """Insert an id-less link row (e.g. event_speakers) once; returns True when inserted."""
        key = self._key_for(table, values)
        first_column = next(iter(key))
        if self.find(table, key, returning=first_column) is not None:
            return False
        self._insert(table, values, returning=None)
        return True


__all__ = ["NATURAL_KEYS", "TransactionalWriter", "WriteResult"]
