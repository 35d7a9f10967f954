# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Structured object store (SQLite).

Named collections of JSON records with a primary key and secondary indices:

  events      {id, events[], metadata, timestamp}          index: timestamp
  metadata    {id, value, timestamp}                         index: timestamp
  pr_details  {id=detail url, ..., cached_at_ms}            index: cached_at_ms, repo_full_name

Each collection is one table: `id TEXT PRIMARY KEY, record TEXT` plus one column per indexed
record field. The schema version lives in `PRAGMA user_version`; opening a database with an
older version creates whatever tables/indices are missing and never touches existing rows.

`init()` is idempotent and lazily invoked by every other method. When SQLite cannot be used
(disabled by config, unwritable path, corrupt file), every method raises
StructuredStorageUnavailable and callers fall back to the flat store.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..common_types import StructuredStorageUnavailable

_logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

EVENTS_COLLECTION = "events"
METADATA_COLLECTION = "metadata"
PR_DETAILS_COLLECTION = "pr_details"

# collection -> indexed record fields (name, SQL type)
COLLECTIONS: Dict[str, Tuple[Tuple[str, str], ...]] = {
    EVENTS_COLLECTION: (("timestamp", "INTEGER"),),
    METADATA_COLLECTION: (("timestamp", "INTEGER"),),
    PR_DETAILS_COLLECTION: (("cached_at_ms", "INTEGER"), ("repo_full_name", "TEXT")),
}


class StructuredStore:
    """Versioned, transactional record store over one SQLite file."""

    def __init__(self, db_path: Optional[Path], *, enabled: bool = True, schema_version: int = SCHEMA_VERSION):
        self.db_path = Path(db_path) if db_path is not None else None
        self.enabled = bool(enabled)
        self.schema_version = int(schema_version)
        self._mu = Lock()
        self._conn: Optional[sqlite3.Connection] = None
        self._init_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_supported(self) -> bool:
        """True if the structured tier can be opened (opens it on first call)."""
        try:
            self.init()
            return True
        except StructuredStorageUnavailable:
            return False

    def init(self) -> None:
        with self._mu:
            self._init_locked()

    def _init_locked(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn
        if self._init_error is not None:
            raise StructuredStorageUnavailable(self._init_error)
        if not self.enabled or self.db_path is None:
            self._init_error = "structured storage disabled"
            raise StructuredStorageUnavailable(self._init_error)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), timeout=30.0, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            cur = conn.cursor()
            cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute("PRAGMA synchronous=NORMAL;")
            self._upgrade(conn)
        except (sqlite3.Error, OSError) as e:
            self._init_error = f"failed to open {self.db_path}: {e}"
            _logger.warning("Structured storage unavailable: %s", self._init_error)
            raise StructuredStorageUnavailable(self._init_error) from e
        self._conn = conn
        return conn

    def _upgrade(self, conn: sqlite3.Connection) -> None:
        current = int(conn.execute("PRAGMA user_version;").fetchone()[0] or 0)
        if current >= self.schema_version:
            return
        _logger.info("Upgrading structured store %s: schema v%d -> v%d", self.db_path, current, self.schema_version)
        with conn:
            for name, indexed in COLLECTIONS.items():
                cols = "".join(f", {col} {typ}" for (col, typ) in indexed)
                conn.execute(f"CREATE TABLE IF NOT EXISTS {name} (id TEXT PRIMARY KEY, record TEXT NOT NULL{cols});")
                existing = {row[1] for row in conn.execute(f"PRAGMA table_info({name});").fetchall()}
                for col, typ in indexed:
                    if col not in existing:
                        conn.execute(f"ALTER TABLE {name} ADD COLUMN {col} {typ};")
                    conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{name}_{col} ON {name}({col});")
            conn.execute(f"PRAGMA user_version = {int(self.schema_version)};")

    def close(self) -> None:
        with self._mu:
            if self._conn is not None:
                try:
                    self._conn.close()
                except sqlite3.Error:
                    pass
                self._conn = None

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    @staticmethod
    def _check_collection(collection: str) -> Tuple[Tuple[str, str], ...]:
        if collection not in COLLECTIONS:
            raise KeyError(f"unknown collection: {collection}")
        return COLLECTIONS[collection]

    def _row_values(self, collection: str, record: Dict[str, Any]) -> Tuple[List[str], List[Any]]:
        indexed = self._check_collection(collection)
        if "id" not in record:
            raise ValueError(f"record for {collection} has no id")
        cols = ["id", "record"] + [c for (c, _t) in indexed]
        vals: List[Any] = [str(record["id"]), json.dumps(record, separators=(",", ":"))]
        vals.extend(record.get(c) for (c, _t) in indexed)
        return cols, vals

    def _execute(self, fn):
        with self._mu:
            conn = self._init_locked()
            try:
                return fn(conn)
            except sqlite3.Error as e:
                raise StructuredStorageUnavailable(f"sqlite error on {self.db_path}: {e}") from e

    def put(self, collection: str, record: Dict[str, Any]) -> None:
        self.put_many([(collection, record)])

    def put_many(self, writes: Iterable[Tuple[str, Dict[str, Any]]]) -> None:
        """Write several records in one transaction (all or nothing)."""
        rows = [(c, *self._row_values(c, r)) for (c, r) in writes]

        def _do(conn: sqlite3.Connection) -> None:
            with conn:
                for collection, cols, vals in rows:
                    marks = ", ".join("?" for _ in cols)
                    conn.execute(
                        f"INSERT OR REPLACE INTO {collection} ({', '.join(cols)}) VALUES ({marks});",
                        vals,
                    )

        self._execute(_do)

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        self._check_collection(collection)

        def _do(conn: sqlite3.Connection) -> Optional[Dict[str, Any]]:
            row = conn.execute(f"SELECT record FROM {collection} WHERE id = ?;", (str(key),)).fetchone()
            return _decode(row["record"]) if row is not None else None

        return self._execute(_do)

    def get_all(self, collection: str) -> List[Dict[str, Any]]:
        self._check_collection(collection)

        def _do(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
            rows = conn.execute(f"SELECT record FROM {collection} ORDER BY id;").fetchall()
            return [r for r in (_decode(row["record"]) for row in rows) if r is not None]

        return self._execute(_do)

    def get_by_index(self, collection: str, index: str, value: Any) -> List[Dict[str, Any]]:
        indexed = {c for (c, _t) in self._check_collection(collection)}
        if index not in indexed:
            raise KeyError(f"{collection} has no index {index}")

        def _do(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
            rows = conn.execute(f"SELECT record FROM {collection} WHERE {index} = ?;", (value,)).fetchall()
            return [r for r in (_decode(row["record"]) for row in rows) if r is not None]

        return self._execute(_do)

    def count(self, collection: str) -> int:
        self._check_collection(collection)
        return int(self._execute(lambda conn: conn.execute(f"SELECT COUNT(*) FROM {collection};").fetchone()[0]))

    def size_bytes(self, collections: Iterable[str]) -> int:
        """Serialized size of all records in the given collections."""
        names = list(collections)
        for name in names:
            self._check_collection(name)

        def _do(conn: sqlite3.Connection) -> int:
            total = 0
            for name in names:
                total += int(conn.execute(f"SELECT COALESCE(SUM(LENGTH(record)), 0) FROM {name};").fetchone()[0])
            return total

        return self._execute(_do)

    def delete(self, collection: str, key: str) -> None:
        self._check_collection(collection)

        def _do(conn: sqlite3.Connection) -> None:
            with conn:
                conn.execute(f"DELETE FROM {collection} WHERE id = ?;", (str(key),))

        self._execute(_do)

    def clear(self, collections: Iterable[str]) -> None:
        """Empty the given collections in one transaction."""
        names = list(collections)
        for name in names:
            self._check_collection(name)

        def _do(conn: sqlite3.Connection) -> None:
            with conn:
                for name in names:
                    conn.execute(f"DELETE FROM {name};")

        self._execute(_do)


def _decode(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    try:
        val = json.loads(raw or "null")
    except ValueError:
        _logger.warning("Skipping corrupt structured record")
        return None
    return val if isinstance(val, dict) else None


def now_ms() -> int:
    return int(time.time() * 1000)
