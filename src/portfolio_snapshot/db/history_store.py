from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol

import psycopg2
from psycopg2.extras import Json, execute_values

from ..models.config_models import HistoryConfig
from ..services.history import HistoryLog, history_logs, merge_history, with_baseline

"""History persistence.

Two stores share the read-modify-write contract:

- JsonFileHistoryStore: one ``<log>.json`` list per log under a directory
- PostgresHistoryStore: one ``history_entries`` row per entry (JSONB payload)

Merge policy (replace same key, sort, cap, baseline) lives in
services.history; stores only load and persist the resulting list.
"""

__all__ = [
    "HistoryStoreError",
    "HistoryStore",
    "JsonFileHistoryStore",
    "PostgresHistoryStore",
    "open_history_store",
]

logger = logging.getLogger(__name__)

TABLE = "history_entries"

CREATE_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE} (
    log_name   TEXT NOT NULL,
    entry_key  TEXT NOT NULL,
    payload    JSONB NOT NULL,
    PRIMARY KEY (log_name, entry_key)
)
"""


class HistoryStoreError(Exception):
    pass


class HistoryStore(Protocol):
    def get_history(self, log: HistoryLog) -> list[dict[str, Any]]: ...

    def append_history(self, log: HistoryLog, entry: Mapping[str, Any]) -> list[dict[str, Any]]: ...


class JsonFileHistoryStore:
    """Directory of JSON list files, written atomically (temp file + replace)."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, log: HistoryLog) -> Path:
        return self.directory / f"{log.name}.json"

    def _load(self, log: HistoryLog) -> list[dict[str, Any]]:
        path = self._path(log)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise HistoryStoreError(f"failed reading history {path}: {e}") from e
        if not isinstance(data, list):
            raise HistoryStoreError(f"history file {path} is not a JSON list")
        return data

    def get_history(self, log: HistoryLog) -> list[dict[str, Any]]:
        return with_baseline(self._load(log), log)

    def append_history(self, log: HistoryLog, entry: Mapping[str, Any]) -> list[dict[str, Any]]:
        merged = merge_history(self.get_history(log), entry, log)
        path = self._path(log)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{log.name}-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(merged, fh, ensure_ascii=False, indent=2)
            os.replace(tmp, path)
        except OSError as e:
            raise HistoryStoreError(f"failed writing history {path}: {e}") from e
        logger.debug("history written log=%s entries=%d path=%s", log.name, len(merged), path)
        return merged


class PostgresHistoryStore:
    """JSONB rows keyed by (log_name, entry_key).

    ``connect`` returns a context manager yielding a cursor; the append runs
    DELETE + execute_values inside that one transaction.
    """

    def __init__(self, connect: Callable[[], Any]):
        self._connect = connect

    def ensure_schema(self) -> None:
        with self._connect() as cur:
            cur.execute(CREATE_TABLE_SQL)

    def _load(self, cur: Any, log: HistoryLog) -> list[dict[str, Any]]:
        cur.execute(
            f"SELECT payload FROM {TABLE} WHERE log_name = %s ORDER BY entry_key",
            (log.name,),
        )
        return [row[0] if isinstance(row[0], dict) else json.loads(row[0]) for row in cur.fetchall()]

    def get_history(self, log: HistoryLog) -> list[dict[str, Any]]:
        try:
            with self._connect() as cur:
                return with_baseline(self._load(cur, log), log)
        except psycopg2.Error as e:
            raise HistoryStoreError(f"failed reading history {log.name}: {e}") from e

    def append_history(self, log: HistoryLog, entry: Mapping[str, Any]) -> list[dict[str, Any]]:
        try:
            with self._connect() as cur:
                merged = merge_history(with_baseline(self._load(cur, log), log), entry, log)
                cur.execute(f"DELETE FROM {TABLE} WHERE log_name = %s", (log.name,))
                execute_values(
                    cur,
                    f"INSERT INTO {TABLE} (log_name, entry_key, payload) VALUES %s",
                    [(log.name, str(e[log.key]), Json(e)) for e in merged],
                )
        except psycopg2.Error as e:
            raise HistoryStoreError(f"failed writing history {log.name}: {e}") from e
        logger.debug("history written log=%s entries=%d table=%s", log.name, len(merged), TABLE)
        return merged


@contextmanager
def _pg_cursor(dsn: str) -> Iterator[Any]:
    conn = psycopg2.connect(dsn)
    try:
        with conn:  # commit / rollback
            with conn.cursor() as cur:
                yield cur
    finally:
        conn.close()


def open_history_store(config: HistoryConfig) -> tuple[HistoryStore, dict[str, HistoryLog]]:
    """Store + log definitions for the configured backend."""
    logs = history_logs(config.caps, config.baselines)
    if config.backend == "postgres":
        if not config.dsn:
            raise HistoryStoreError("history backend 'postgres' requires a dsn (HISTORY_DSN / DATABASE_URL)")
        dsn = config.dsn
        return PostgresHistoryStore(lambda: _pg_cursor(dsn)), logs
    return JsonFileHistoryStore(config.directory), logs
