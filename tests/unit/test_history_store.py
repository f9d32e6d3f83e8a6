from __future__ import annotations

import json
from contextlib import contextmanager

import psycopg2
import pytest

from portfolio_snapshot.db.history_store import (
    HistoryStoreError,
    JsonFileHistoryStore,
    PostgresHistoryStore,
    open_history_store,
)
from portfolio_snapshot.models.config_models import HistoryConfig
from portfolio_snapshot.services.history import HistoryLog

SNAPSHOT_LOG = HistoryLog("snapshot", "date", 3)
DEPT_LOG = HistoryLog("dept", "month", 24, baseline=({"month": "2025-12", "experiences": 10},))


class DummyCursor:
    def __init__(self, stored: list[dict] | None = None) -> None:
        self.queries: list[tuple[str, tuple | None]] = []
        self.inserted: list[tuple] = []
        self.stored = stored or []

    def execute(self, sql, params=None):
        self.queries.append((sql, params))

    def fetchall(self):
        return [(json.dumps(e),) for e in self.stored]


# execute_values を差し替えて psycopg2 の実接続なしでロジックを検証
@pytest.fixture(autouse=True)
def patch_execute_values(monkeypatch):
    import portfolio_snapshot.db.history_store as hs

    def fake_execute_values(cursor, sql, rows, page_size=100, template=None):  # noqa: D401
        cursor.queries.append((sql, None))
        cursor.inserted.extend(rows)

    monkeypatch.setattr(hs, "execute_values", fake_execute_values)
    return fake_execute_values


def _connect(cursor):
    @contextmanager
    def _cm():
        yield cursor

    return _cm


def test_file_store_roundtrip(tmp_path):
    store = JsonFileHistoryStore(tmp_path / "history")
    assert store.get_history(SNAPSHOT_LOG) == []
    store.append_history(SNAPSHOT_LOG, {"date": "2026-01-05", "v": 1})
    merged = store.append_history(SNAPSHOT_LOG, {"date": "2026-01-12", "v": 2})
    assert [e["date"] for e in merged] == ["2026-01-05", "2026-01-12"]
    on_disk = json.loads((tmp_path / "history" / "snapshot.json").read_text(encoding="utf-8"))
    assert on_disk == merged
    assert store.get_history(SNAPSHOT_LOG) == merged


def test_file_store_caps_and_replaces(tmp_path):
    store = JsonFileHistoryStore(tmp_path)
    for day in ("01", "02", "03", "04"):
        store.append_history(SNAPSHOT_LOG, {"date": f"2026-01-{day}", "v": 0})
    merged = store.append_history(SNAPSHOT_LOG, {"date": "2026-01-04", "v": 9})
    assert [(e["date"], e["v"]) for e in merged] == [("2026-01-02", 0), ("2026-01-03", 0), ("2026-01-04", 9)]
    # 一時ファイルが残らない
    assert sorted(p.name for p in tmp_path.iterdir()) == ["snapshot.json"]


def test_file_store_seeds_baseline(tmp_path):
    store = JsonFileHistoryStore(tmp_path)
    assert store.get_history(DEPT_LOG) == [{"month": "2025-12", "experiences": 10}]
    merged = store.append_history(DEPT_LOG, {"month": "2026-01", "experiences": 12})
    assert [e["month"] for e in merged] == ["2025-12", "2026-01"]


def test_file_store_rejects_corrupt_file(tmp_path):
    (tmp_path / "snapshot.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(HistoryStoreError):
        JsonFileHistoryStore(tmp_path).get_history(SNAPSHOT_LOG)
    (tmp_path / "snapshot.json").write_text('{"date": "x"}', encoding="utf-8")
    with pytest.raises(HistoryStoreError):
        JsonFileHistoryStore(tmp_path).get_history(SNAPSHOT_LOG)


def test_postgres_store_append_rewrites_log():
    cur = DummyCursor(stored=[{"date": "2026-01-05", "v": 1}])
    store = PostgresHistoryStore(_connect(cur))
    merged = store.append_history(SNAPSHOT_LOG, {"date": "2026-01-12", "v": 2})
    assert [e["date"] for e in merged] == ["2026-01-05", "2026-01-12"]
    sqls = [q[0] for q in cur.queries]
    assert sqls[0].startswith("SELECT payload FROM history_entries")
    assert sqls[1].startswith("DELETE FROM history_entries")
    assert sqls[2].startswith("INSERT INTO history_entries")
    assert cur.queries[1][1] == ("snapshot",)
    assert [(row[0], row[1]) for row in cur.inserted] == [("snapshot", "2026-01-05"), ("snapshot", "2026-01-12")]


def test_postgres_store_get_history_decodes_payloads():
    cur = DummyCursor(stored=[{"month": "2026-01", "experiences": 11}])
    store = PostgresHistoryStore(_connect(cur))
    assert store.get_history(DEPT_LOG) == [
        {"month": "2025-12", "experiences": 10},
        {"month": "2026-01", "experiences": 11},
    ]


def test_postgres_store_ensure_schema():
    cur = DummyCursor()
    PostgresHistoryStore(_connect(cur)).ensure_schema()
    assert "CREATE TABLE IF NOT EXISTS history_entries" in cur.queries[0][0]


def test_postgres_errors_are_wrapped():
    class FailingCursor(DummyCursor):
        def execute(self, sql, params=None):
            raise psycopg2.OperationalError("connection lost")

    store = PostgresHistoryStore(_connect(FailingCursor()))
    with pytest.raises(HistoryStoreError, match="connection lost"):
        store.get_history(SNAPSHOT_LOG)
    with pytest.raises(HistoryStoreError):
        store.append_history(SNAPSHOT_LOG, {"date": "2026-01-01"})


def test_open_history_store(tmp_path):
    store, logs = open_history_store(HistoryConfig(backend="file", directory=str(tmp_path), caps={"snapshot": 7}))
    assert isinstance(store, JsonFileHistoryStore)
    assert logs["snapshot"].cap == 7

    pg, _ = open_history_store(HistoryConfig(backend="postgres", dsn="postgresql://localhost/db"))
    assert isinstance(pg, PostgresHistoryStore)

    with pytest.raises(HistoryStoreError):
        open_history_store(HistoryConfig(backend="postgres"))
