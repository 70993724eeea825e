"""
Shared fixtures: an in-memory stand-in for psycopg connections.

Queries that return rows (SELECT ... / ... RETURNING) consume the next entry
from the scripted results; INSERT/UPDATE statements without RETURNING don't.
"""
from contextlib import contextmanager, nullcontext
from types import SimpleNamespace

import pytest


class FakeCursor:
    def __init__(self, results):
        self.results = list(results)
        self.executed = []
        self.description = None
        self._rows = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        normalized = " ".join(sql.split())
        self.executed.append((normalized, params))
        upper = normalized.upper()
        if not (upper.startswith("SELECT") or "RETURNING" in upper):
            self._rows = []
            return
        rows = list(self.results.pop(0) or []) if self.results else []
        if rows and isinstance(rows[0], dict):
            self.description = [SimpleNamespace(name=k) for k in rows[0]]
            rows = [tuple(r.values()) for r in rows]
        self._rows = rows

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def statements(self, prefix):
        return [(sql, params) for sql, params in self.executed if sql.upper().startswith(prefix)]


class FakeConn:
    def __init__(self, cursor):
        self._cursor = cursor

    def cursor(self):
        return self._cursor

    def transaction(self):
        return nullcontext()


@pytest.fixture
def fake_db(monkeypatch):
    """
    Usage:
        cur = fake_db(pricing, [[recruit_row], [], config_rows])
    """
    def install(module, results):
        cursor = FakeCursor(results)

        @contextmanager
        def fake_get_conn():
            yield FakeConn(cursor)

        monkeypatch.setattr(module, "get_conn", fake_get_conn)
        return cursor

    return install
