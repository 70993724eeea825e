import os
import psycopg
from psycopg.types.json import Jsonb
from psycopg.types.numeric import FloatLoader
from contextlib import contextmanager
from typing import Iterator

DB_CONNECT_TIMEOUT = int(os.getenv("DB_CONNECT_TIMEOUT", "10"))


def get_database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL must be set")
    return url


@contextmanager
def get_conn() -> Iterator[psycopg.Connection]:
    """Autocommit connection; wrap multi-statement writes in conn.transaction()."""
    conn = psycopg.connect(get_database_url(), autocommit=True, connect_timeout=DB_CONNECT_TIMEOUT)
    # NUMERIC money/volume columns come back as float, not Decimal
    conn.adapters.register_loader("numeric", FloatLoader)
    try:
        yield conn
    finally:
        conn.close()


def _column_names(cur) -> list[str]:
    return [col.name for col in cur.description]


def fetchone_dict(cur) -> dict | None:
    row = cur.fetchone()
    return dict(zip(_column_names(cur), row)) if row is not None else None


def fetchall_dicts(cur) -> list[dict]:
    rows = cur.fetchall()
    if not rows:
        return []
    names = _column_names(cur)
    return [dict(zip(names, row)) for row in rows]


def as_json(value) -> Jsonb | None:
    """Wrap a dict/list for a jsonb column (score_breakdown, metadata)."""
    return Jsonb(value) if value is not None else None
