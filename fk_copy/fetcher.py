from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Set

import psycopg2
import psycopg2.extras

from fk_copy.connections import is_connection_failure
from fk_copy.exceptions import (
    DatabaseConnectionError,
    EmptySourceTable,
    FatalTableError,
    TableMissingInSource,
)
from fk_copy.helpers import fq_table

LOG = logging.getLogger(__name__)

Row = Dict[str, Any]


def _fail(conn, table: str, e: psycopg2.Error):
    try:
        conn.rollback()
    except psycopg2.Error:
        LOG.debug("Rollback after failure on %s also failed", table, exc_info=True)
    if is_connection_failure(e, conn):
        return DatabaseConnectionError(f"Connection lost while reading '{table}': {e}")
    return FatalTableError(table, str(e))


def table_exists(conn, schema: str, table: str) -> bool:
    try:
        with conn.cursor() as c:
            c.execute(
                """
                SELECT EXISTS (
                  SELECT 1 FROM information_schema.tables
                  WHERE table_schema=%s AND table_name=%s
                )
                """,
                (schema, table),
            )
            exists = bool(c.fetchone()[0])
    except psycopg2.Error as e:
        raise _fail(conn, table, e) from e
    LOG.debug("Table %s.%s exists? %s", schema, table, exists)
    return exists


def count_rows(conn, schema: str, table: str) -> int:
    if not table_exists(conn, schema, table):
        LOG.info("Table %s.%s does not exist; row count = 0", schema, table)
        return 0
    fq = fq_table(schema, table)
    try:
        with conn.cursor() as c:
            c.execute(f"SELECT COUNT(*) FROM {fq}")
            cnt = int(c.fetchone()[0])
    except psycopg2.Error as e:
        raise _fail(conn, table, e) from e
    LOG.debug("Row count for %s: %d", fq, cnt)
    return cnt


def fetch_all(conn, schema: str, table: str) -> List[Row]:
    """Read the whole table into memory; every call re-reads."""
    t0 = time.perf_counter()
    fq = fq_table(schema, table)
    try:
        with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as c:
            c.execute(f"SELECT * FROM {fq}")
            rows = [dict(r) for r in c.fetchall()]
        conn.commit()
    except psycopg2.Error as e:
        raise _fail(conn, table, e) from e
    LOG.debug("Fetched %d rows from %s (%.3fs)", len(rows), fq, time.perf_counter() - t0)
    return rows


def fetch_source_rows(conn, schema: str, table: str) -> List[Row]:
    if not table_exists(conn, schema, table):
        raise TableMissingInSource(table)
    rows = fetch_all(conn, schema, table)
    if not rows:
        raise EmptySourceTable(table)
    return rows


def json_columns(conn, schema: str, table: str) -> Set[str]:
    """Columns of schema.table declared json or jsonb."""
    try:
        with conn.cursor() as c:
            c.execute(
                """
                SELECT column_name
                FROM information_schema.columns
                WHERE table_schema=%s AND table_name=%s AND data_type IN ('json', 'jsonb')
                """,
                (schema, table),
            )
            cols = {r[0] for r in c.fetchall()}
    except psycopg2.Error as e:
        raise _fail(conn, table, e) from e
    LOG.debug("JSON columns for %s.%s: %s", schema, table, sorted(cols))
    return cols
