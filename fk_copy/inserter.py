from __future__ import annotations

import logging
import time
from typing import AbstractSet, List, Sequence, Tuple

import psycopg2
import psycopg2.extras as extras

from fk_copy.TableSpec import CopyStats
from fk_copy.connections import is_connection_failure
from fk_copy.exceptions import DatabaseConnectionError, RowInsertError
from fk_copy.fetcher import Row, json_columns
from fk_copy.helpers import PK_COLUMN, fq_table, qi, row_id
from fk_copy.settings import DEFAULT_BATCH_SIZE

LOG = logging.getLogger(__name__)


def build_insert_ignore_sql(schema: str, table: str, cols: Sequence[str]) -> str:
    col_list = ", ".join(qi(c) for c in cols)
    pk = qi(PK_COLUMN)
    sql = (
        f"INSERT INTO {fq_table(schema, table)} ({col_list}) VALUES %s "
        f"ON CONFLICT ({pk}) DO NOTHING RETURNING {pk}"
    )
    if LOG.isEnabledFor(logging.DEBUG):
        LOG.debug("Generated INSERT ... ON CONFLICT DO NOTHING SQL: %s", sql)
    return sql


def _values(row: Row, cols: Sequence[str], json_cols: AbstractSet[str] = frozenset()) -> Tuple:
    # json/jsonb values come back as dicts, lists or scalars; a bare list would be sent as an ARRAY
    out = []
    for c in cols:
        v = row.get(c)
        if v is not None and (c in json_cols or isinstance(v, dict)):
            v = extras.Json(v)
        out.append(v)
    return tuple(out)


def _write(conn, sql: str, page: List[Tuple], page_size: int) -> int:
    """Execute one duplicate-tolerant insert and commit; returns rows actually inserted."""
    with conn.cursor() as d:
        returned = extras.execute_values(d, sql, page, page_size=page_size, fetch=True)
    conn.commit()
    return len(returned or [])


def _lost(conn, e: psycopg2.Error) -> bool:
    if is_connection_failure(e, conn):
        return True
    conn.rollback()
    return False


def _insert_one(conn, table: str, sql: str, values: Tuple, row: Row) -> int:
    try:
        return _write(conn, sql, [values], 1)
    except psycopg2.Error as e:
        if _lost(conn, e):
            raise DatabaseConnectionError(f"Connection lost while inserting into '{table}': {e}") from e
        raise RowInsertError(table, row_id(row), str(e).strip()) from e


def insert_batches(conn, schema: str, table: str, rows: Sequence[Row],
                   batch_size: int = DEFAULT_BATCH_SIZE) -> CopyStats:
    """
    Insert rows in fixed-size batches with ON CONFLICT DO NOTHING.
    Conflicting rows count as skipped. A batch that fails for another reason
    is replayed row by row so only the offending rows are skipped.
    Values of target json/jsonb columns are sent as JSON whatever their Python type.
    """
    stats = CopyStats(table=table)
    if not rows:
        return stats
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    cols = list(rows[0].keys())
    sql = build_insert_ignore_sql(schema, table, cols)
    json_cols = json_columns(conn, schema, table)
    total = len(rows)

    for start in range(0, total, batch_size):
        batch = rows[start:start + batch_size]
        t_batch = time.perf_counter()
        page = [_values(r, cols, json_cols) for r in batch]
        try:
            inserted = _write(conn, sql, page, batch_size)
            stats.rows_inserted += inserted
            stats.rows_skipped += len(batch) - inserted
        except psycopg2.Error as e:
            if _lost(conn, e):
                raise DatabaseConnectionError(f"Connection lost while inserting into '{table}': {e}") from e
            LOG.debug("Batch insert into %s failed (%s); replaying row by row", table, e)
            for row, values in zip(batch, page):
                try:
                    inserted = _insert_one(conn, table, sql, values, row)
                except RowInsertError as re:
                    stats.rows_skipped += 1
                    stats.row_errors += 1
                    LOG.warning("   ⚠️  %s", re)
                    continue
                stats.rows_inserted += inserted
                stats.rows_skipped += 1 - inserted

        processed = min(start + batch_size, total)
        LOG.info("   ⏳ Progress: %d/%d rows processed... (%.3fs)", processed, total, time.perf_counter() - t_batch)

    return stats
