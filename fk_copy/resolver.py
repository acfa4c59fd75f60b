from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import psycopg2

from fk_copy.TableSpec import FkColumnSummary, FkValidationSummary
from fk_copy.connections import is_connection_failure
from fk_copy.exceptions import DatabaseConnectionError, FatalTableError, ReferenceLookupFailure
from fk_copy.fetcher import Row, table_exists
from fk_copy.helpers import PK_COLUMN, fq_table, qi

LOG = logging.getLogger(__name__)

ForeignKeys = Sequence[Tuple[str, str]]   # (column, referenced_table)
ExistingIds = Dict[str, Set[Any]]         # column -> ids present in the referenced table


def _distinct_values(rows: Iterable[Row], column: str) -> List[Any]:
    seen: Set[Any] = set()
    out: List[Any] = []
    for r in rows:
        v = r.get(column)
        if v is None or v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


def _rollback_quietly(conn) -> None:
    try:
        conn.rollback()
    except psycopg2.Error:
        LOG.debug("Rollback on target failed", exc_info=True)

# ------------------------ Existence lookups ------------------------

def fetch_existing_ids(conn, schema: str, table: str, values: Sequence[Any]) -> Set[Any]:
    """Subset of `values` present as primary keys of schema.table on `conn`."""
    if not values:
        return set()
    try:
        present = table_exists(conn, schema, table)
    except FatalTableError as e:
        raise ReferenceLookupFailure(table, str(e)) from e
    if not present:
        raise ReferenceLookupFailure(table, "referenced table does not exist in target")
    pk = qi(PK_COLUMN)
    try:
        with conn.cursor() as c:
            c.execute(
                f"SELECT {pk} FROM {fq_table(schema, table)} WHERE {pk} = ANY(%s)",
                (list(values),),
            )
            found = {r[0] for r in c.fetchall()}
    except psycopg2.Error as e:
        _rollback_quietly(conn)
        if is_connection_failure(e, conn):
            raise DatabaseConnectionError(f"Connection lost while checking references in '{table}': {e}") from e
        raise ReferenceLookupFailure(table, str(e)) from e
    return found


def prefetch_existing_references(conn, schema: str, rows: Sequence[Row], foreign_keys: ForeignKeys) -> ExistingIds:
    """
    Resolve, once per FK column, which referenced ids exist in the target.
    A failed lookup leaves an empty set for that column, so all of its
    references are treated as missing.
    """
    t0 = time.perf_counter()
    existing: ExistingIds = {}
    for col, ref_table in foreign_keys:
        values = _distinct_values(rows, col)
        try:
            existing[col] = fetch_existing_ids(conn, schema, ref_table, values)
        except ReferenceLookupFailure as e:
            LOG.warning("   ⚠️  %s; values in %s will be set to null", e, col)
            existing[col] = set()
        LOG.debug("Prefetch %s -> %s: %d distinct, %d existing",
                  col, ref_table, len(values), len(existing[col]))
    LOG.info("Resolved %d FK column(s) in %.3fs", len(foreign_keys), time.perf_counter() - t0)
    return existing

# ------------------------ Row cleaning (pure) ------------------------

def clean_row(row: Row, foreign_keys: ForeignKeys, existing: ExistingIds) -> Tuple[Row, List[str]]:
    """Copy of `row` with dangling FK values set to None, plus the nulled columns."""
    cleaned = dict(row)
    nullified: List[str] = []
    for col, _ref in foreign_keys:
        v = row.get(col)
        if v is None:
            continue
        if v not in existing.get(col, ()):
            cleaned[col] = None
            nullified.append(col)
    return cleaned, nullified


def resolve_rows(rows: Sequence[Row], foreign_keys: ForeignKeys, existing: ExistingIds) -> Tuple[List[Row], int]:
    """Clean every row; the count is rows with at least one nulled FK."""
    cleaned_rows: List[Row] = []
    nullified_rows = 0
    for row in rows:
        cleaned, nullified = clean_row(row, foreign_keys, existing)
        if nullified:
            nullified_rows += 1
            if LOG.isEnabledFor(logging.DEBUG):
                LOG.debug("Row id=%r: nulled %s", row.get(PK_COLUMN), nullified)
        cleaned_rows.append(cleaned)
    return cleaned_rows, nullified_rows

# ------------------------ Diagnostics (informational only) ------------------------

def validate_foreign_keys(conn, schema: str, rows: Sequence[Row], foreign_keys: ForeignKeys) -> Optional[FkValidationSummary]:
    """
    Best-effort count of missing references per FK column. Columns whose
    lookup fails are left out; None when no column could be checked.
    """
    summary: FkValidationSummary = {}
    failed = 0
    for col, ref_table in foreign_keys:
        values = _distinct_values(rows, col)
        if not values:
            continue
        try:
            if not table_exists(conn, schema, ref_table):
                failed += 1
                continue
            with conn.cursor() as c:
                pk = qi(PK_COLUMN)
                c.execute(
                    f"SELECT COUNT(*) FROM {fq_table(schema, ref_table)} WHERE {pk} = ANY(%s)",
                    (values,),
                )
                existing_count = int(c.fetchone()[0])
        except (psycopg2.Error, FatalTableError):
            _rollback_quietly(conn)
            LOG.debug("FK validation for %s -> %s failed (informational only)", col, ref_table, exc_info=True)
            failed += 1
            continue
        summary[col] = FkColumnSummary(ref_table, len(values), existing_count)

    if not summary and failed:
        return None

    missing = {c: s for c, s in summary.items() if s.missing_count > 0}
    if missing:
        LOG.warning("   ⚠️  Foreign key validation:")
        for col, s in missing.items():
            LOG.warning(
                "      - %s: %d out of %d referenced records don't exist (will be set to null)",
                col, s.missing_count, s.total_distinct_values,
            )
    return summary
