from __future__ import annotations

import logging
import time
from typing import Optional

from fk_copy.TableSpec import (
    STATUS_FAILED,
    STATUS_SKIPPED_EMPTY,
    STATUS_SKIPPED_MISSING,
    CopyStats,
    TableSpec,
)
from fk_copy.connections import dst_pg_conn, src_pg_conn
from fk_copy.exceptions import (
    CopyRunFailed,
    DatabaseConnectionError,
    EmptySourceTable,
    FatalTableError,
    TableMissingInSource,
)
from fk_copy.fetcher import count_rows, fetch_source_rows, table_exists
from fk_copy.inserter import insert_batches
from fk_copy.report import CopyReport
from fk_copy.resolver import prefetch_existing_references, resolve_rows, validate_foreign_keys
from fk_copy.schema_registry import SchemaRegistry, default_registry
from fk_copy.settings import CopyConfig

# ============================== Engine (single class) ===============================

class CopyDataEngine:
    def __init__(self, config: CopyConfig, registry: Optional[SchemaRegistry] = None,
                 logger: logging.Logger | None = None):
        self.cfg = config
        self.registry = registry or default_registry()
        self.log = logger or logging.getLogger(__name__)
        self.log.debug("CopyDataEngine initialized with logger=%r", self.log.name)

    # ------------------------ One table ------------------------

    def copy_table(self, spec: TableSpec, src, dst) -> CopyStats:
        """
        Fetch → validate (optional) → clean FKs → insert, for one table.
        Missing or empty source tables come back as skipped stats; connection
        and fatal table errors propagate.
        """
        t0 = time.perf_counter()
        table = spec.name
        src_schema, dst_schema = self.cfg.source.schema, self.cfg.target.schema
        stats = CopyStats(table=table)
        self.log.info("📋 Copying table: %s", table)

        # ---- 1) Fetching ----
        try:
            rows = fetch_source_rows(src, src_schema, table)
        except TableMissingInSource:
            self.log.info("   ⚠️  Table '%s' does not exist in source database. Skipping...", table)
            stats.status = STATUS_SKIPPED_MISSING
            return stats
        except EmptySourceTable:
            self.log.info("   ℹ️  Table '%s' is empty. Skipping...", table)
            stats.status = STATUS_SKIPPED_EMPTY
            return stats
        stats.rows_read = len(rows)
        self.log.info("   📥 Found %d rows in source table", stats.rows_read)

        if not table_exists(dst, dst_schema, table):
            raise FatalTableError(table, f"table does not exist in target schema '{dst_schema}'")
        stats.existing_in_target = count_rows(dst, dst_schema, table)
        if stats.existing_in_target > 0:
            self.log.info(
                "   ⚠️  Target table already has %d rows. Existing ids are kept, duplicates skipped...",
                stats.existing_in_target,
            )

        foreign_keys = self.registry.foreign_keys_of(table)

        # ---- 2) Validating (informational) ----
        if foreign_keys and self.cfg.validate_fks:
            self.log.info("   🔍 Validating foreign key references...")
            summary = validate_foreign_keys(dst, dst_schema, rows, foreign_keys)
            if summary is None:
                self.log.info("   FK validation unavailable for %s (informational only)", table)

        # ---- 3) Cleaning ----
        if foreign_keys:
            existing = prefetch_existing_references(dst, dst_schema, rows, foreign_keys)
            cleaned, stats.fk_nullified_count = resolve_rows(rows, foreign_keys, existing)
        else:
            cleaned = rows

        # ---- 4) Inserting ----
        stats.merge_insert(insert_batches(dst, dst_schema, table, cleaned, self.cfg.batch_size))

        # ---- 5) Reporting ----
        stats.rows_in_target_after = count_rows(dst, dst_schema, table)
        stats.elapsed = time.perf_counter() - t0
        self.log.info("   ✅ Completed:")
        self.log.info("      - %d rows inserted", stats.rows_inserted)
        self.log.info("      - %d rows skipped (duplicates or errors)", stats.rows_skipped)
        if stats.row_errors:
            self.log.warning("      - %d rows failed to insert (see warnings above)", stats.row_errors)
        if stats.fk_nullified_count:
            self.log.info(
                "      - %d rows had foreign keys set to null (referenced records don't exist)",
                stats.fk_nullified_count,
            )
        self.log.info("      - target now has %d rows (%.3fs)", stats.rows_in_target_after, stats.elapsed)
        return stats

    # ------------------------ Whole run ------------------------

    def run(self, src, dst) -> CopyReport:
        """Copy every registry table in order on already-open connections."""
        report = CopyReport(source_db=self.cfg.source.dbname, target_db=self.cfg.target.dbname)
        self.log.info("🚀 Starting data copy from %s to %s (%d tables)...",
                      report.source_db, report.target_db, len(self.registry))

        for spec in self.registry.tables_in_order():
            try:
                stats = self.copy_table(spec, src, dst)
            except Exception as e:
                if isinstance(e, (DatabaseConnectionError, FatalTableError)):
                    err = e
                    self.log.error("❌ Error copying table '%s': %s", spec.name, e, exc_info=True)
                else:
                    err = FatalTableError(spec.name, repr(e))
                    self.log.error("❌ Unexpected error copying table '%s'", spec.name, exc_info=True)
                report.add(CopyStats(table=spec.name, status=STATUS_FAILED))
                report.finish(err)
                raise CopyRunFailed(str(err), report) from err
            report.add(stats)

        report.finish()
        return report


def run_copy(config: CopyConfig, registry: Optional[SchemaRegistry] = None,
             logger: logging.Logger | None = None) -> CopyReport:
    """
    Open source and target, run the copy, and always close both.
    Raises CopyRunFailed carrying the (partial) report on any fatal error.
    """
    engine = CopyDataEngine(config, registry, logger)
    log = engine.log
    try:
        with src_pg_conn(config.source) as src, dst_pg_conn(config.target) as dst:
            report = engine.run(src, dst)
    except DatabaseConnectionError as e:
        # only reachable while opening connections; run() wraps its own failures
        log.error("💥 Fatal connection error: %s", e)
        failed = CopyReport(source_db=config.source.dbname, target_db=config.target.dbname)
        failed.finish(e)
        raise CopyRunFailed(str(e), failed) from e
    return report
