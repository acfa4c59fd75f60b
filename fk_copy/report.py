from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pendulum

from fk_copy.TableSpec import (
    STATUS_COPIED,
    STATUS_FAILED,
    STATUS_SKIPPED_EMPTY,
    STATUS_SKIPPED_MISSING,
    CopyStats,
)

RUN_COMPLETED = "completed"
RUN_FAILED = "failed"
RUN_RUNNING = "running"

_STATUS_LABEL = {
    STATUS_COPIED: "copied",
    STATUS_SKIPPED_MISSING: "skipped — does not exist",
    STATUS_SKIPPED_EMPTY: "skipped — empty",
    STATUS_FAILED: "FAILED",
}


@dataclass
class CopyReport:
    source_db: str
    target_db: str
    tables: List[CopyStats] = field(default_factory=list)
    started_at: pendulum.DateTime = field(default_factory=lambda: pendulum.now("UTC"))
    finished_at: Optional[pendulum.DateTime] = None
    status: str = RUN_RUNNING
    error: Optional[str] = None

    def add(self, stats: CopyStats) -> None:
        self.tables.append(stats)

    def finish(self, error: Optional[BaseException] = None) -> None:
        self.finished_at = pendulum.now("UTC")
        if error is None:
            self.status = RUN_COMPLETED
        else:
            self.status = RUN_FAILED
            self.error = str(error)

    @property
    def ok(self) -> bool:
        return self.status == RUN_COMPLETED

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or pendulum.now("UTC")
        return (end - self.started_at).total_seconds()

    def totals(self) -> Dict[str, int]:
        return {
            "tables_processed": sum(1 for t in self.tables if t.status != STATUS_FAILED),
            "tables_skipped": sum(1 for t in self.tables if t.status in (STATUS_SKIPPED_MISSING, STATUS_SKIPPED_EMPTY)),
            "rows_read": sum(t.rows_read for t in self.tables),
            "rows_inserted": sum(t.rows_inserted for t in self.tables),
            "rows_skipped": sum(t.rows_skipped for t in self.tables),
            "fk_nullified_count": sum(t.fk_nullified_count for t in self.tables),
            "row_errors": sum(t.row_errors for t in self.tables),
        }

    def needs_attention(self) -> bool:
        t = self.totals()
        return not self.ok or t["fk_nullified_count"] > 0 or t["row_errors"] > 0

    def summary_lines(self) -> List[str]:
        lines = [f"Copy {self.source_db} → {self.target_db}"]
        for t in self.tables:
            label = _STATUS_LABEL.get(t.status, t.status)
            if t.status == STATUS_COPIED:
                after = "" if t.rows_in_target_after is None else f", target now {t.rows_in_target_after}"
                lines.append(
                    f"  - {t.table}: read={t.rows_read} inserted={t.rows_inserted} "
                    f"skipped={t.rows_skipped} fk_nullified={t.fk_nullified_count}{after}"
                )
            else:
                lines.append(f"  - {t.table}: {label}")
        tot = self.totals()
        lines.append(
            f"  Totals: read={tot['rows_read']} inserted={tot['rows_inserted']} "
            f"skipped={tot['rows_skipped']} fk_nullified={tot['fk_nullified_count']} "
            f"row_errors={tot['row_errors']}"
        )
        if self.ok:
            lines.append(f"✅ Data copy completed successfully in {self.duration_seconds:.1f}s")
        else:
            lines.append(f"❌ Data copy FAILED after {self.duration_seconds:.1f}s: {self.error}")
        return lines

    def log_summary(self, logger: logging.Logger) -> None:
        logger.info("\n%s\n📊 COPY SUMMARY\n%s", "=" * 50, "=" * 50)
        level = logging.INFO if self.ok else logging.ERROR
        for line in self.summary_lines():
            logger.log(level, "%s", line)
