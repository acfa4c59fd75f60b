from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

# ============================== Config model ===============================

@dataclass(frozen=True)
class TableSpec:
    name: str
    foreign_keys: Tuple[Tuple[str, str], ...] = ()   # ((column, referenced_table), ...)

# ============================== Run statistics ===============================

STATUS_COPIED = "copied"
STATUS_SKIPPED_MISSING = "skipped_missing"
STATUS_SKIPPED_EMPTY = "skipped_empty"
STATUS_FAILED = "failed"


@dataclass
class CopyStats:
    table: str
    rows_read: int = 0
    rows_inserted: int = 0
    rows_skipped: int = 0
    fk_nullified_count: int = 0
    row_errors: int = 0                  # subset of rows_skipped, non-duplicate failures
    existing_in_target: int = 0
    rows_in_target_after: Optional[int] = None
    status: str = STATUS_COPIED
    elapsed: float = 0.0

    def merge_insert(self, other: "CopyStats") -> None:
        self.rows_inserted += other.rows_inserted
        self.rows_skipped += other.rows_skipped
        self.row_errors += other.row_errors


@dataclass(frozen=True)
class FkColumnSummary:
    referenced_table: str
    total_distinct_values: int
    existing_count: int

    @property
    def missing_count(self) -> int:
        return self.total_distinct_values - self.existing_count


# column -> summary; None when no column could be checked
FkValidationSummary = Dict[str, FkColumnSummary]

