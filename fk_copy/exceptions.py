from __future__ import annotations

from typing import Any, Optional


class CopyError(Exception):
    """Base class for everything the copy engine raises on purpose."""


class ConfigError(CopyError):
    pass


class DatabaseConnectionError(CopyError, ConnectionError):
    """Source or target connection could not be opened or was lost. Fatal."""


# ---------- non-fatal, table level ----------

class TableSkipped(CopyError):
    def __init__(self, table: str, reason: str):
        super().__init__(f"Table '{table}' skipped: {reason}")
        self.table = table
        self.reason = reason


class TableMissingInSource(TableSkipped):
    def __init__(self, table: str):
        super().__init__(table, "does not exist in source database")


class EmptySourceTable(TableSkipped):
    def __init__(self, table: str):
        super().__init__(table, "source table is empty")


# ---------- non-fatal, row level ----------

class ReferenceLookupFailure(CopyError):
    def __init__(self, table: str, detail: str):
        super().__init__(f"Lookup in '{table}' failed: {detail}")
        self.table = table


class RowInsertError(CopyError):
    def __init__(self, table: str, row_id: Any, detail: str):
        super().__init__(f"Error inserting row ID {row_id if row_id is not None else 'unknown'} into '{table}': {detail}")
        self.table = table
        self.row_id = row_id


# ---------- fatal ----------

class FatalTableError(CopyError):
    def __init__(self, table: str, detail: str):
        super().__init__(f"Error copying table '{table}': {detail}")
        self.table = table


class CopyRunFailed(CopyError):
    """Run aborted; `report` holds the progress made before the failure."""

    def __init__(self, message: str, report: Optional[Any] = None):
        super().__init__(message)
        self.report = report
