from __future__ import annotations

import logging
from typing import Any

LOG = logging.getLogger(__name__)

PK_COLUMN = "id"

# ============================== Helpers (module-level; stateless) ===============================

def qi(ident: str) -> str:
    q = '"' + ident.replace('"', '""') + '"'
    if LOG.isEnabledFor(logging.DEBUG):
        LOG.debug("Quoted identifier: raw=%r quoted=%r", ident, q)
    return q

def fq_table(schema: str, table: str) -> str:
    fq = f"{qi(schema)}.{qi(table)}"
    if LOG.isEnabledFor(logging.DEBUG):
        LOG.debug("FQ table: %s", fq)
    return fq

def row_id(row: dict) -> Any:
    return row.get(PK_COLUMN)
