from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from fk_copy.TableSpec import TableSpec
from fk_copy.exceptions import ConfigError

log = logging.getLogger(__name__)

# ------------------------ Built-in catalog ------------------------
# Hand-ordered: every table comes after the registry tables it references.
# `users` and `job_register` are not copied; references to them are kept only
# when the row already exists in the target.

DEFAULT_TABLES: Tuple[TableSpec, ...] = (
    TableSpec("state"),
    TableSpec("gst_rates", (("added_by", "users"),)),
    TableSpec("accounts", (("added_by", "users"), ("deleted_by", "users"))),
    TableSpec("client_info", (
        ("account_id", "accounts"),
        ("added_by", "users"),
        ("deleted_by", "users"),
    )),
    TableSpec("client_bu", (
        ("client_info_id", "client_info"),
        ("state_id", "state"),
        ("added_by", "users"),
        ("deleted_by", "users"),
    )),
    TableSpec("client_service_charges", (
        ("account_id", "accounts"),
        ("client_info_id", "client_info"),
        ("client_bu_id", "client_bu"),
        ("job_register_id", "job_register"),
        ("added_by", "users"),
        ("deleted_by", "users"),
    )),
    TableSpec("fields_master", (("added_by", "users"), ("deleted_by", "users"))),
)


def check_topological_order(tables: Sequence[TableSpec]) -> None:
    """Raise ConfigError unless each table follows every registry table it references."""
    names = [t.name for t in tables]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigError(f"Duplicate table(s) in catalog: {', '.join(dupes)}")

    position = {name: i for i, name in enumerate(names)}
    for i, spec in enumerate(tables):
        for col, ref in spec.foreign_keys:
            if ref not in position:
                continue
            if position[ref] >= i:
                raise ConfigError(
                    f"Table '{spec.name}' (column {col}) references '{ref}', "
                    f"which is not processed before it"
                )


class SchemaRegistry:
    """Static table list plus FK map; read-only once built."""

    def __init__(self, tables: Iterable[TableSpec] = DEFAULT_TABLES):
        self._tables: Tuple[TableSpec, ...] = tuple(tables)
        check_topological_order(self._tables)
        self._by_name: Dict[str, TableSpec] = {t.name: t for t in self._tables}

    def tables_in_order(self) -> Tuple[TableSpec, ...]:
        return self._tables

    def table_names(self) -> List[str]:
        return [t.name for t in self._tables]

    def foreign_keys_of(self, table: str) -> List[Tuple[str, str]]:
        spec = self._by_name.get(table)
        return list(spec.foreign_keys) if spec else []

    def __len__(self) -> int:
        return len(self._tables)

    def __contains__(self, table: str) -> bool:
        return table in self._by_name


def default_registry() -> SchemaRegistry:
    return SchemaRegistry(DEFAULT_TABLES)

# ------------------------ Catalog file ------------------------

def _spec_from_json(item: Any) -> TableSpec:
    if not isinstance(item, dict) or not isinstance(item.get("name"), str) or not item["name"].strip():
        raise ConfigError(f"Catalog table entry must be an object with a 'name': {item!r}")
    fks = item.get("foreign_keys", {}) or {}
    if isinstance(fks, dict):
        pairs = list(fks.items())
    elif isinstance(fks, list):
        # [["col", "ref"], ...] keeps the same meaning with explicit ordering
        pairs = [tuple(p) for p in fks]
    else:
        raise ConfigError(f"foreign_keys of '{item['name']}' must be an object or a list of pairs")
    for p in pairs:
        if len(p) != 2 or not all(isinstance(x, str) and x for x in p):
            raise ConfigError(f"Invalid foreign key entry for '{item['name']}': {p!r}")
    return TableSpec(item["name"].strip(), tuple((c, r) for c, r in pairs))


def load_registry(path: str | Path) -> SchemaRegistry:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")
    raw = path.read_text(encoding="utf-8").strip()
    if not raw:
        raise ConfigError(f"Catalog file {path} is empty")
    try:
        catalog = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in catalog file {path}: {e}") from e
    tables = catalog.get("tables") if isinstance(catalog, dict) else None
    if not isinstance(tables, list) or not tables:
        raise ConfigError(f"Catalog {path} must contain a non-empty list under 'tables'")
    registry = SchemaRegistry(_spec_from_json(t) for t in tables)
    log.info("Loaded catalog from %s (%d tables)", path, len(registry))
    return registry
