"""Shared pytest fixtures: an in-memory stand-in for a psycopg2 connection.

The fake understands exactly the statements the copy engine issues
(information_schema lookups, SELECT *, COUNT(*), id = ANY(...) lookups and
INSERT ... ON CONFLICT ("id") DO NOTHING RETURNING "id" via execute_values).
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import psycopg2
import psycopg2.extras
import pytest

from fk_copy.settings import CopyConfig, DatabaseSettings

_IDENT = r'"(?P<schema>[^"]+)"\."(?P<table>[^"]+)"'
_COUNT_RE = re.compile(rf'^SELECT COUNT\(\*\) FROM {_IDENT}(?P<any> WHERE "id" = ANY\(%s\))?$')
_IDS_RE = re.compile(rf'^SELECT "id" FROM {_IDENT} WHERE "id" = ANY\(%s\)$')
_ALL_RE = re.compile(rf'^SELECT \* FROM {_IDENT}$')
_INSERT_RE = re.compile(
    rf'^INSERT INTO {_IDENT} \((?P<cols>[^)]*)\) VALUES %s ON CONFLICT \("id"\) DO NOTHING RETURNING "id"$'
)


def _norm(sql: str) -> str:
    return " ".join(sql.split())


class FakeDatabase:
    def __init__(self, name: str, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None, schema: str = "public"):
        self.name = name
        self.schema = schema
        self.tables: Dict[Tuple[str, str], Dict[Any, Dict[str, Any]]] = {}
        self.reject_ids: Dict[str, Set[Any]] = {}      # table -> ids whose insert violates a constraint
        self.insert_errors: Dict[str, Dict[Any, Exception]] = {}  # table -> id -> error raised on insert
        self.json_columns: Dict[str, Set[str]] = {}    # table -> json/jsonb columns
        self.broken: Set[str] = set()                  # tables whose queries fail (ProgrammingError)
        self.disconnect_on: Set[str] = set()           # tables whose queries drop the connection
        self.statements: List[str] = []
        self.insert_statements = 0
        for t, rows in (tables or {}).items():
            self.create_table(t, rows)

    # ---- setup helpers ----
    def create_table(self, table: str, rows: Sequence[Dict[str, Any]] = ()) -> None:
        self.tables[(self.schema, table)] = {r["id"]: dict(r) for r in rows}

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return list(self.tables[(self.schema, table)].values())

    def row(self, table: str, id_: Any) -> Dict[str, Any]:
        return self.tables[(self.schema, table)][id_]

    def connect(self) -> "FakeConnection":
        return FakeConnection(self)

    # ---- statement execution ----
    def _table(self, schema: str, table: str) -> Dict[Any, Dict[str, Any]]:
        if table in self.disconnect_on:
            raise psycopg2.OperationalError("server closed the connection unexpectedly")
        if table in self.broken or (schema, table) not in self.tables:
            raise psycopg2.ProgrammingError(f'relation "{schema}.{table}" does not exist')
        return self.tables[(schema, table)]

    def execute(self, sql: str, params, dict_rows: bool) -> List[Any]:
        sql = _norm(sql)
        self.statements.append(sql)
        if "information_schema.tables" in sql:
            schema, table = params
            return [((schema, table) in self.tables,)]
        if "information_schema.columns" in sql:
            schema, table = params
            return [(c,) for c in sorted(self.json_columns.get(table, ()))]
        m = _COUNT_RE.match(sql)
        if m:
            data = self._table(m["schema"], m["table"])
            if m["any"]:
                wanted = set(params[0])
                return [(sum(1 for k in data if k in wanted),)]
            return [(len(data),)]
        m = _IDS_RE.match(sql)
        if m:
            data = self._table(m["schema"], m["table"])
            return [(k,) for k in params[0] if k in data]
        m = _ALL_RE.match(sql)
        if m:
            data = self._table(m["schema"], m["table"])
            if dict_rows:
                return [dict(r) for r in data.values()]
            return [tuple(r.values()) for r in data.values()]
        raise AssertionError(f"FakeDatabase does not understand: {sql}")

    def insert(self, sql: str, argslist: Sequence[Tuple]) -> List[Tuple]:
        sql = _norm(sql)
        m = _INSERT_RE.match(sql)
        assert m, f"unexpected insert statement: {sql}"
        self.insert_statements += 1
        data = self._table(m["schema"], m["table"])
        cols = [c.strip().strip('"') for c in m["cols"].split(",")]
        staged: Dict[Any, Dict[str, Any]] = {}
        for values in argslist:
            row = dict(zip(cols, values))
            if row["id"] in self.reject_ids.get(m["table"], set()):
                raise psycopg2.IntegrityError(f"constraint violated for id={row['id']}")
            if row["id"] in self.insert_errors.get(m["table"], {}):
                raise self.insert_errors[m["table"]][row["id"]]
            if row["id"] in data or row["id"] in staged:
                continue
            staged[row["id"]] = row
        data.update(staged)
        return [(k,) for k in staged]


class FakeCursor:
    def __init__(self, conn: "FakeConnection", dict_rows: bool):
        self.conn = conn
        self.dict_rows = dict_rows
        self._result: List[Any] = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.conn._check_open()
        self._result = self.conn.db.execute(sql, params, self.dict_rows)

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return list(self._result)


class FakeConnection:
    def __init__(self, db: FakeDatabase):
        self.db = db
        self.closed = 0
        self.autocommit = False
        self.commits = 0
        self.rollbacks = 0

    def _check_open(self):
        if self.closed:
            raise psycopg2.InterfaceError("connection already closed")

    def cursor(self, cursor_factory=None):
        self._check_open()
        return FakeCursor(self, dict_rows=cursor_factory is not None)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = 1


def fake_execute_values(cur, sql, argslist, template=None, page_size=100, fetch=False):
    cur.conn._check_open()
    returned = cur.conn.db.insert(sql, list(argslist))
    return returned if fetch else None


@pytest.fixture(autouse=True)
def _patch_execute_values(monkeypatch):
    monkeypatch.setattr(psycopg2.extras, "execute_values", fake_execute_values)


@pytest.fixture
def copy_config() -> CopyConfig:
    return CopyConfig(
        source=DatabaseSettings("localhost", 5432, "postgres", "secret", "exim_invoicing"),
        target=DatabaseSettings("localhost", 5432, "postgres", "secret", "leo_munimji"),
        batch_size=100,
    )


@pytest.fixture
def make_db():
    def _make(name: str = "db", **tables):
        return FakeDatabase(name, tables)
    return _make
