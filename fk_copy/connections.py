from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Iterator

import psycopg2
import psycopg2.extensions

from fk_copy.exceptions import DatabaseConnectionError
from fk_copy.settings import DatabaseSettings

log = logging.getLogger(__name__)


def open_connection(settings: DatabaseSettings, label: str = "database") -> psycopg2.extensions.connection:
    log.info("🔗 Connecting to %s %s ...", label, settings.describe())
    t0 = time.perf_counter()
    try:
        conn = psycopg2.connect(**settings.connect_kwargs())
    except psycopg2.Error as e:
        log.error("Failed to connect to %s database '%s': %s", label, settings.dbname, e)
        raise DatabaseConnectionError(f"Failed to connect to {label} database '{settings.dbname}': {e}") from e
    conn.autocommit = False
    log.info("✅ Connected to %s database '%s' (%.3fs)", label, settings.dbname, time.perf_counter() - t0)
    return conn


def close_connection(conn) -> None:
    if conn is None or conn.closed:
        return
    try:
        conn.close()
    except psycopg2.Error:
        log.debug("Error while closing connection", exc_info=True)


@contextmanager
def pg_conn(settings: DatabaseSettings, label: str = "database") -> Iterator[psycopg2.extensions.connection]:
    conn = open_connection(settings, label)
    try:
        yield conn
    finally:
        close_connection(conn)
        log.debug("Closed %s connection to '%s'", label, settings.dbname)


def src_pg_conn(settings: DatabaseSettings):
    return pg_conn(settings, "source")


def dst_pg_conn(settings: DatabaseSettings):
    return pg_conn(settings, "target")


# SQLSTATE classes that mean the session itself is gone:
# 08 connection exception, 57P admin/crash shutdown.
_SESSION_SQLSTATES = ("08", "57P")


def is_connection_failure(exc: BaseException, conn=None) -> bool:
    """psycopg2 errors that mean the session is gone, not that one statement failed."""
    if isinstance(exc, psycopg2.InterfaceError):
        return True
    if conn is not None and conn.closed:
        return True
    code = getattr(exc, "pgcode", None)
    if code:
        return code.startswith(_SESSION_SQLSTATES)
    # libpq reports a dropped socket as a bare OperationalError without SQLSTATE;
    # its subclasses (QueryCanceled, ProgramLimitExceeded, ...) are per-statement.
    return type(exc) is psycopg2.OperationalError
