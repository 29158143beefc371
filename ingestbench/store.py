"""Read-only access to the table the platform writes ingested telemetry into."""
from __future__ import annotations

import logging
from typing import Any, Optional

import psycopg2
from psycopg2 import sql

from ingestbench.config import BenchConfig

LOGGER = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when the record store cannot be reached or queried."""


def connection_kwargs(config: BenchConfig) -> dict[str, Any]:
    return {
        "host": config.db_host,
        "port": config.db_port,
        "user": config.db_user,
        "password": config.db_password,
        "dbname": config.db_name,
        "sslmode": config.db_sslmode,
        "connect_timeout": max(1, int(round(config.db_connect_timeout))),
    }


def connect(config: BenchConfig):
    try:
        conn = psycopg2.connect(**connection_kwargs(config))
    except psycopg2.Error as exc:
        raise StoreError(f"Cannot connect to database {config.db_name}@{config.db_host}: {exc}") from exc
    conn.autocommit = True
    return conn


class RecordStore:
    """Counts rows in a single records table."""

    def __init__(self, config: BenchConfig, connection: Optional[Any] = None) -> None:
        self.config = config
        self.table = config.db_table
        self._conn = connection
        self._opened = False
        self._query = sql.SQL("SELECT COUNT(*) FROM {}").format(
            sql.Identifier(*config.db_table.split("."))
        )

    def open(self) -> None:
        """Connect (if needed) and run a bounded health probe."""
        if self._conn is None:
            self._conn = connect(self.config)
        self._opened = True
        timeout_ms = max(1, int(self.config.db_connect_timeout * 1000))
        try:
            with self._conn.cursor() as cur:
                cur.execute("SET statement_timeout = %s", (timeout_ms,))
                cur.execute("SELECT 1")
                cur.fetchone()
        except psycopg2.Error as exc:
            raise StoreError(f"Database health probe failed: {exc}") from exc

    def count(self) -> int:
        """Current row count; a broken connection is dropped and reopened on the next call."""
        if not self._opened:
            raise StoreError("Record store is not open")
        if self._conn is None or self._conn.closed:
            self._discard()
            self._conn = connect(self.config)
            LOGGER.info("Reconnected to database %s@%s", self.config.db_name, self.config.db_host)
        try:
            with self._conn.cursor() as cur:
                cur.execute(self._query)
                row = cur.fetchone()
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as exc:
            self._discard()
            raise StoreError(f"Counting rows in {self.table} failed: {exc}") from exc
        except psycopg2.Error as exc:
            raise StoreError(f"Counting rows in {self.table} failed: {exc}") from exc
        return int(row[0]) if row else 0

    def close(self) -> None:
        self._discard()
        self._opened = False

    def _discard(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        except psycopg2.Error as exc:
            LOGGER.debug("Ignoring error while closing database connection: %s", exc)
        self._conn = None
