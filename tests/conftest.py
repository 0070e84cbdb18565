"""Shared fixtures: fake DB-API objects so gateway tests need no database."""

from __future__ import annotations

import os
import sys
import threading
from typing import Any, Callable

import pytest

# Add repository root to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sqlgate.backends.mssql import MssqlAdapter
from sqlgate.backends.postgres import PostgresAdapter
from sqlgate.core.config import BackendDescriptor, Dialect, Settings
from sqlgate.core.db import _PoolBase


class FakeCursor:
    """Cursor returning ``rows`` for every statement that is not a session command."""

    def __init__(
        self,
        rows: list[tuple[Any, ...]] | None = None,
        description: list[tuple[Any, ...]] | None = None,
        on_execute: Callable[[FakeCursor, str], None] | None = None,
    ) -> None:
        self._rows = list(rows or [])
        self._position = 0
        self.description = description
        self.on_execute = on_execute
        self.executed: list[tuple[str, Any]] = []
        self.fetched = 0
        self.closed = False
        self.cancelled = threading.Event()

    def execute(self, sql: str, params: Any = None) -> None:
        self.executed.append((sql, params))
        if self.on_execute is not None:
            self.on_execute(self, sql)

    def fetchmany(self, size: int) -> list[tuple[Any, ...]]:
        batch = self._rows[self._position:self._position + size]
        self._position += len(batch)
        self.fetched += len(batch)
        return batch

    def fetchall(self) -> list[tuple[Any, ...]]:
        return self.fetchmany(len(self._rows))

    def fetchone(self) -> tuple[Any, ...] | None:
        batch = self.fetchmany(1)
        return batch[0] if batch else None

    def cancel(self) -> None:
        self.cancelled.set()

    def close(self) -> None:
        self.closed = True

    @property
    def statements(self) -> list[str]:
        return [sql for sql, _ in self.executed]


class FakeConnection:
    def __init__(self, cursor: FakeCursor) -> None:
        self._cursor = cursor
        self.closed = 0
        self.autocommit = True
        self.readonly = None
        self.timeout = 0
        self.rollbacks = 0
        self.cursor_timeouts: list[int] = []

    def cursor(self) -> FakeCursor:
        # pyodbc cursors take their statement timeout from the connection at creation
        self.cursor_timeouts.append(self.timeout)
        return self._cursor

    def rollback(self) -> None:
        self.rollbacks += 1

    def cancel(self) -> None:
        self._cursor.cancel()


class FakePool(_PoolBase):
    """Single-connection pool that records every acquire/release."""

    def __init__(self, descriptor: BackendDescriptor, conn: FakeConnection) -> None:
        self.descriptor = descriptor
        self.conn = conn
        self.acquired = 0
        self.released: list[bool] = []

    def acquire(self) -> FakeConnection:
        self.acquired += 1
        return self.conn

    def release(self, conn: Any, discard: bool = False) -> None:
        self.released.append(discard)

    def close(self) -> None:
        pass

    @property
    def outstanding(self) -> int:
        return self.acquired - len(self.released)


def make_descriptor(dialect: Dialect = Dialect.POSTGRES, name: str = "main") -> BackendDescriptor:
    return BackendDescriptor(
        name=name,
        dialect=dialect,
        host="db.internal",
        user="reader",
        password="s3cret-pw",
        database="app",
    )


def make_settings(*descriptors: BackendDescriptor, **overrides: Any) -> Settings:
    backends = {d.name: d for d in descriptors} or {"main": make_descriptor()}
    values: dict[str, Any] = {
        "backends": backends,
        "default_backend": next(iter(backends)),
        "max_rows": 1000,
        "max_rows_limit": 10000,
        "max_query_length": 50000,
        "fetch_size": 500,
        "query_timeout": 30,
        "max_query_timeout": 300,
        "blocklist_path": "",
        "log_level": "INFO",
        "cors_origins": ["http://localhost:5173"],
    }
    values.update(overrides)
    return Settings(**values)


def numbered_rows(count: int) -> tuple[list[tuple[Any, ...]], list[tuple[Any, ...]]]:
    """``count`` rows of (id, name) plus a matching cursor description."""
    rows = [(i, f"customer-{i}") for i in range(1, count + 1)]
    description = [("id", None), ("name", None)]
    return rows, description


def build_adapter(
    dialect: Dialect = Dialect.POSTGRES,
    rows: list[tuple[Any, ...]] | None = None,
    description: list[tuple[Any, ...]] | None = None,
    on_execute: Callable[[FakeCursor, str], None] | None = None,
    fetch_size: int = 500,
):
    cursor = FakeCursor(rows, description, on_execute)
    descriptor = make_descriptor(dialect)
    pool = FakePool(descriptor, FakeConnection(cursor))
    adapter_cls = PostgresAdapter if dialect is Dialect.POSTGRES else MssqlAdapter
    adapter = adapter_cls(descriptor, pool, fetch_size=fetch_size)
    return adapter, pool, cursor


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def customers_adapter():
    """Postgres adapter whose backend holds 5000 customer rows."""
    rows, description = numbered_rows(5000)
    return build_adapter(rows=rows, description=description)
