"""Connection pools and value normalization.

Pools are owned by the process, not by the gate: the gate borrows one
connection per query through ``pool.connection()`` and always gives it back.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, time
from decimal import Decimal
import logging
from typing import Any, Generator, Optional, Protocol
from uuid import UUID

import psycopg2
from psycopg2 import pool as pg_pool
import pyodbc

from .config import BackendDescriptor, Dialect
from .exceptions import ConfigurationError, DatabaseConnectionError

logger = logging.getLogger(__name__)

# ODBC driver-manager pooling must be configured before the first connect
pyodbc.pooling = True


def redact(message: str, descriptor: BackendDescriptor) -> str:
    """Remove the backend password from a driver message."""
    if descriptor.password:
        message = message.replace(descriptor.password, "***")
    return message


class ConnectionPool(Protocol):
    """What the gate needs from a pool."""

    descriptor: BackendDescriptor

    def acquire(self) -> Any: ...

    def release(self, conn: Any, discard: bool = False) -> None: ...

    def connection(self) -> Any: ...

    def close(self) -> None: ...


class _PoolBase:
    descriptor: BackendDescriptor

    def acquire(self) -> Any:
        raise NotImplementedError

    def release(self, conn: Any, discard: bool = False) -> None:
        raise NotImplementedError

    @contextmanager
    def connection(self) -> Generator[Any, None, None]:
        """Borrow a connection for one unit of work.

        Example:
            with pool.connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT 1")
        """
        conn = self.acquire()
        discard = False
        try:
            yield conn
        except BaseException:
            # Connection state is unknown after a failure mid-query
            discard = True
            raise
        finally:
            self.release(conn, discard=discard)


class PostgresConnectionPool(_PoolBase):
    """Thread-safe pool backed by psycopg2's ThreadedConnectionPool."""

    def __init__(self, descriptor: BackendDescriptor, minconn: int = 0, maxconn: int = 10) -> None:
        if descriptor.dialect is not Dialect.POSTGRES:
            raise ConfigurationError(f"Backend '{descriptor.name}' is not a PostgreSQL backend")
        self.descriptor = descriptor
        self._minconn = minconn
        self._maxconn = maxconn
        self._pool: Optional[pg_pool.ThreadedConnectionPool] = None

    def _ensure_pool(self) -> pg_pool.ThreadedConnectionPool:
        if self._pool is None:
            try:
                self._pool = pg_pool.ThreadedConnectionPool(
                    self._minconn, self._maxconn, **self.descriptor.psycopg_kwargs
                )
            except psycopg2.Error as e:
                message = redact(str(e), self.descriptor)
                logger.error(f"Failed to create pool for {self.descriptor.name}: {message}")
                raise DatabaseConnectionError(
                    f"Failed to connect to PostgreSQL at {self.descriptor.host}:{self.descriptor.port}: {message}",
                    Dialect.POSTGRES.value,
                ) from None
        return self._pool

    def acquire(self) -> Any:
        pool = self._ensure_pool()
        try:
            return pool.getconn()
        except (psycopg2.Error, pg_pool.PoolError) as e:
            message = redact(str(e), self.descriptor)
            logger.error(f"Failed to acquire connection for {self.descriptor.name}: {message}")
            raise DatabaseConnectionError(
                f"Failed to connect to PostgreSQL at {self.descriptor.host}:{self.descriptor.port}: {message}",
                Dialect.POSTGRES.value,
            ) from None

    def release(self, conn: Any, discard: bool = False) -> None:
        if self._pool is None:
            return
        self._pool.putconn(conn, close=discard or bool(conn.closed))

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info(f"PostgreSQL pool for {self.descriptor.name} closed")


class OdbcConnectionPool(_PoolBase):
    """SQL Server connections through pyodbc; reuse is handled by ODBC pooling."""

    def __init__(self, descriptor: BackendDescriptor) -> None:
        if descriptor.dialect is not Dialect.MSSQL:
            raise ConfigurationError(f"Backend '{descriptor.name}' is not a SQL Server backend")
        self.descriptor = descriptor

    def acquire(self) -> Any:
        try:
            return pyodbc.connect(
                self.descriptor.odbc_connection_string,
                timeout=self.descriptor.connect_timeout,
                autocommit=True,
            )
        except pyodbc.Error as e:
            message = redact(str(e), self.descriptor)
            logger.error(f"Failed to connect to database {self.descriptor.name}: {message}")
            raise DatabaseConnectionError(
                f"Failed to connect to SQL Server at {self.descriptor.host}:{self.descriptor.port}: {message}",
                Dialect.MSSQL.value,
            ) from None

    def release(self, conn: Any, discard: bool = False) -> None:
        # close() hands the handle back to the driver manager pool
        try:
            conn.close()
        except pyodbc.Error as e:
            logger.warning(f"Error closing connection for {self.descriptor.name}: {e}")

    def close(self) -> None:
        pass


def create_pool(descriptor: BackendDescriptor) -> ConnectionPool:
    if descriptor.dialect is Dialect.POSTGRES:
        return PostgresConnectionPool(descriptor)
    if descriptor.dialect is Dialect.MSSQL:
        return OdbcConnectionPool(descriptor)
    raise ConfigurationError(f"Unsupported database type: {descriptor.dialect}")


def normalize_value(value: Any) -> Any:
    """Normalize database values for JSON serialization."""
    if value is None:
        return None
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, memoryview):
        value = bytes(value)
    if isinstance(value, (bytes, bytearray)):
        # Try to decode as UTF-8, otherwise return hex representation
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return bytes(value).hex()
    return value
