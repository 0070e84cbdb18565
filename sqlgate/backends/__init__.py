"""Backend adapters: one per supported dialect behind a shared capability interface."""

from __future__ import annotations

import logging
from typing import Optional

from ..core.config import BackendDescriptor, Dialect
from ..core.db import ConnectionPool, create_pool
from ..core.exceptions import ConfigurationError
from .base import DatabaseAdapter, QueryPlan, QueryResult
from .mssql import MssqlAdapter
from .postgres import PostgresAdapter

_ADAPTERS: dict[Dialect, type[DatabaseAdapter]] = {
    Dialect.POSTGRES: PostgresAdapter,
    Dialect.MSSQL: MssqlAdapter,
}


def create_adapter(
    descriptor: BackendDescriptor,
    pool: Optional[ConnectionPool] = None,
    logger: Optional[logging.Logger] = None,
    fetch_size: int = 500,
) -> DatabaseAdapter:
    """Build the adapter for ``descriptor.dialect``, creating a pool when none is given."""
    adapter_cls = _ADAPTERS.get(descriptor.dialect)
    if adapter_cls is None:
        raise ConfigurationError(f"Unsupported database type: {descriptor.dialect}")
    return adapter_cls(
        descriptor,
        pool if pool is not None else create_pool(descriptor),
        logger=logger,
        fetch_size=fetch_size,
    )


__all__ = [
    "DatabaseAdapter",
    "MssqlAdapter",
    "PostgresAdapter",
    "QueryPlan",
    "QueryResult",
    "create_adapter",
]
