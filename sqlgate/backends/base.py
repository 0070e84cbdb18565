"""Capability interface shared by every backend adapter."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
import logging
import threading
import time
from typing import Any, Callable, Optional, Sequence

from ..core.config import BackendDescriptor, Dialect
from ..core.db import ConnectionPool, normalize_value, redact
from ..core.exceptions import GateError, QueryCancelledError
from ..security.limits import LimitOutcome, enforcer_for
from .catalog import DatabaseInfo, TableInfo, TableSchema


@dataclass
class QueryResult:
    columns: list[str]
    rows: list[dict[str, Any]]
    row_count: int
    truncated: bool
    execution_time_ms: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class QueryPlan:
    plan: str
    format: str  # "json" | "xml" | "text"
    estimated_cost: Optional[float] = None


def unique_columns(description: Optional[Sequence[Sequence[Any]]]) -> list[str]:
    """Column names from a DB-API description, suffixing duplicates (_2, _3, ...)."""
    if not description:
        return []
    seen: dict[str, int] = {}
    columns: list[str] = []
    for col in description:
        name = str(col[0]) if col[0] else "column"
        if name in seen:
            seen[name] += 1
            candidate = f"{name}_{seen[name]}"
            while candidate in seen:
                seen[name] += 1
                candidate = f"{name}_{seen[name]}"
            name = candidate
        seen.setdefault(name, 1)
        columns.append(name)
    return columns


class CancelWatcher:
    """Runs ``on_cancel`` from a helper thread if ``event`` fires while active."""

    def __init__(
        self,
        event: Optional[threading.Event],
        on_cancel: Callable[[], None],
        poll_interval: float = 0.05,
    ) -> None:
        self._event = event
        self._on_cancel = on_cancel
        self._poll_interval = poll_interval
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.fired = False

    def _run(self) -> None:
        assert self._event is not None
        while not self._done.is_set():
            if self._event.wait(self._poll_interval):
                if not self._done.is_set():
                    self.fired = True
                    self._on_cancel()
                return

    def __enter__(self) -> CancelWatcher:
        if self._event is not None:
            self._thread = threading.Thread(target=self._run, name="sqlgate-cancel", daemon=True)
            self._thread.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._done.set()
        if self._thread is not None:
            self._thread.join()


class DatabaseAdapter(ABC):
    """Common capability surface: connect, catalog calls, bounded execution, plans.

    Subclasses provide the dialect-specific SQL text, timeout handling, driver
    cancellation and error classification. Connections are borrowed from the
    pool for exactly one call and always released.
    """

    dialect: Dialect

    def __init__(
        self,
        descriptor: BackendDescriptor,
        pool: ConnectionPool,
        logger: Optional[logging.Logger] = None,
        fetch_size: int = 500,
    ) -> None:
        self.descriptor = descriptor
        self.pool = pool
        self.logger = logger or logging.getLogger(f"{__name__}.{descriptor.name}")
        self.fetch_size = max(fetch_size, 1)

    # --- Dialect hooks ---

    driver_errors: tuple[type[BaseException], ...] = ()

    def _prepare(self, conn: Any, timeout: float) -> None:
        """Connection-level settings that must exist before the cursor is created."""

    @abstractmethod
    def _begin(self, conn: Any, cursor: Any, timeout: float) -> None:
        """Prepare a borrowed connection (read-only mode, command timeout)."""

    @abstractmethod
    def _finish(self, conn: Any, cursor: Any) -> None:
        """Undo _begin before the connection goes back to the pool."""

    @abstractmethod
    def _cancel(self, conn: Any, cursor: Any) -> None:
        """Abort the in-flight statement from another thread."""

    @abstractmethod
    def _classify(self, error: BaseException, timeout: float, cancelled: bool) -> GateError:
        """Map a driver error onto the gate's error taxonomy."""

    @property
    @abstractmethod
    def version_query(self) -> str: ...

    # --- Capability interface ---

    def enforce_limit(self, query: str, max_rows: int) -> LimitOutcome:
        return enforcer_for(self.dialect)(query, max_rows)

    def connect(self) -> str:
        """Verify connectivity and return the server version string."""
        rows = self._fetch_all(self.version_query)
        version = str(rows[0][0]) if rows else "Unknown"
        self.logger.info(
            f"{self.dialect.value} connection established: "
            f"{self.descriptor.host}:{self.descriptor.port}/{self.descriptor.database or '-'}"
        )
        return version

    @abstractmethod
    def list_databases(self) -> list[DatabaseInfo]: ...

    @abstractmethod
    def list_tables(self, database: Optional[str] = None, schema: Optional[str] = None) -> list[TableInfo]: ...

    @abstractmethod
    def describe_table(
        self, table: str, schema: Optional[str] = None, database: Optional[str] = None
    ) -> TableSchema: ...

    @abstractmethod
    def get_query_plan(self, query: str) -> QueryPlan: ...

    def execute_query(
        self,
        query: str,
        max_rows: int,
        timeout: float,
        cancel_event: Optional[threading.Event] = None,
    ) -> QueryResult:
        """Run ``query`` and return at most ``max_rows`` rows.

        Rows are streamed in ``fetch_size`` batches; consumption stops as soon
        as the cap is reached and another row exists (``truncated``). Setting
        ``cancel_event`` aborts the database call and discards partial rows.
        """
        if max_rows < 1:
            raise ValueError(f"max_rows must be positive, got {max_rows}")
        if cancel_event is not None and cancel_event.is_set():
            raise QueryCancelledError("Query cancelled before execution", self.dialect.value)

        self.logger.debug(
            f"Executing SQL on {self.descriptor.name} (limit={max_rows}, timeout={timeout}s): {query[:200]}"
        )
        start = time.perf_counter()

        with self.pool.connection() as conn:
            self._prepare(conn, timeout)
            cursor = conn.cursor()
            watcher = CancelWatcher(cancel_event, lambda: self._cancel(conn, cursor))
            try:
                with watcher:
                    self._begin(conn, cursor, timeout)
                    cursor.execute(query)
                    columns, rows, truncated = self._stream(cursor, max_rows, cancel_event)
            except self.driver_errors as e:
                error = self._classify(e, timeout, cancelled=watcher.fired)
                self.logger.error(f"Query failed on {self.descriptor.name} ({error.kind}): {error.message}")
                raise error from e
            finally:
                self._safe_finish(conn, cursor)

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        self.logger.info(
            f"Query returned {len(rows)} rows from {self.descriptor.name} in {elapsed_ms} ms"
            + (" (truncated)" if truncated else "")
        )
        return QueryResult(
            columns=columns,
            rows=rows,
            row_count=len(rows),
            truncated=truncated,
            execution_time_ms=elapsed_ms,
        )

    # --- Helpers ---

    def _stream(
        self,
        cursor: Any,
        max_rows: int,
        cancel_event: Optional[threading.Event],
    ) -> tuple[list[str], list[dict[str, Any]], bool]:
        columns = unique_columns(cursor.description)
        rows: list[dict[str, Any]] = []
        truncated = False
        if not columns:
            return columns, rows, truncated

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise QueryCancelledError("Query cancelled by caller", self.dialect.value)
            batch = cursor.fetchmany(self.fetch_size)
            if not batch:
                break
            for row in batch:
                if len(rows) >= max_rows:
                    truncated = True
                    break
                rows.append({col: normalize_value(value) for col, value in zip(columns, row)})
            if truncated:
                break
        return columns, rows, truncated

    def _safe_finish(self, conn: Any, cursor: Any) -> None:
        try:
            self._finish(conn, cursor)
        except self.driver_errors as e:
            self.logger.warning(f"Failed to reset connection for {self.descriptor.name}: {e}")

    def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[Any]:
        """Run an internal catalog query and return every row."""
        timeout = self.descriptor.command_timeout
        with self.pool.connection() as conn:
            self._prepare(conn, timeout)
            cursor = conn.cursor()
            try:
                self._begin(conn, cursor, timeout)
                if params:
                    cursor.execute(sql, params)
                else:
                    cursor.execute(sql)
                return list(cursor.fetchall())
            except self.driver_errors as e:
                error = self._classify(e, timeout, cancelled=False)
                self.logger.error(f"Catalog query failed on {self.descriptor.name}: {error.message}")
                raise error from e
            finally:
                self._safe_finish(conn, cursor)

    def _redact(self, message: str) -> str:
        return redact(message, self.descriptor)
