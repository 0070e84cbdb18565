"""SQL Server adapter (pyodbc)."""

from __future__ import annotations

import re
from typing import Any, Optional

import pyodbc

from ..core.config import Dialect
from ..core.exceptions import (
    DatabaseConnectionError,
    GateError,
    IdentifierRejectedError,
    QueryCancelledError,
    QueryExecutionError,
    QueryTimeoutError,
)
from ..security.identifiers import sanitize_identifier, split_qualified_name
from .base import DatabaseAdapter, QueryPlan
from .catalog import (
    ColumnInfo,
    ConstraintInfo,
    DatabaseInfo,
    ForeignKeyInfo,
    IndexInfo,
    TableInfo,
    TableSchema,
    split_list,
)

DEFAULT_SCHEMA = "dbo"

_TIMEOUT_STATES = ("HYT00", "HYT01")
_CANCEL_STATE = "HY008"
_SUBTREE_COST = re.compile(r'StatementSubTreeCost="([0-9.Ee+-]+)"')

_DATABASES_SQL = """
    SELECT
        d.name,
        CAST(SUM(CAST(mf.size AS BIGINT)) * 8 / 1024 AS VARCHAR(20)) + ' MB' AS size,
        SUSER_SNAME(d.owner_sid) AS owner,
        d.collation_name
    FROM sys.databases d
    LEFT JOIN sys.master_files mf ON mf.database_id = d.database_id
    WHERE d.state_desc = 'ONLINE' AND HAS_DBACCESS(d.name) = 1
    GROUP BY d.name, d.owner_sid, d.collation_name
    ORDER BY d.name
"""

_TABLES_SQL = """
    SELECT
        s.name AS schema_name,
        o.name AS table_name,
        o.type,
        SUM(CASE WHEN p.index_id IN (0, 1) THEN p.rows ELSE 0 END) AS row_count
    FROM {db}sys.objects o
    JOIN {db}sys.schemas s ON o.schema_id = s.schema_id
    LEFT JOIN {db}sys.partitions p ON p.object_id = o.object_id
    WHERE o.type IN ('U', 'V') AND o.is_ms_shipped = 0
      AND (? IS NULL OR s.name = ?)
    GROUP BY s.name, o.name, o.type
    ORDER BY s.name, o.name
"""

_COLUMNS_SQL = """
    SELECT
        c.name,
        ty.name AS data_type,
        c.is_nullable,
        dc.definition,
        c.max_length,
        c.precision,
        c.scale,
        CASE WHEN pk.column_id IS NOT NULL THEN 1 ELSE 0 END AS is_primary_key,
        CASE WHEN EXISTS (
            SELECT 1 FROM {db}sys.foreign_key_columns fkc
            WHERE fkc.parent_object_id = c.object_id AND fkc.parent_column_id = c.column_id
        ) THEN 1 ELSE 0 END AS is_foreign_key
    FROM {db}sys.columns c
    JOIN {db}sys.types ty ON c.user_type_id = ty.user_type_id
    LEFT JOIN {db}sys.default_constraints dc ON c.default_object_id = dc.object_id
    LEFT JOIN (
        SELECT ic.object_id, ic.column_id
        FROM {db}sys.indexes i
        JOIN {db}sys.index_columns ic ON i.object_id = ic.object_id AND i.index_id = ic.index_id
        WHERE i.is_primary_key = 1
    ) pk ON pk.object_id = c.object_id AND pk.column_id = c.column_id
    WHERE c.object_id = OBJECT_ID(?)
    ORDER BY c.column_id
"""

_INDEXES_SQL = """
    SELECT
        i.name,
        STRING_AGG(c.name, ',') WITHIN GROUP (ORDER BY ic.key_ordinal) AS column_names,
        i.is_unique,
        i.is_primary_key,
        i.type_desc
    FROM {db}sys.indexes i
    JOIN {db}sys.index_columns ic ON i.object_id = ic.object_id AND i.index_id = ic.index_id
    JOIN {db}sys.columns c ON ic.object_id = c.object_id AND ic.column_id = c.column_id
    WHERE i.object_id = OBJECT_ID(?) AND i.name IS NOT NULL
    GROUP BY i.name, i.is_unique, i.is_primary_key, i.type_desc
    ORDER BY i.name
"""

_FOREIGN_KEYS_SQL = """
    SELECT
        fk.name,
        STRING_AGG(c.name, ',') WITHIN GROUP (ORDER BY fkc.constraint_column_id) AS column_names,
        rs.name AS referenced_schema,
        ro.name AS referenced_table,
        STRING_AGG(rc.name, ',') WITHIN GROUP (ORDER BY fkc.constraint_column_id) AS referenced_columns,
        fk.delete_referential_action_desc,
        fk.update_referential_action_desc
    FROM {db}sys.foreign_keys fk
    JOIN {db}sys.foreign_key_columns fkc ON fk.object_id = fkc.constraint_object_id
    JOIN {db}sys.columns c ON fkc.parent_object_id = c.object_id AND fkc.parent_column_id = c.column_id
    JOIN {db}sys.columns rc ON fkc.referenced_object_id = rc.object_id AND fkc.referenced_column_id = rc.column_id
    JOIN {db}sys.objects ro ON ro.object_id = fk.referenced_object_id
    JOIN {db}sys.schemas rs ON rs.schema_id = ro.schema_id
    WHERE fk.parent_object_id = OBJECT_ID(?)
    GROUP BY fk.name, rs.name, ro.name, fk.delete_referential_action_desc, fk.update_referential_action_desc
    ORDER BY fk.name
"""

_CONSTRAINTS_SQL = """
    SELECT
        o.name,
        o.type_desc,
        COALESCE(cc.definition, dc.definition, o.type_desc) AS definition
    FROM {db}sys.objects o
    LEFT JOIN {db}sys.check_constraints cc ON cc.object_id = o.object_id
    LEFT JOIN {db}sys.default_constraints dc ON dc.object_id = o.object_id
    WHERE o.parent_object_id = OBJECT_ID(?)
      AND o.type IN ('PK', 'F', 'UQ', 'C', 'D')
    ORDER BY o.type, o.name
"""

_CONSTRAINT_TYPES = {
    "PRIMARY_KEY_CONSTRAINT": "PRIMARY KEY",
    "FOREIGN_KEY_CONSTRAINT": "FOREIGN KEY",
    "UNIQUE_CONSTRAINT": "UNIQUE",
    "CHECK_CONSTRAINT": "CHECK",
    "DEFAULT_CONSTRAINT": "DEFAULT",
}


def _sqlstate(error: BaseException) -> str:
    return str(error.args[0]) if error.args else ""


def _database_prefix(database: Optional[str]) -> str:
    """``[db].`` for three-part catalog names, empty for the connection's database."""
    if not database:
        return ""
    name = sanitize_identifier(database)
    if "." in name:
        raise IdentifierRejectedError(database)
    return f"[{name}]."


class MssqlAdapter(DatabaseAdapter):
    """Connections open with ApplicationIntent=ReadOnly; the query timeout is per connection."""

    dialect = Dialect.MSSQL
    driver_errors = (pyodbc.Error,)
    version_query = "SELECT @@VERSION"

    def _prepare(self, conn: Any, timeout: float) -> None:
        # pyodbc copies Connection.timeout onto a cursor only when it is created
        conn.timeout = max(int(timeout), 1)

    def _begin(self, conn: Any, cursor: Any, timeout: float) -> None:
        pass

    def _finish(self, conn: Any, cursor: Any) -> None:
        try:
            cursor.close()
        finally:
            conn.timeout = 0

    def _cancel(self, conn: Any, cursor: Any) -> None:
        self.logger.info(f"Cancelling running query on {self.descriptor.name}")
        cursor.cancel()

    def _classify(self, error: BaseException, timeout: float, cancelled: bool) -> GateError:
        state = _sqlstate(error)
        detail = error.args[1] if len(error.args) > 1 else str(error)
        message = self._redact(str(detail)).strip()
        dialect = self.dialect.value

        if cancelled:
            return QueryCancelledError("Query cancelled by caller", dialect)
        if state in _TIMEOUT_STATES or state == _CANCEL_STATE:
            return QueryTimeoutError(f"Query exceeded timeout of {timeout} seconds", timeout, dialect)
        if state.startswith("08") or isinstance(error, pyodbc.InterfaceError):
            return DatabaseConnectionError(f"Connection to SQL Server failed: {message}", dialect)
        return QueryExecutionError(f"Failed to execute query: {message}", dialect, {"sqlstate": state or None})

    def list_databases(self) -> list[DatabaseInfo]:
        rows = self._fetch_all(_DATABASES_SQL)
        return [DatabaseInfo(name=r[0], size=r[1], owner=r[2], encoding=r[3]) for r in rows]

    def list_tables(self, database: Optional[str] = None, schema: Optional[str] = None) -> list[TableInfo]:
        prefix = _database_prefix(database)
        if schema is not None:
            schema = sanitize_identifier(schema)
        rows = self._fetch_all(_TABLES_SQL.format(db=prefix), (schema, schema))
        tables = [
            TableInfo(
                schema=r[0],
                name=r[1],
                type="view" if str(r[2]).strip() == "V" else "table",
                row_count=int(r[3]) if r[3] is not None else None,
            )
            for r in rows
        ]
        self.logger.info(f"Listed {len(tables)} tables on {self.descriptor.name}{' in ' + database if database else ''}")
        return tables

    def describe_table(
        self, table: str, schema: Optional[str] = None, database: Optional[str] = None
    ) -> TableSchema:
        prefix = _database_prefix(database)
        qualified_schema, table_name = split_qualified_name(table, schema)
        schema_name = sanitize_identifier(qualified_schema or DEFAULT_SCHEMA)
        object_name = f"{prefix}[{schema_name}].[{table_name}]"
        params = (object_name,)

        result = TableSchema(schema=schema_name, table=table_name)
        for r in self._fetch_all(_COLUMNS_SQL.format(db=prefix), params):
            result.columns.append(
                ColumnInfo(
                    name=r[0],
                    data_type=r[1],
                    nullable=bool(r[2]),
                    default_value=r[3],
                    max_length=r[4],
                    precision=r[5],
                    scale=r[6],
                    is_primary_key=bool(r[7]),
                    is_foreign_key=bool(r[8]),
                )
            )
        if not result.columns:
            raise QueryExecutionError(f"Table not found: {schema_name}.{table_name}", self.dialect.value)

        for r in self._fetch_all(_INDEXES_SQL.format(db=prefix), params):
            result.indexes.append(
                IndexInfo(name=r[0], columns=split_list(r[1]), is_unique=bool(r[2]), is_primary=bool(r[3]), type=r[4])
            )
        for r in self._fetch_all(_FOREIGN_KEYS_SQL.format(db=prefix), params):
            result.foreign_keys.append(
                ForeignKeyInfo(
                    name=r[0],
                    columns=split_list(r[1]),
                    referenced_schema=r[2],
                    referenced_table=r[3],
                    referenced_columns=split_list(r[4]),
                    on_delete=str(r[5]).replace("_", " ") if r[5] else None,
                    on_update=str(r[6]).replace("_", " ") if r[6] else None,
                )
            )
        for r in self._fetch_all(_CONSTRAINTS_SQL.format(db=prefix), params):
            result.constraints.append(
                ConstraintInfo(name=r[0], type=_CONSTRAINT_TYPES.get(r[1], r[1]), definition=r[2])
            )
        return result

    def get_query_plan(self, query: str) -> QueryPlan:
        """Estimated plan via SHOWPLAN_XML; the statement itself is not executed."""
        timeout = self.descriptor.command_timeout
        with self.pool.connection() as conn:
            self._prepare(conn, timeout)
            cursor = conn.cursor()
            try:
                self._begin(conn, cursor, timeout)
                # SHOWPLAN must be the only statement in its batch
                cursor.execute("SET SHOWPLAN_XML ON")
                try:
                    cursor.execute(query)
                    row = cursor.fetchone()
                finally:
                    cursor.execute("SET SHOWPLAN_XML OFF")
            except self.driver_errors as e:
                error = self._classify(e, timeout, cancelled=False)
                self.logger.error(f"Plan request failed on {self.descriptor.name}: {error.message}")
                raise error from e
            finally:
                self._safe_finish(conn, cursor)

        plan = str(row[0]) if row else ""
        match = _SUBTREE_COST.search(plan)
        estimated_cost = float(match.group(1)) if match else None
        return QueryPlan(plan=plan, format="xml", estimated_cost=estimated_cost)
