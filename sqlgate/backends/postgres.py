"""PostgreSQL adapter (psycopg2)."""

from __future__ import annotations

import json
from typing import Any, Optional

import psycopg2
from psycopg2 import errors as pg_errors

from ..core.config import Dialect
from ..core.exceptions import (
    DatabaseConnectionError,
    GateError,
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

DEFAULT_SCHEMA = "public"

_REFERENTIAL_ACTIONS = {
    "a": "NO ACTION",
    "r": "RESTRICT",
    "c": "CASCADE",
    "n": "SET NULL",
    "d": "SET DEFAULT",
}

_CONSTRAINT_TYPES = {
    "p": "PRIMARY KEY",
    "f": "FOREIGN KEY",
    "u": "UNIQUE",
    "c": "CHECK",
    "x": "EXCLUDE",
}

_DATABASES_SQL = """
    SELECT
        d.datname AS name,
        pg_size_pretty(pg_database_size(d.datname)) AS size,
        pg_get_userbyid(d.datdba) AS owner,
        pg_encoding_to_char(d.encoding) AS encoding
    FROM pg_database d
    WHERE d.datistemplate = false
      AND has_database_privilege(d.datname, 'CONNECT')
    ORDER BY d.datname
"""

_TABLES_SQL = """
    SELECT
        t.table_schema,
        t.table_name,
        t.table_type,
        c.reltuples::bigint AS row_count,
        pg_size_pretty(pg_total_relation_size(c.oid)) AS size_estimate
    FROM information_schema.tables t
    LEFT JOIN pg_namespace n ON n.nspname = t.table_schema
    LEFT JOIN pg_class c ON c.relnamespace = n.oid AND c.relname = t.table_name
    WHERE t.table_schema NOT IN ('pg_catalog', 'information_schema')
      AND t.table_schema NOT LIKE 'pg_toast%%'
      AND (%s IS NULL OR t.table_schema = %s)
    ORDER BY t.table_schema, t.table_name
"""

_COLUMNS_SQL = """
    SELECT
        c.column_name,
        c.data_type,
        c.is_nullable = 'YES' AS nullable,
        c.column_default,
        c.character_maximum_length,
        c.numeric_precision,
        c.numeric_scale,
        EXISTS (
            SELECT 1
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage ku
              ON tc.constraint_name = ku.constraint_name
             AND tc.table_schema = ku.table_schema
             AND tc.table_name = ku.table_name
            WHERE tc.constraint_type = 'PRIMARY KEY'
              AND tc.table_schema = c.table_schema
              AND tc.table_name = c.table_name
              AND ku.column_name = c.column_name
        ) AS is_primary_key,
        EXISTS (
            SELECT 1
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage ku
              ON tc.constraint_name = ku.constraint_name
             AND tc.table_schema = ku.table_schema
             AND tc.table_name = ku.table_name
            WHERE tc.constraint_type = 'FOREIGN KEY'
              AND tc.table_schema = c.table_schema
              AND tc.table_name = c.table_name
              AND ku.column_name = c.column_name
        ) AS is_foreign_key
    FROM information_schema.columns c
    WHERE c.table_schema = %s AND c.table_name = %s
    ORDER BY c.ordinal_position
"""

_INDEXES_SQL = """
    SELECT
        i.relname AS index_name,
        array_to_string(array_agg(a.attname ORDER BY k.ord), ',') AS column_names,
        ix.indisunique,
        ix.indisprimary,
        am.amname
    FROM pg_class t
    JOIN pg_namespace n ON n.oid = t.relnamespace
    JOIN pg_index ix ON ix.indrelid = t.oid
    JOIN pg_class i ON i.oid = ix.indexrelid
    JOIN pg_am am ON am.oid = i.relam
    CROSS JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS k(attnum, ord)
    JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum
    WHERE n.nspname = %s AND t.relname = %s
    GROUP BY i.relname, ix.indisunique, ix.indisprimary, am.amname
    ORDER BY i.relname
"""

_FOREIGN_KEYS_SQL = """
    SELECT
        con.conname,
        array_to_string(ARRAY(
            SELECT a.attname
            FROM unnest(con.conkey) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = k.attnum
            ORDER BY k.ord
        ), ',') AS column_names,
        rn.nspname AS referenced_schema,
        rt.relname AS referenced_table,
        array_to_string(ARRAY(
            SELECT a.attname
            FROM unnest(con.confkey) WITH ORDINALITY AS k(attnum, ord)
            JOIN pg_attribute a ON a.attrelid = con.confrelid AND a.attnum = k.attnum
            ORDER BY k.ord
        ), ',') AS referenced_columns,
        con.confdeltype,
        con.confupdtype
    FROM pg_constraint con
    JOIN pg_class t ON t.oid = con.conrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    JOIN pg_class rt ON rt.oid = con.confrelid
    JOIN pg_namespace rn ON rn.oid = rt.relnamespace
    WHERE con.contype = 'f' AND n.nspname = %s AND t.relname = %s
    ORDER BY con.conname
"""

_CONSTRAINTS_SQL = """
    SELECT
        con.conname,
        con.contype,
        pg_get_constraintdef(con.oid) AS definition
    FROM pg_constraint con
    JOIN pg_class t ON t.oid = con.conrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    WHERE n.nspname = %s AND t.relname = %s
    ORDER BY con.contype, con.conname
"""


class PostgresAdapter(DatabaseAdapter):
    """Runs every call inside a read-only transaction that is rolled back afterwards."""

    dialect = Dialect.POSTGRES
    driver_errors = (psycopg2.Error,)
    version_query = "SELECT version()"

    def _begin(self, conn: Any, cursor: Any, timeout: float) -> None:
        # Session characteristics can only change outside a transaction
        conn.rollback()
        conn.autocommit = False
        conn.readonly = True
        cursor.execute("SET LOCAL statement_timeout = %s", (int(timeout * 1000),))

    def _finish(self, conn: Any, cursor: Any) -> None:
        try:
            cursor.close()
        finally:
            if not conn.closed:
                conn.rollback()

    def _cancel(self, conn: Any, cursor: Any) -> None:
        self.logger.info(f"Cancelling running query on {self.descriptor.name}")
        conn.cancel()

    def _classify(self, error: BaseException, timeout: float, cancelled: bool) -> GateError:
        message = self._redact(getattr(error, "pgerror", None) or str(error)).strip()
        dialect = self.dialect.value

        # QueryCanceled is a subclass of OperationalError
        if isinstance(error, pg_errors.QueryCanceled):
            if cancelled:
                return QueryCancelledError("Query cancelled by caller", dialect)
            return QueryTimeoutError(f"Query exceeded timeout of {timeout} seconds", timeout, dialect)
        if isinstance(error, (psycopg2.OperationalError, psycopg2.InterfaceError)):
            return DatabaseConnectionError(f"Connection to PostgreSQL failed: {message}", dialect)
        return QueryExecutionError(
            f"Failed to execute query: {message}",
            dialect,
            {"sqlstate": getattr(error, "pgcode", None)},
        )

    def _check_database(self, database: Optional[str]) -> None:
        if database and database != self.descriptor.database:
            sanitize_identifier(database)
            raise QueryExecutionError(
                f"PostgreSQL cannot query catalog of database '{database}' from a connection to "
                f"'{self.descriptor.database or '-'}'. Configure a separate backend for it.",
                self.dialect.value,
            )

    def list_databases(self) -> list[DatabaseInfo]:
        rows = self._fetch_all(_DATABASES_SQL)
        return [DatabaseInfo(name=r[0], size=r[1], owner=r[2], encoding=r[3]) for r in rows]

    def list_tables(self, database: Optional[str] = None, schema: Optional[str] = None) -> list[TableInfo]:
        self._check_database(database)
        if schema is not None:
            schema = sanitize_identifier(schema)
        rows = self._fetch_all(_TABLES_SQL, (schema, schema))
        tables = []
        for r in rows:
            row_count = int(r[3]) if r[3] is not None and r[3] >= 0 else None
            tables.append(
                TableInfo(
                    schema=r[0],
                    name=r[1],
                    type="view" if r[2] == "VIEW" else "table",
                    row_count=row_count,
                    size_estimate=r[4],
                )
            )
        self.logger.info(f"Listed {len(tables)} tables on {self.descriptor.name}")
        return tables

    def describe_table(
        self, table: str, schema: Optional[str] = None, database: Optional[str] = None
    ) -> TableSchema:
        self._check_database(database)
        qualified_schema, table_name = split_qualified_name(table, schema)
        schema_name = sanitize_identifier(qualified_schema or DEFAULT_SCHEMA)
        params = (schema_name, table_name)

        result = TableSchema(schema=schema_name, table=table_name)
        for r in self._fetch_all(_COLUMNS_SQL, params):
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
            raise QueryExecutionError(
                f"Table not found: {schema_name}.{table_name}", self.dialect.value
            )

        for r in self._fetch_all(_INDEXES_SQL, params):
            result.indexes.append(
                IndexInfo(name=r[0], columns=split_list(r[1]), is_unique=bool(r[2]), is_primary=bool(r[3]), type=r[4])
            )
        for r in self._fetch_all(_FOREIGN_KEYS_SQL, params):
            result.foreign_keys.append(
                ForeignKeyInfo(
                    name=r[0],
                    columns=split_list(r[1]),
                    referenced_schema=r[2],
                    referenced_table=r[3],
                    referenced_columns=split_list(r[4]),
                    on_delete=_REFERENTIAL_ACTIONS.get(r[5], r[5]),
                    on_update=_REFERENTIAL_ACTIONS.get(r[6], r[6]),
                )
            )
        for r in self._fetch_all(_CONSTRAINTS_SQL, params):
            result.constraints.append(
                ConstraintInfo(name=r[0], type=_CONSTRAINT_TYPES.get(r[1], r[1]), definition=r[2])
            )
        return result

    def get_query_plan(self, query: str) -> QueryPlan:
        rows = self._fetch_all(f"EXPLAIN (FORMAT JSON) {query}")
        raw = rows[0][0] if rows else []
        plan_json = json.loads(raw) if isinstance(raw, str) else raw

        estimated_cost = None
        try:
            estimated_cost = float(plan_json[0]["Plan"]["Total Cost"])
        except (IndexError, KeyError, TypeError, ValueError):
            self.logger.debug("Plan output carried no total cost")

        return QueryPlan(plan=json.dumps(plan_json, indent=2), format="json", estimated_cost=estimated_cost)
