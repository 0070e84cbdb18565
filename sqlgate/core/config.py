"""Gate configuration with support for multiple database backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import os
from typing import Optional

from dotenv import load_dotenv

from .exceptions import BackendNotFoundError, ConfigurationError

load_dotenv(override=False)


class Dialect(str, Enum):
    """Supported database engines."""
    POSTGRES = "postgres"
    MSSQL = "mssql"

    @property
    def default_port(self) -> int:
        return 5432 if self is Dialect.POSTGRES else 1433


@dataclass(frozen=True)
class BackendDescriptor:
    """Connection target for a single backend. Owned by the pool, borrowed by the gate."""
    name: str
    dialect: Dialect
    host: str
    user: str
    password: str = field(repr=False)
    port: int = 0
    database: str = ""
    connect_timeout: int = 30
    command_timeout: int = 30
    ssl: bool = False
    driver: str = "ODBC Driver 18 for SQL Server"

    def __post_init__(self) -> None:
        if not self.port:
            object.__setattr__(self, "port", self.dialect.default_port)

    @property
    def odbc_connection_string(self) -> str:
        """Generate pyodbc connection string (SQL Server only)."""
        encrypt = "yes" if self.ssl else "no"
        base = (
            f"DRIVER={{{self.driver}}};"
            f"SERVER={self.host},{self.port};"
        )
        if self.database:
            base += f"DATABASE={self.database};"
        return (
            base
            + f"UID={self.user};PWD={self.password};"
            + f"Encrypt={encrypt};TrustServerCertificate=yes;"
            + "ApplicationIntent=ReadOnly;"
        )

    @property
    def psycopg_kwargs(self) -> dict[str, object]:
        """Keyword arguments for psycopg2.connect (PostgreSQL only)."""
        kwargs: dict[str, object] = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
            "application_name": "sqlgate",
        }
        if self.database:
            kwargs["dbname"] = self.database
        if self.ssl:
            kwargs["sslmode"] = "require"
        return kwargs

    def public_info(self) -> dict[str, object]:
        """Descriptor fields that are safe to show to callers."""
        return {
            "name": self.name,
            "dialect": self.dialect.value,
            "host": self.host,
            "port": self.port,
            "database": self.database,
        }


@dataclass(frozen=True)
class Settings:
    """Gate settings. Read-only after startup."""
    backends: dict[str, BackendDescriptor]
    default_backend: str

    # Row and size limits
    max_rows: int
    max_rows_limit: int
    max_query_length: int
    fetch_size: int

    # Timeouts (seconds)
    query_timeout: int
    max_query_timeout: int

    # Optional YAML file extending the built-in blocklists
    blocklist_path: str

    log_level: str
    cors_origins: list[str]

    def get_backend(self, name: Optional[str] = None) -> BackendDescriptor:
        """Get a backend descriptor by name (default backend when name is None)."""
        key = (name or self.default_backend).lower()
        descriptor = self.backends.get(key)
        if descriptor is None:
            raise BackendNotFoundError(key)
        return descriptor

    def clamp_rows(self, requested: Optional[int]) -> int:
        """Effective row cap: the requested value bounded by the hard limit."""
        if requested is None or requested < 1:
            requested = self.max_rows
        return min(requested, self.max_rows_limit)

    def clamp_timeout(self, requested: Optional[int]) -> int:
        if requested is None or requested < 1:
            requested = self.query_timeout
        return min(requested, self.max_query_timeout)


_TRUE_VALUES = ("1", "true", "yes", "y", "sspi")

_KEY_ALIASES = {
    "type": "dialect",
    "dbtype": "dialect",
    "host": "host",
    "server": "host",
    "data_source": "host",
    "port": "port",
    "user": "user",
    "username": "user",
    "user_id": "user",
    "uid": "user",
    "password": "password",
    "pwd": "password",
    "database": "database",
    "initial_catalog": "database",
    "connectiontimeout": "connect_timeout",
    "connect_timeout": "connect_timeout",
    "commandtimeout": "command_timeout",
    "request_timeout": "command_timeout",
    "ssl": "ssl",
    "encrypt": "ssl",
    "driver": "driver",
}


def _parse_int(value: str, key: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Invalid integer for {key}: {value!r}") from None


def parse_connection_string(conn_str: str) -> dict[str, str]:
    """Parse a ``key=value;key=value`` connection string into canonical keys.

    Accepts both ADO.NET style keys (``Data Source``, ``Initial Catalog``,
    ``User ID``) and short keys (``host``, ``user``). Unknown keys are ignored.
    """
    result: dict[str, str] = {}
    if not conn_str:
        return result

    for part in conn_str.split(";"):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        key = key.strip().lower().replace(" ", "_")
        value = value.strip()
        canonical = _KEY_ALIASES.get(key)
        if canonical and value:
            result[canonical] = value

    return result


def descriptor_from_mapping(name: str, values: dict[str, str]) -> BackendDescriptor:
    """Build a descriptor from canonical keys, validating required fields."""
    dialect_value = values.get("dialect", "").lower()
    if dialect_value in ("postgresql", "pg"):
        dialect_value = Dialect.POSTGRES.value
    if dialect_value in ("sqlserver", "sql_server"):
        dialect_value = Dialect.MSSQL.value
    try:
        dialect = Dialect(dialect_value)
    except ValueError:
        raise ConfigurationError(
            f"Backend '{name}': database type is required (type=mssql or type=postgres)"
        ) from None

    for required in ("host", "user", "password"):
        if not values.get(required):
            raise ConfigurationError(f"Backend '{name}': database {required} is required")

    kwargs: dict[str, object] = {}
    if values.get("driver"):
        kwargs["driver"] = values["driver"]

    return BackendDescriptor(
        name=name,
        dialect=dialect,
        host=values["host"],
        user=values["user"],
        password=values["password"],
        port=_parse_int(values["port"], "port") if values.get("port") else 0,
        database=values.get("database", ""),
        connect_timeout=_parse_int(values.get("connect_timeout", "30"), "connect_timeout"),
        command_timeout=_parse_int(values.get("command_timeout", "30"), "command_timeout"),
        ssl=values.get("ssl", "").lower() in _TRUE_VALUES,
        **kwargs,
    )


def _create_backend_from_env(name: str) -> Optional[BackendDescriptor]:
    """Create a BackendDescriptor from environment variables.

    Supports both a single ``DB_<NAME>_CONNECTION_STRING`` and individual vars.
    """
    prefix = f"DB_{name.upper()}"

    conn_str = os.getenv(f"{prefix}_CONNECTION_STRING", "")
    if conn_str:
        return descriptor_from_mapping(name, parse_connection_string(conn_str))

    # Fall back to individual env vars
    host = os.getenv(f"{prefix}_HOST", "")
    if not host:
        return None

    values = {
        "dialect": os.getenv(f"{prefix}_TYPE", ""),
        "host": host,
        "port": os.getenv(f"{prefix}_PORT", ""),
        "user": os.getenv(f"{prefix}_USER", ""),
        "password": os.getenv(f"{prefix}_PASSWORD", ""),
        "database": os.getenv(f"{prefix}_DATABASE", ""),
        "connect_timeout": os.getenv(f"{prefix}_CONNECT_TIMEOUT", "30"),
        "command_timeout": os.getenv(f"{prefix}_COMMAND_TIMEOUT", "30"),
        "ssl": os.getenv(f"{prefix}_SSL", ""),
        "driver": os.getenv(f"{prefix}_DRIVER", ""),
    }
    return descriptor_from_mapping(name, values)


def get_settings() -> Settings:
    """Load settings from environment variables."""
    names = [n.strip().lower() for n in os.getenv("GATE_BACKENDS", "default").split(",") if n.strip()]

    backends: dict[str, BackendDescriptor] = {}
    for name in names:
        descriptor = _create_backend_from_env(name)
        if descriptor is not None:
            backends[name] = descriptor

    default_backend = os.getenv("GATE_DEFAULT_BACKEND", names[0] if names else "default").lower()

    max_rows_limit = int(os.getenv("GATE_MAX_ROWS_LIMIT", "10000"))
    max_query_timeout = int(os.getenv("GATE_MAX_QUERY_TIMEOUT", "300"))
    cors = os.getenv("CORS_ORIGINS", "http://localhost:5173")

    return Settings(
        backends=backends,
        default_backend=default_backend,

        # Limits
        max_rows=min(int(os.getenv("GATE_MAX_ROWS", "1000")), max_rows_limit),
        max_rows_limit=max_rows_limit,
        max_query_length=int(os.getenv("GATE_MAX_QUERY_LENGTH", "50000")),
        fetch_size=int(os.getenv("GATE_FETCH_SIZE", "500")),

        # Timeouts
        query_timeout=min(int(os.getenv("GATE_QUERY_TIMEOUT", "30")), max_query_timeout),
        max_query_timeout=max_query_timeout,

        blocklist_path=os.getenv("GATE_BLOCKLIST_PATH", ""),
        log_level=os.getenv("GATE_LOG_LEVEL", "INFO").upper(),
        cors_origins=[origin.strip() for origin in cors.split(",") if origin.strip()],
    )


# Singleton for caching settings
_settings_cache: Optional[Settings] = None


def get_cached_settings() -> Settings:
    """Get cached settings (loads once)."""
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = get_settings()
    return _settings_cache


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    global _settings_cache
    _settings_cache = None
