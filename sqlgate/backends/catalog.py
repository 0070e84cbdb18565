"""Output shapes of catalog introspection calls."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass
class DatabaseInfo:
    name: str
    size: Optional[str] = None
    owner: Optional[str] = None
    encoding: Optional[str] = None


@dataclass
class TableInfo:
    schema: str
    name: str
    type: str = "table"  # "table" | "view"
    row_count: Optional[int] = None
    size_estimate: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.schema}.{self.name}"


@dataclass
class ColumnInfo:
    name: str
    data_type: str
    nullable: bool
    default_value: Optional[str] = None
    is_primary_key: bool = False
    is_foreign_key: bool = False
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None


@dataclass
class IndexInfo:
    name: str
    columns: list[str] = field(default_factory=list)
    is_unique: bool = False
    is_primary: bool = False
    type: Optional[str] = None


@dataclass
class ForeignKeyInfo:
    name: str
    columns: list[str]
    referenced_schema: str
    referenced_table: str
    referenced_columns: list[str]
    on_delete: Optional[str] = None
    on_update: Optional[str] = None


@dataclass
class ConstraintInfo:
    name: str
    type: str  # PRIMARY KEY, FOREIGN KEY, UNIQUE, CHECK, DEFAULT
    definition: str


@dataclass
class TableSchema:
    schema: str
    table: str
    columns: list[ColumnInfo] = field(default_factory=list)
    indexes: list[IndexInfo] = field(default_factory=list)
    foreign_keys: list[ForeignKeyInfo] = field(default_factory=list)
    constraints: list[ConstraintInfo] = field(default_factory=list)

    @property
    def primary_key(self) -> list[str]:
        return [col.name for col in self.columns if col.is_primary_key]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["primary_key"] = self.primary_key
        return data


def split_list(value: Optional[str], sep: str = ",") -> list[str]:
    """Split an aggregated column list (STRING_AGG / string_agg output)."""
    if not value:
        return []
    return [part.strip() for part in value.split(sep) if part.strip()]
