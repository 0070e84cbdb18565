from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

DialectName = Literal["postgres", "mssql"]


class ValidateRequest(BaseModel):
    query: str
    dialect: DialectName | None = None


class ValidateResponse(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class LimitRequest(BaseModel):
    query: str
    max_rows: int | None = Field(default=None, ge=1)
    dialect: DialectName | None = None


class LimitResponse(BaseModel):
    query: str
    limit_applied: bool


class IdentifierRequest(BaseModel):
    identifier: str


class IdentifierResponse(BaseModel):
    identifier: str


class QueryRequest(BaseModel):
    query: str = Field(..., min_length=1)
    backend: str | None = None
    max_rows: int | None = Field(default=None, ge=1)
    timeout_seconds: int | None = Field(default=None, ge=1)


class QueryResponse(BaseModel):
    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int
    truncated: bool
    execution_time_ms: int
    limit_applied: bool
    query: str
    warnings: list[str] = Field(default_factory=list)


class PlanRequest(BaseModel):
    query: str = Field(..., min_length=1)
    backend: str | None = None


class PlanResponse(BaseModel):
    plan: str
    format: Literal["json", "xml", "text"]
    estimated_cost: float | None = None


class ErrorDetail(BaseModel):
    error_code: str
    message: str
    details: dict[str, Any] | None = None
