"""Tests for the FastAPI transport."""

from __future__ import annotations

from fastapi.testclient import TestClient
import pytest

from sqlgate import main
from sqlgate.core.config import Dialect
from sqlgate.gateway import SafetyGate

from conftest import build_adapter, make_descriptor, make_settings, numbered_rows


@pytest.fixture
def client(monkeypatch):
    """Client wired to a settings object with one PostgreSQL backend holding 5000 rows."""
    settings = make_settings(make_descriptor(Dialect.POSTGRES, name="main"))
    rows, description = numbered_rows(5000)
    adapter, pool, cursor = build_adapter(rows=rows, description=description)

    monkeypatch.setattr(main, "settings", settings)
    monkeypatch.setattr(main, "gate", SafetyGate(settings))
    monkeypatch.setitem(main._adapters, "main", adapter)

    test_client = TestClient(main.app)
    test_client.pool = pool
    test_client.cursor = cursor
    return test_client


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestValidateEndpoint:
    """Tests for POST /api/validate."""

    def test_valid_query(self, client):
        response = client.post("/api/validate", json={"query": "SELECT * FROM customers"})
        assert response.status_code == 200
        body = response.json()
        assert body["is_valid"] is True
        assert len(body["warnings"]) == 2

    def test_invalid_query_is_a_verdict(self, client):
        """Validation failures are reported in the body, not as an HTTP error."""
        response = client.post("/api/validate", json={"query": "DELETE FROM customers"})
        assert response.status_code == 200
        body = response.json()
        assert body["is_valid"] is False
        assert any("DELETE" in e for e in body["errors"])

    def test_unknown_dialect_rejected(self, client):
        response = client.post("/api/validate", json={"query": "SELECT 1", "dialect": "oracle"})
        assert response.status_code == 422


class TestLimitEndpoint:
    """Tests for POST /api/limit."""

    def test_clamps_limit(self, client):
        response = client.post(
            "/api/limit", json={"query": "SELECT * FROM customers LIMIT 50000", "max_rows": 1000}
        )
        assert response.status_code == 200
        body = response.json()
        assert body == {"query": "SELECT * FROM customers LIMIT 1000", "limit_applied": True}

    def test_mssql_uses_top(self, client):
        response = client.post(
            "/api/limit", json={"query": "SELECT id FROM dbo.Users", "max_rows": 5, "dialect": "mssql"}
        )
        assert response.json()["query"] == "SELECT TOP (5) id FROM dbo.Users"

    def test_non_positive_max_rows_rejected(self, client):
        response = client.post("/api/limit", json={"query": "SELECT 1", "max_rows": 0})
        assert response.status_code == 422


class TestIdentifierEndpoint:
    """Tests for POST /api/identifier."""

    def test_accepts(self, client):
        response = client.post("/api/identifier", json={"identifier": "schema.table"})
        assert response.status_code == 200
        assert response.json() == {"identifier": "schema.table"}

    def test_rejects(self, client):
        response = client.post("/api/identifier", json={"identifier": "orders; DROP"})
        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "identifier_rejected"


class TestQueryEndpoint:
    """Tests for POST /api/query."""

    def test_truncated_result(self, client):
        response = client.post("/api/query", json={"query": "SELECT id, name FROM customers"})
        assert response.status_code == 200
        body = response.json()
        assert body["row_count"] == 1000
        assert body["truncated"] is True
        assert body["limit_applied"] is True
        assert body["query"] == "SELECT id, name FROM customers LIMIT 1000"
        assert body["rows"][0] == {"id": 1, "name": "customer-1"}
        assert client.pool.outstanding == 0

    def test_requested_rows(self, client):
        response = client.post("/api/query", json={"query": "SELECT id FROM customers", "max_rows": 10})
        assert response.json()["row_count"] == 10

    def test_validation_failure(self, client):
        response = client.post("/api/query", json={"query": "SELECT 1; DROP TABLE x;"})
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error_code"] == "validation_failure"
        violations = detail["details"]["violations"]
        assert any("DROP" in v for v in violations)
        assert client.pool.acquired == 0

    def test_unknown_backend(self, client):
        response = client.post("/api/query", json={"query": "SELECT 1", "backend": "nope"})
        assert response.status_code == 404
        assert response.json()["detail"]["error_code"] == "backend_not_found"

    def test_empty_query_rejected_at_boundary(self, client):
        response = client.post("/api/query", json={"query": ""})
        assert response.status_code == 422


class TestPlanEndpoint:
    """Tests for POST /api/plan."""

    def test_explain_statement_rejected(self, client):
        response = client.post("/api/plan", json={"query": "EXPLAIN SELECT id FROM customers"})
        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "validation_failure"
        assert client.pool.acquired == 0


class TestCatalogEndpoints:
    """Tests for the backend catalog endpoints."""

    def test_list_backends_hides_credentials(self, client):
        response = client.get("/api/backends")
        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert body["backends"][0]["name"] == "main"
        assert "password" not in body["backends"][0]
        assert "s3cret-pw" not in response.text

    def test_bad_schema_rejected(self, client):
        response = client.get("/api/backends/main/tables", params={"schema": "public; DROP"})
        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "identifier_rejected"

    def test_unknown_backend(self, client):
        response = client.get("/api/backends/nope/databases")
        assert response.status_code == 404
