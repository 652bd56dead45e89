from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmops.core.auth import AuthUser, get_current_user
from crmops.core.database import Base, get_db
from crmops.main import app


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="user-1", roles=["user"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get("/api/opportunities/drilldown", headers={"x-tenant-id": "tenant-a"})
    assert response.status_code == 400
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get(
        "/api/opportunities/drilldown?type=nope",
        headers={"x-tenant-id": "tenant-a", "X-Correlation-Id": "abc-123"},
    )
    assert response.status_code == 400
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_request_id_used_when_correlation_id_missing(client: TestClient) -> None:
    response = client.get("/api/opportunities/stats", headers={"x-tenant-id": "tenant-a", "X-Request-Id": "req-9"})
    assert response.status_code == 200
    assert response.headers.get("x-correlation-id") == "req-9"
    assert response.headers.get("x-request-id") == "req-9"


def test_unsafe_correlation_id_is_replaced(client: TestClient) -> None:
    response = client.get(
        "/api/opportunities/drilldown",
        headers={"x-tenant-id": "tenant-a", "X-Correlation-Id": "bad id with spaces"},
    )
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    assert header_value != "bad id with spaces"
    assert response.json()["correlation_id"] == header_value


def test_tenant_error_carries_correlation_id(client: TestClient) -> None:
    response = client.get("/api/opportunities/stats", headers={"X-Correlation-Id": "tenantless-1"})
    assert response.status_code == 400
    assert response.json() == {"error": "x-tenant-id header is required", "correlation_id": "tenantless-1"}
