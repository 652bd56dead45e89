from __future__ import annotations

from collections.abc import Generator
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmops.business.reporting.opportunities.periods import TimePeriod
from crmops.business.reporting.opportunities.service import utc_today
from crmops.business.reporting.opportunities.stats import opportunity_stats_service
from crmops.core.auth import AuthUser, get_current_user
from crmops.core.database import Base, get_db
from crmops.crm.models import CRMOpportunity
from crmops.main import app
from crmops.platform.tenancy.context import TenantContext


HEADERS = {"x-tenant-id": "tenant-a"}
TODAY = date(2026, 3, 18)


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
        return AuthUser(sub="stats-user", roles=["user"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _seed(session: Session, name: str, **values: Any) -> CRMOpportunity:
    values.setdefault("tenant_id", "tenant-a")
    values.setdefault("stage", "qualification")
    row = CRMOpportunity(name=name, **values)
    session.add(row)
    session.commit()
    return row


def _seed_pipeline(session: Session) -> None:
    created = datetime(2026, 3, 2, 0, tzinfo=timezone.utc)
    _seed(session, "Open A", stage="proposal", amount=Decimal("1000.00"), owner_id="u-1", created_at=created)
    _seed(
        session,
        "Open B",
        stage="negotiation",
        amount=Decimal("2000.00"),
        owner_id="u-2",
        created_at=created,
        expected_close_date=TODAY + timedelta(days=3),
    )
    _seed(
        session,
        "Won A",
        stage="closed_won",
        amount=Decimal("3000.00"),
        owner_id="u-1",
        created_at=created,
        actual_close_date=date(2026, 3, 12),
    )
    _seed(
        session,
        "Lost A",
        stage="closed_lost",
        amount=Decimal("500.00"),
        created_at=datetime(2025, 6, 1, tzinfo=timezone.utc),
        actual_close_date=date(2026, 3, 4),
    )


def test_stats_cards_match_drilldowns(db_session: Session) -> None:
    _seed_pipeline(db_session)

    stats = opportunity_stats_service.stats(db_session, TenantContext(tenant_id="tenant-a"), TimePeriod.MONTH, today=TODAY)
    payload = stats.to_wire()

    assert payload["period"] == "month"
    assert payload["periodLabel"] == "This Month"
    assert payload["newOpps"] == {"count": 3, "value": 6000.0, "weightedValue": 5000.0}
    assert payload["openPipeline"] == {"count": 2, "value": 3000.0, "weightedValue": 2000.0}
    assert payload["won"] == {"count": 1, "value": 3000.0, "weightedValue": 3000.0}
    assert payload["lost"] == {"count": 1, "value": 500.0, "weightedValue": 0.0}
    assert payload["closingSoon"]["count"] == 1
    assert payload["wonCount"] == 1
    assert payload["lostCount"] == 1
    assert payload["winRate"] == 50
    assert payload["avgDaysToClose"] == 10
    assert payload["avgDealSize"] == 3000


def test_stats_without_closed_deals_report_nulls(db_session: Session) -> None:
    _seed(db_session, "Open", stage="proposal", amount=Decimal("100.00"))

    payload = opportunity_stats_service.stats(db_session, TenantContext(tenant_id="tenant-a"), today=TODAY).to_wire()

    assert payload["period"] == "all"
    assert payload["winRate"] is None
    assert payload["avgDaysToClose"] is None
    assert payload["avgDealSize"] is None


def test_stage_filter_only_narrows_new_opportunities(db_session: Session) -> None:
    _seed_pipeline(db_session)

    payload = opportunity_stats_service.stats(
        db_session,
        TenantContext(tenant_id="tenant-a"),
        TimePeriod.MONTH,
        stage="proposal",
        today=TODAY,
    ).to_wire()

    assert payload["newOpps"]["count"] == 1
    assert payload["openPipeline"]["count"] == 2
    assert payload["won"]["count"] == 1


def test_owner_filter_applies_to_every_card(db_session: Session) -> None:
    _seed_pipeline(db_session)
    ctx = TenantContext(tenant_id="tenant-a")

    owned = opportunity_stats_service.stats(db_session, ctx, TimePeriod.MONTH, owner_id="u-1", today=TODAY).to_wire()
    unassigned = opportunity_stats_service.stats(
        db_session,
        ctx,
        TimePeriod.MONTH,
        owner_id="unassigned",
        today=TODAY,
    ).to_wire()

    assert owned["newOpps"]["count"] == 2
    assert owned["openPipeline"]["count"] == 1
    assert owned["won"]["count"] == 1
    assert owned["lost"]["count"] == 0
    assert owned["winRate"] == 100
    assert unassigned["lost"]["count"] == 1
    assert unassigned["openPipeline"]["count"] == 0
    assert unassigned["winRate"] == 0


def test_stats_endpoint(client: TestClient, db_session: Session) -> None:
    _seed(db_session, "Won Today", stage="closed_won", amount=Decimal("750.00"), actual_close_date=utc_today())

    response = client.get("/api/opportunities/stats", headers=HEADERS)

    assert response.status_code == 200
    assert response.headers["cache-control"] == "public, s-maxage=30, stale-while-revalidate=60"
    body = response.json()
    assert body["period"] == "all"
    assert body["won"]["count"] == 1
    assert body["avgDealSize"] == 750


def test_stats_endpoint_rejects_unknown_period(client: TestClient) -> None:
    response = client.get("/api/opportunities/stats?period=fortnight", headers=HEADERS)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid period parameter: fortnight"


@pytest.mark.parametrize("query", ["?stage=all&owner_id=all", "?stage=ALL&owner_id=", "?stage=&owner_id=All"])
def test_stats_endpoint_treats_all_as_no_filter(client: TestClient, db_session: Session, query: str) -> None:
    _seed_pipeline(db_session)

    unfiltered = client.get("/api/opportunities/stats", headers=HEADERS)
    filtered = client.get(f"/api/opportunities/stats{query}", headers=HEADERS)

    assert filtered.status_code == 200
    assert filtered.json() == unfiltered.json()
    assert filtered.json()["newOpps"]["count"] == 4
