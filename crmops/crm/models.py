from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crmops.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CRMAccount(Base):
    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    opportunities: Mapped[list[CRMOpportunity]] = relationship("CRMOpportunity", back_populates="account")


class CRMOpportunity(Base):
    __tablename__ = "opportunities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    owner_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stage: Mapped[str] = mapped_column(String(100), nullable=False, default="qualification", server_default="qualification")
    amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    # Explicit override; None means "use the stage's configured probability".
    probability: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expected_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    close_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    account: Mapped[CRMAccount | None] = relationship("CRMAccount", back_populates="opportunities")
    event_dates: Mapped[list[CRMEventDate]] = relationship(
        "CRMEventDate",
        back_populates="opportunity",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class CRMEventDate(Base):
    __tablename__ = "event_dates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    opportunity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("opportunities.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    opportunity: Mapped[CRMOpportunity] = relationship("CRMOpportunity", back_populates="event_dates")


Index("ix_accounts_tenant_id", CRMAccount.tenant_id)
Index("ix_opportunities_tenant_stage", CRMOpportunity.tenant_id, CRMOpportunity.stage)
Index("ix_opportunities_tenant_created_at", CRMOpportunity.tenant_id, CRMOpportunity.created_at)
Index("ix_opportunities_tenant_actual_close_date", CRMOpportunity.tenant_id, CRMOpportunity.actual_close_date)
Index("ix_opportunities_tenant_expected_close_date", CRMOpportunity.tenant_id, CRMOpportunity.expected_close_date)
Index("ix_event_dates_opportunity_id", CRMEventDate.opportunity_id)
