from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session, joinedload, selectinload

from crmops.business.reporting.opportunities.descriptors import CLOSING_SOON_DAYS, DateWindow, DrilldownDescriptor
from crmops.business.reporting.opportunities.periods import DateRange, closing_soon_range
from crmops.crm.models import CRMOpportunity
from crmops.platform.tenancy.context import TenantContext
from crmops.platform.tenancy.repository import TenantScopedRepository


UNASSIGNED_OWNER = "unassigned"


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


class OpportunityReportRepository(TenantScopedRepository):
    model = CRMOpportunity

    def build_query(
        self,
        descriptor: DrilldownDescriptor,
        ctx: TenantContext,
        *,
        period_range: DateRange | None,
        today: date,
        stage: str | None = None,
        owner_id: str | None = None,
    ) -> Select[Any]:
        stmt = self.apply_scope_query(select(CRMOpportunity), ctx).options(joinedload(CRMOpportunity.account))
        if descriptor.with_event_date:
            stmt = stmt.options(selectinload(CRMOpportunity.event_dates))

        if descriptor.stages is not None:
            stmt = stmt.where(CRMOpportunity.stage.in_(descriptor.stages))
        if stage is not None:
            stmt = stmt.where(CRMOpportunity.stage == stage)
        if owner_id is not None:
            if owner_id == UNASSIGNED_OWNER:
                stmt = stmt.where(CRMOpportunity.owner_id.is_(None))
            else:
                stmt = stmt.where(CRMOpportunity.owner_id == owner_id)

        if descriptor.require_column is not None:
            stmt = stmt.where(getattr(CRMOpportunity, descriptor.require_column).is_not(None))

        window = self._resolve_window(descriptor, period_range, today)
        if window is not None and descriptor.window_column is not None:
            column = getattr(CRMOpportunity, descriptor.window_column)
            if descriptor.window_column == "created_at":
                # Timestamps: whole days, end day inclusive.
                stmt = stmt.where(column >= _day_start(window.start), column < _day_start(window.end + timedelta(days=1)))
            else:
                stmt = stmt.where(column >= window.start, column <= window.end)

        order_column = getattr(CRMOpportunity, descriptor.order.column)
        order_clause = order_column.desc() if descriptor.order.descending else order_column.asc()
        if descriptor.order.nulls_last:
            order_clause = order_clause.nulls_last()
        return stmt.order_by(order_clause, CRMOpportunity.created_at.desc(), CRMOpportunity.id.asc())

    def fetch(self, session: Session, stmt: Select[Any]) -> list[CRMOpportunity]:
        return list(session.scalars(stmt).unique().all())

    @staticmethod
    def _resolve_window(descriptor: DrilldownDescriptor, period_range: DateRange | None, today: date) -> DateRange | None:
        if descriptor.window is DateWindow.PERIOD:
            return period_range
        if descriptor.window is DateWindow.CLOSING_SOON:
            return closing_soon_range(today, CLOSING_SOON_DAYS)
        return None
