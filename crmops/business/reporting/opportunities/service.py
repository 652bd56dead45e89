from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crmops.business.reporting.opportunities.descriptors import (
    DRILLDOWN_DESCRIPTORS,
    DrilldownDescriptor,
    DrilldownType,
    round_half_up,
)
from crmops.business.reporting.opportunities.errors import ReportDataError
from crmops.business.reporting.opportunities.periods import (
    DateRange,
    TimePeriod,
    period_label,
    resolve_period_range,
)
from crmops.business.reporting.opportunities.repository import OpportunityReportRepository
from crmops.business.reporting.opportunities.schemas import OpportunityDrilldownRecord, OpportunityDrilldownResponse
from crmops.business.reporting.opportunities.stages import (
    CLOSED_WON,
    StageSettingsService,
    StageTable,
    stage_settings_service,
)
from crmops.crm.models import CRMOpportunity
from crmops.metrics import observe_report
from crmops.otel import get_tracer, traced
from crmops.platform.tenancy.context import TenantContext


logger = logging.getLogger("crmops.reporting.drilldown")
tracer = get_tracer("crmops.reporting.drilldown")

_SECONDS_PER_DAY = Decimal(86400)
_HUNDRED = Decimal(100)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_to_close(created_at: datetime | None, actual_close_date: date | None) -> int | None:
    if created_at is None or actual_close_date is None:
        return None
    closed = datetime.combine(actual_close_date, datetime.min.time(), tzinfo=timezone.utc)
    elapsed = closed - _as_utc(created_at)
    return round_half_up(Decimal(str(elapsed.total_seconds())) / _SECONDS_PER_DAY)


def days_until_close(expected_close_date: date | None, today: date) -> int | None:
    if expected_close_date is None:
        return None
    return (expected_close_date - today).days


def weighted_value(amount: Decimal, probability: int) -> Decimal:
    return amount * Decimal(probability) / _HUNDRED


@dataclass(slots=True)
class DrilldownRun:
    descriptor: DrilldownDescriptor
    records: list[OpportunityDrilldownRecord]

    @property
    def total_value(self) -> Decimal:
        return sum((record.amount for record in self.records), Decimal("0"))

    @property
    def total_weighted_value(self) -> Decimal:
        return sum((record.weighted_value for record in self.records), Decimal("0"))


@dataclass(slots=True)
class OpportunityDrilldownService:
    repository: OpportunityReportRepository = OpportunityReportRepository()
    stage_settings: StageSettingsService = field(default_factory=lambda: stage_settings_service)

    def drilldown(
        self,
        session: Session,
        ctx: TenantContext,
        report_type: DrilldownType,
        period: TimePeriod = TimePeriod.MONTH,
        *,
        today: date | None = None,
    ) -> OpportunityDrilldownResponse:
        target_today = today or utc_today()
        started = time.perf_counter()
        with traced(tracer, "reporting.drilldown", report_type=report_type.value, period=period.value) as span:
            try:
                stages = self.stage_settings.load_stage_table(session, ctx)
                run = self.run(
                    session,
                    ctx,
                    DRILLDOWN_DESCRIPTORS[report_type],
                    stages=stages,
                    period_range=resolve_period_range(period, target_today),
                    today=target_today,
                )
            except ReportDataError:
                observe_report("drilldown", report_type.value, "error", time.perf_counter() - started)
                raise
            span.set_attribute("record_count", len(run.records))

        descriptor = run.descriptor
        response = OpportunityDrilldownResponse(
            type=report_type.value,
            period=period.value if descriptor.echoes_period else None,
            period_label=descriptor.label(period_label(period)),
            records=run.records,
            total_count=len(run.records),
            total_value=run.total_value,
            total_weighted_value=run.total_weighted_value,
            **descriptor.aggregate(run.records),
        )
        observe_report(
            "drilldown",
            report_type.value,
            "ok",
            time.perf_counter() - started,
            record_count=len(run.records),
        )
        logger.info(
            "reporting.drilldown",
            extra={"report_type": report_type.value, "period": period.value, "record_count": len(run.records)},
        )
        return response

    def run(
        self,
        session: Session,
        ctx: TenantContext,
        descriptor: DrilldownDescriptor,
        *,
        stages: StageTable,
        period_range: DateRange | None,
        today: date,
        stage: str | None = None,
        owner_id: str | None = None,
    ) -> DrilldownRun:
        stmt = self.repository.build_query(
            descriptor,
            ctx,
            period_range=period_range,
            today=today,
            stage=stage,
            owner_id=owner_id,
        )
        try:
            opportunities = self.repository.fetch(session, stmt)
        except SQLAlchemyError as exc:
            logger.exception(
                "reporting.fetch_failed",
                extra={"report_type": descriptor.type.value, "error": str(exc)},
            )
            raise ReportDataError(descriptor.type.value) from exc

        records = [self._to_record(descriptor, opportunity, stages, today) for opportunity in opportunities]
        return DrilldownRun(descriptor=descriptor, records=records)

    @staticmethod
    def _to_record(
        descriptor: DrilldownDescriptor,
        opportunity: CRMOpportunity,
        stages: StageTable,
        today: date,
    ) -> OpportunityDrilldownRecord:
        amount = Decimal(opportunity.amount) if opportunity.amount is not None else Decimal("0")
        probability = descriptor.probability(opportunity, stages)

        event_date: date | None = None
        if descriptor.with_event_date:
            dates = [item.event_date for item in opportunity.event_dates if item.event_date is not None]
            event_date = min(dates) if dates else None

        result = None
        if descriptor.with_result:
            result = "won" if opportunity.stage == CLOSED_WON else "lost"

        values = {
            "id": opportunity.id,
            "name": opportunity.name,
            "created_at": _as_utc(opportunity.created_at),
            "account_name": opportunity.account.name if opportunity.account is not None else None,
            "event_date": event_date,
            "amount": amount,
            "probability": probability,
            "weighted_value": weighted_value(amount, probability),
            "stage": opportunity.stage,
            "stage_name": stages.name_for(opportunity.stage),
            "actual_close_date": opportunity.actual_close_date if descriptor.with_actual_close else None,
            "expected_close_date": opportunity.expected_close_date if descriptor.with_expected_close else None,
            "close_reason": (opportunity.close_reason or None) if descriptor.with_close_reason else None,
            "days_to_close": (
                days_to_close(opportunity.created_at, opportunity.actual_close_date)
                if descriptor.with_days_to_close
                else None
            ),
            "days_until_close": (
                days_until_close(opportunity.expected_close_date, today) if descriptor.with_days_until_close else None
            ),
        }
        if result is not None:
            values["result"] = result
        return OpportunityDrilldownRecord(**values)


opportunity_drilldown_service = OpportunityDrilldownService()
