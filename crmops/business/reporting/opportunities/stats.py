from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from crmops.business.reporting.opportunities.descriptors import (
    DRILLDOWN_DESCRIPTORS,
    DrilldownType,
    avg_days_aggregate,
    avg_deal_aggregate,
    round_half_up,
)
from crmops.business.reporting.opportunities.errors import ReportDataError
from crmops.business.reporting.opportunities.periods import TimePeriod, period_label, resolve_period_range
from crmops.business.reporting.opportunities.schemas import KpiCard, OpportunityStatsResponse
from crmops.business.reporting.opportunities.service import (
    DrilldownRun,
    OpportunityDrilldownService,
    opportunity_drilldown_service,
    utc_today,
)
from crmops.business.reporting.opportunities.stages import StageSettingsService, stage_settings_service
from crmops.metrics import observe_report
from crmops.otel import get_tracer, traced
from crmops.platform.tenancy.context import TenantContext


logger = logging.getLogger("crmops.reporting.stats")
tracer = get_tracer("crmops.reporting.stats")


def _card(run: DrilldownRun) -> KpiCard:
    return KpiCard(count=len(run.records), value=run.total_value, weighted_value=run.total_weighted_value)


@dataclass(slots=True)
class OpportunityStatsService:
    """KPI summary built from the same descriptors the drilldown uses.

    Each card is the count and totals of the matching drilldown, so a card and
    the list behind it can never disagree.
    """

    drilldowns: OpportunityDrilldownService = field(default_factory=lambda: opportunity_drilldown_service)
    stage_settings: StageSettingsService = field(default_factory=lambda: stage_settings_service)

    def stats(
        self,
        session: Session,
        ctx: TenantContext,
        period: TimePeriod = TimePeriod.ALL,
        *,
        stage: str | None = None,
        owner_id: str | None = None,
        today: date | None = None,
    ) -> OpportunityStatsResponse:
        target_today = today or utc_today()
        period_range = resolve_period_range(period, target_today)
        started = time.perf_counter()

        with traced(tracer, "reporting.stats", period=period.value):
            try:
                stages = self.stage_settings.load_stage_table(session, ctx)

                def run(report_type: DrilldownType, *, stage_filter: str | None = None) -> DrilldownRun:
                    return self.drilldowns.run(
                        session,
                        ctx,
                        DRILLDOWN_DESCRIPTORS[report_type],
                        stages=stages,
                        period_range=period_range,
                        today=target_today,
                        stage=stage_filter,
                        owner_id=owner_id,
                    )

                new_opps = run(DrilldownType.NEW_OPPS, stage_filter=stage)
                open_pipeline = run(DrilldownType.OPEN_PIPELINE)
                won = run(DrilldownType.WON)
                lost = run(DrilldownType.LOST)
                closing_soon = run(DrilldownType.CLOSING_SOON)
                avg_days = run(DrilldownType.AVG_DAYS)
            except ReportDataError:
                observe_report("stats", "stats", "error", time.perf_counter() - started)
                raise

        won_count = len(won.records)
        lost_count = len(lost.records)
        closed = won_count + lost_count
        win_rate = round_half_up(Decimal(won_count * 100) / Decimal(closed)) if closed else None

        response = OpportunityStatsResponse(
            period=period.value,
            period_label=period_label(period),
            new_opps=_card(new_opps),
            open_pipeline=_card(open_pipeline),
            won=_card(won),
            lost=_card(lost),
            closing_soon=_card(closing_soon),
            won_count=won_count,
            lost_count=lost_count,
            win_rate=win_rate,
            avg_days_to_close=avg_days_aggregate(avg_days.records).get("avg_days_to_close"),
            avg_deal_size=avg_deal_aggregate(won.records).get("avg_deal_size"),
        )
        observe_report("stats", "stats", "ok", time.perf_counter() - started)
        logger.info("reporting.stats", extra={"period": period.value, "record_count": won_count + lost_count})
        return response


opportunity_stats_service = OpportunityStatsService()
