from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from enum import Enum
from typing import Any

from crmops.business.reporting.opportunities.schemas import OpportunityDrilldownRecord
from crmops.business.reporting.opportunities.stages import (
    CLOSED_LOST,
    CLOSED_STAGES,
    CLOSED_WON,
    OPEN_STAGES,
    StageTable,
)
from crmops.crm.models import CRMOpportunity


CLOSING_SOON_DAYS = 7


class DrilldownType(str, Enum):
    NEW_OPPS = "new-opps"
    OPEN_PIPELINE = "open-pipeline"
    WON = "won"
    LOST = "lost"
    WIN_RATE = "win-rate"
    AVG_DAYS = "avg-days"
    AVG_DEAL = "avg-deal"
    CLOSING_SOON = "closing-soon"


class DateWindow(str, Enum):
    NONE = "none"
    PERIOD = "period"
    CLOSING_SOON = "closing_soon"


ProbabilityRule = Callable[[CRMOpportunity, StageTable], int]
Aggregator = Callable[[Sequence[OpportunityDrilldownRecord]], dict[str, Any]]


def round_half_up(value: Decimal) -> int:
    return int((value + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


def resolved_probability(opportunity: CRMOpportunity, stages: StageTable) -> int:
    if opportunity.probability is not None:
        return int(opportunity.probability)
    return stages.probability_for(opportunity.stage)


def terminal_probability(opportunity: CRMOpportunity, stages: StageTable) -> int:
    return 100 if opportunity.stage == CLOSED_WON else 0


def fixed_probability(value: int) -> ProbabilityRule:
    def rule(opportunity: CRMOpportunity, stages: StageTable) -> int:
        return value

    return rule


def no_aggregate(records: Sequence[OpportunityDrilldownRecord]) -> dict[str, Any]:
    return {}


def win_rate_aggregate(records: Sequence[OpportunityDrilldownRecord]) -> dict[str, Any]:
    won_count = sum(1 for record in records if record.result == "won")
    lost_count = sum(1 for record in records if record.result == "lost")
    payload: dict[str, Any] = {"won_count": won_count, "lost_count": lost_count}
    total = won_count + lost_count
    if total > 0:
        payload["win_rate"] = round_half_up(Decimal(won_count * 100) / Decimal(total))
    return payload


def avg_days_aggregate(records: Sequence[OpportunityDrilldownRecord]) -> dict[str, Any]:
    values = [record.days_to_close for record in records if record.days_to_close is not None]
    if not values:
        return {}
    return {"avg_days_to_close": round_half_up(Decimal(sum(values)) / Decimal(len(values)))}


def avg_deal_aggregate(records: Sequence[OpportunityDrilldownRecord]) -> dict[str, Any]:
    if not records:
        return {}
    total = sum((record.amount for record in records), Decimal("0"))
    return {"avg_deal_size": round_half_up(total / Decimal(len(records)))}


@dataclass(frozen=True, slots=True)
class OrderSpec:
    column: str
    descending: bool = False
    nulls_last: bool = False


@dataclass(frozen=True, slots=True)
class DrilldownDescriptor:
    type: DrilldownType
    label: Callable[[str], str]
    probability: ProbabilityRule
    order: OrderSpec
    stages: tuple[str, ...] | None = None
    window: DateWindow = DateWindow.NONE
    window_column: str | None = None
    require_column: str | None = None
    echoes_period: bool = True
    with_event_date: bool = False
    with_expected_close: bool = False
    with_actual_close: bool = False
    with_close_reason: bool = False
    with_days_to_close: bool = False
    with_days_until_close: bool = False
    with_result: bool = False
    aggregate: Aggregator = no_aggregate


DRILLDOWN_DESCRIPTORS: dict[DrilldownType, DrilldownDescriptor] = {
    DrilldownType.NEW_OPPS: DrilldownDescriptor(
        type=DrilldownType.NEW_OPPS,
        label=lambda period_label: f"New Opportunities - {period_label}",
        probability=resolved_probability,
        order=OrderSpec("created_at", descending=True),
        window=DateWindow.PERIOD,
        window_column="created_at",
        with_event_date=True,
        with_expected_close=True,
    ),
    DrilldownType.OPEN_PIPELINE: DrilldownDescriptor(
        type=DrilldownType.OPEN_PIPELINE,
        label=lambda period_label: "Open Pipeline",
        probability=resolved_probability,
        order=OrderSpec("amount", descending=True, nulls_last=True),
        stages=OPEN_STAGES,
        echoes_period=False,
        with_event_date=True,
        with_expected_close=True,
    ),
    DrilldownType.WON: DrilldownDescriptor(
        type=DrilldownType.WON,
        label=lambda period_label: f"Won Opportunities - {period_label}",
        probability=fixed_probability(100),
        order=OrderSpec("actual_close_date", descending=True),
        stages=(CLOSED_WON,),
        window=DateWindow.PERIOD,
        window_column="actual_close_date",
        with_event_date=True,
        with_expected_close=True,
        with_actual_close=True,
        with_days_to_close=True,
    ),
    DrilldownType.LOST: DrilldownDescriptor(
        type=DrilldownType.LOST,
        label=lambda period_label: f"Lost Opportunities - {period_label}",
        probability=fixed_probability(0),
        order=OrderSpec("actual_close_date", descending=True),
        stages=(CLOSED_LOST,),
        window=DateWindow.PERIOD,
        window_column="actual_close_date",
        with_event_date=True,
        with_actual_close=True,
        with_close_reason=True,
    ),
    DrilldownType.WIN_RATE: DrilldownDescriptor(
        type=DrilldownType.WIN_RATE,
        label=lambda period_label: f"Closed Opportunities - {period_label}",
        probability=terminal_probability,
        order=OrderSpec("actual_close_date", descending=True),
        stages=CLOSED_STAGES,
        window=DateWindow.PERIOD,
        window_column="actual_close_date",
        with_actual_close=True,
        with_result=True,
        aggregate=win_rate_aggregate,
    ),
    DrilldownType.AVG_DAYS: DrilldownDescriptor(
        type=DrilldownType.AVG_DAYS,
        label=lambda period_label: "Won Opportunities - Days to Close",
        probability=fixed_probability(100),
        order=OrderSpec("actual_close_date", descending=True),
        stages=(CLOSED_WON,),
        window=DateWindow.PERIOD,
        window_column="actual_close_date",
        require_column="actual_close_date",
        with_actual_close=True,
        with_days_to_close=True,
        aggregate=avg_days_aggregate,
    ),
    DrilldownType.AVG_DEAL: DrilldownDescriptor(
        type=DrilldownType.AVG_DEAL,
        label=lambda period_label: f"Won Opportunities - {period_label}",
        probability=fixed_probability(100),
        order=OrderSpec("actual_close_date", descending=True),
        stages=(CLOSED_WON,),
        window=DateWindow.PERIOD,
        window_column="actual_close_date",
        with_actual_close=True,
        aggregate=avg_deal_aggregate,
    ),
    DrilldownType.CLOSING_SOON: DrilldownDescriptor(
        type=DrilldownType.CLOSING_SOON,
        label=lambda period_label: f"Closing Soon (Next {CLOSING_SOON_DAYS} Days)",
        probability=resolved_probability,
        order=OrderSpec("expected_close_date"),
        stages=OPEN_STAGES,
        window=DateWindow.CLOSING_SOON,
        window_column="expected_close_date",
        echoes_period=False,
        with_event_date=True,
        with_expected_close=True,
        with_days_until_close=True,
    ),
}


def parse_drilldown_type(raw: str | None) -> DrilldownType:
    if raw is None or not raw.strip():
        raise ValueError("type parameter is required")
    try:
        return DrilldownType(raw.strip())
    except ValueError as exc:
        raise ValueError("Invalid type parameter") from exc
