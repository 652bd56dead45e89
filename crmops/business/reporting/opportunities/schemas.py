from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

from crmops.business.reporting.opportunities.stages import StageConfig


Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OpportunityDrilldownRecord(CamelModel):
    id: UUID
    name: str
    created_at: datetime
    account_name: str | None
    event_date: date | None
    amount: Money
    probability: int
    weighted_value: Money
    stage: str
    stage_name: str
    actual_close_date: date | None
    expected_close_date: date | None
    close_reason: str | None
    days_to_close: int | None
    days_until_close: int | None
    result: Literal["won", "lost"] | None = None


class OpportunityDrilldownResponse(CamelModel):
    type: str
    period: str | None
    period_label: str
    records: list[OpportunityDrilldownRecord]
    total_count: int
    total_value: Money
    total_weighted_value: Money
    won_count: int | None = None
    lost_count: int | None = None
    win_rate: int | None = None
    avg_days_to_close: int | None = None
    avg_deal_size: int | None = None

    def to_wire(self) -> dict[str, object]:
        # Optional aggregates are omitted, not nulled, when they were never computed.
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class KpiCard(CamelModel):
    count: int
    value: Money
    weighted_value: Money


class OpportunityStatsResponse(CamelModel):
    period: str
    period_label: str
    new_opps: KpiCard
    open_pipeline: KpiCard
    won: KpiCard
    lost: KpiCard
    closing_soon: KpiCard
    won_count: int
    lost_count: int
    win_rate: int | None
    avg_days_to_close: int | None
    avg_deal_size: int | None

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class StageSettingsRead(CamelModel):
    source: Literal["custom", "default"]
    stages: list[StageConfig]


class StageSettingsUpdate(CamelModel):
    stages: list[StageConfig] = Field(min_length=1)

    @field_validator("stages")
    @classmethod
    def _unique_ids(cls, value: list[StageConfig]) -> list[StageConfig]:
        seen: set[str] = set()
        for stage in value:
            if stage.id in seen:
                raise ValueError(f"duplicate stage id: {stage.id}")
            seen.add(stage.id)
        return value
