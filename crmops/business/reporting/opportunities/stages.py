from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crmops.metrics import observe_stage_settings_fallback
from crmops.platform.settings.models import TenantSetting
from crmops.platform.settings.repository import TenantSettingsRepository
from crmops.platform.tenancy.context import TenantContext


logger = logging.getLogger("crmops.reporting.stages")

STAGE_SETTING_KEY = "opportunities.stages"

CLOSED_WON = "closed_won"
CLOSED_LOST = "closed_lost"
OPEN_STAGES: tuple[str, ...] = ("prospecting", "qualification", "proposal", "negotiation")
CLOSED_STAGES: tuple[str, ...] = (CLOSED_WON, CLOSED_LOST)


class StageConfig(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    probability: int = Field(ge=0, le=100)
    color: str | None = None
    enabled: bool = True

    @field_validator("probability", mode="before")
    @classmethod
    def round_fractional_probability(cls, value: Any) -> Any:
        # Fractional percentages round half up to whole points.
        if isinstance(value, float) and math.isfinite(value):
            return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
        return value


DEFAULT_STAGES: tuple[StageConfig, ...] = (
    StageConfig(id="prospecting", name="Prospecting", probability=10),
    StageConfig(id="qualification", name="Qualification", probability=25),
    StageConfig(id="proposal", name="Proposal", probability=50),
    StageConfig(id="negotiation", name="Negotiation", probability=75),
    StageConfig(id=CLOSED_WON, name="Closed Won", probability=100),
    StageConfig(id=CLOSED_LOST, name="Closed Lost", probability=0),
)

_stage_list_adapter = TypeAdapter(list[StageConfig])


@dataclass(frozen=True, slots=True)
class StageParseResult:
    """Outcome of reading the stage settings rows.

    ``stages`` is set only when a usable custom configuration was found.
    ``error`` is set only when a row exists but could not be parsed. Both are
    ``None`` when the tenant has no custom configuration.
    """

    stages: tuple[StageConfig, ...] | None = None
    error: str | None = None

    @property
    def is_malformed(self) -> bool:
        return self.error is not None


def parse_stage_settings(rows: Iterable[TenantSetting | dict[str, Any]]) -> StageParseResult:
    raw_value: Any = None
    for row in rows:
        key = row.get("setting_key") if isinstance(row, dict) else row.setting_key
        if key == STAGE_SETTING_KEY:
            raw_value = row.get("setting_value") if isinstance(row, dict) else row.setting_value
            break

    if raw_value is None or raw_value == "":
        return StageParseResult()

    if isinstance(raw_value, (str, bytes)):
        try:
            raw_value = json.loads(raw_value)
        except ValueError as exc:
            return StageParseResult(error=f"stage settings are not valid JSON: {exc}")

    if not isinstance(raw_value, list):
        return StageParseResult(error=f"stage settings must be a list, got {type(raw_value).__name__}")
    if not raw_value:
        return StageParseResult()

    try:
        parsed = _stage_list_adapter.validate_python(raw_value)
    except ValidationError as exc:
        return StageParseResult(error=f"stage settings failed validation: {exc.error_count()} error(s)")

    enabled = tuple(stage for stage in parsed if stage.enabled)
    if not enabled:
        return StageParseResult()
    return StageParseResult(stages=enabled)


class StageTable:
    def __init__(self, stages: Sequence[StageConfig], *, source: str = "default") -> None:
        self.stages: tuple[StageConfig, ...] = tuple(stages)
        self.source = source
        self._by_id = {stage.id: stage for stage in self.stages}

    def name_for(self, stage_id: str | None) -> str:
        if not stage_id:
            return ""
        stage = self._by_id.get(stage_id)
        if stage is not None:
            return stage.name
        return " ".join(word[:1].upper() + word[1:] for word in stage_id.split("_"))

    def probability_for(self, stage_id: str | None) -> int:
        stage = self._by_id.get(stage_id or "")
        return stage.probability if stage is not None else 0

    def __iter__(self) -> Iterator[StageConfig]:
        return iter(self.stages)

    def __len__(self) -> int:
        return len(self.stages)


def default_stage_table() -> StageTable:
    return StageTable(DEFAULT_STAGES, source="default")


def stage_table_from_result(result: StageParseResult) -> StageTable:
    if result.stages is not None:
        return StageTable(result.stages, source="custom")
    return default_stage_table()


@dataclass(slots=True)
class StageSettingsService:
    repository: TenantSettingsRepository = TenantSettingsRepository()

    def load_stage_table(self, session: Session, ctx: TenantContext) -> StageTable:
        try:
            rows = self.repository.list_by_key_prefix(session, ctx, STAGE_SETTING_KEY)
        except SQLAlchemyError as exc:
            session.rollback()
            observe_stage_settings_fallback("unavailable")
            logger.warning("stage_settings.unavailable", extra={"error": str(exc)})
            return default_stage_table()
        result = parse_stage_settings(rows)
        if result.is_malformed:
            observe_stage_settings_fallback("malformed")
            logger.warning("stage_settings.invalid", extra={"error": result.error})
        elif result.stages is None:
            observe_stage_settings_fallback("absent")
        return stage_table_from_result(result)

    def save_stages(self, session: Session, ctx: TenantContext, stages: Sequence[StageConfig]) -> StageTable:
        payload = [stage.model_dump(exclude_none=True) for stage in stages]
        self.repository.upsert(session, ctx, STAGE_SETTING_KEY, payload)
        session.commit()
        logger.info("stage_settings.saved", extra={"record_count": len(payload)})
        return stage_table_from_result(parse_stage_settings([{"setting_key": STAGE_SETTING_KEY, "setting_value": payload}]))


stage_settings_service = StageSettingsService()
