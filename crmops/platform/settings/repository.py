from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from crmops.platform.settings.models import TenantSetting
from crmops.platform.tenancy.context import TenantContext
from crmops.platform.tenancy.repository import TenantScopedRepository


class TenantSettingsRepository(TenantScopedRepository):
    model = TenantSetting

    def list_by_key_prefix(self, session: Session, ctx: TenantContext, prefix: str) -> list[TenantSetting]:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        stmt = self.apply_scope_query(select(TenantSetting), ctx).where(
            TenantSetting.setting_key.like(f"{escaped}%", escape="\\")
        )
        return list(session.scalars(stmt.order_by(TenantSetting.setting_key.asc())).all())

    def get(self, session: Session, ctx: TenantContext, key: str) -> TenantSetting | None:
        stmt = self.apply_scope_query(select(TenantSetting), ctx).where(TenantSetting.setting_key == key)
        return session.scalar(stmt)

    def upsert(self, session: Session, ctx: TenantContext, key: str, value: Any) -> TenantSetting:
        row = self.get(session, ctx, key)
        if row is None:
            row = TenantSetting(tenant_id=ctx.tenant_id, setting_key=key, setting_value=value)
            session.add(row)
        else:
            row.setting_value = value
        session.flush()
        return row
