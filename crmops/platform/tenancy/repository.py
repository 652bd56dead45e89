from __future__ import annotations

from typing import Any, ClassVar

from sqlalchemy.sql import Select

from crmops.platform.tenancy.context import TenantContext


class TenantScopedRepository:
    model: ClassVar[Any] = None

    def apply_scope_query(self, query: Select[Any], ctx: TenantContext) -> Select[Any]:
        return query.where(self.model.tenant_id == ctx.tenant_id)
