from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from crmops.clients.http import ApiClient, RequestConfig


def _query(**params: str | None) -> RequestConfig | None:
    present = {key: value for key, value in params.items() if value is not None}
    return RequestConfig(params=present) if present else None


class OpportunitiesClient:
    """Calls the opportunity reporting endpoints of another crmops deployment."""

    def __init__(self, api_client: ApiClient, *, tenant_id: str | None = None) -> None:
        self.api_client = api_client
        self.tenant_id = tenant_id

    def _with_tenant(self, config: RequestConfig | None) -> RequestConfig | None:
        if self.tenant_id is None:
            return config
        config = config or RequestConfig()
        config.headers = {**(config.headers or {}), "x-tenant-id": self.tenant_id}
        return config

    def drilldown(self, report_type: str, period: str | None = None) -> dict[str, Any]:
        return self.api_client.get(
            "/api/opportunities/drilldown",
            self._with_tenant(_query(type=report_type, period=period)),
        )

    def stats(self, period: str | None = None, stage: str | None = None, owner_id: str | None = None) -> dict[str, Any]:
        return self.api_client.get(
            "/api/opportunities/stats",
            self._with_tenant(_query(period=period, stage=stage, owner_id=owner_id)),
        )

    def get_stages(self) -> dict[str, Any]:
        return self.api_client.get("/api/settings/opportunities/stages", self._with_tenant(None))

    def update_stages(self, stages: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
        return self.api_client.put(
            "/api/settings/opportunities/stages",
            {"stages": [dict(stage) for stage in stages]},
            self._with_tenant(None),
        )
