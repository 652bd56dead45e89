from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class TenantContext:
    """Resolved tenant for a request; every report query is scoped to it."""

    tenant_id: str
    user_id: str = "anonymous"
    correlation_id: str | None = None
    roles: list[str] = field(default_factory=list)


class TenantResolutionError(Exception):
    """Raised when a request does not identify a tenant."""
