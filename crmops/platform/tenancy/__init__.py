from crmops.platform.tenancy.context import TenantContext, TenantResolutionError
from crmops.platform.tenancy.dependencies import get_tenant_context
from crmops.platform.tenancy.repository import TenantScopedRepository

__all__ = ["TenantContext", "TenantResolutionError", "TenantScopedRepository", "get_tenant_context"]
