from crmops.platform.settings import TenantSetting, TenantSettingsRepository
from crmops.platform.tenancy import TenantContext, TenantResolutionError, TenantScopedRepository, get_tenant_context

__all__ = [
    "TenantContext",
    "TenantResolutionError",
    "TenantScopedRepository",
    "TenantSetting",
    "TenantSettingsRepository",
    "get_tenant_context",
]
