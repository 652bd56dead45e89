from crmops.platform.settings.models import TenantSetting
from crmops.platform.settings.repository import TenantSettingsRepository

__all__ = ["TenantSetting", "TenantSettingsRepository"]
