from crmops.crm.models import CRMAccount, CRMEventDate, CRMOpportunity
from crmops.platform.settings.models import TenantSetting

__all__ = [
    "CRMAccount",
    "CRMEventDate",
    "CRMOpportunity",
    "TenantSetting",
]
