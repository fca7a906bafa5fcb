from abc import ABC
import abc
from typing import List

from ehr_sync.models.tenant.dto import TenantEhrConfig


class TenantProvider(ABC):
    """
    Abstract base class for tenant configuration sources.
    Implementations resolve, per tenant, the EHR vendor, its base URL, the
    system and provider app credentials and the target store coordinates.
    Methods:
        get_all_tenants() -> List[TenantEhrConfig]:
            Retrieve the resolved configuration of every known tenant.
        get_tenant(tenant_id: str) -> TenantEhrConfig:
            Retrieve the resolved configuration of one tenant.
    """

    @abc.abstractmethod
    def get_all_tenants(self) -> List[TenantEhrConfig]:
        """
        Returns the configuration of all tenants.
        """
        pass

    @abc.abstractmethod
    def get_tenant(self, tenant_id: str) -> TenantEhrConfig:
        """
        Returns the configuration of a single tenant, or raises ConfigurationError when the
        tenant is unknown or its configuration is incomplete.
        """
        pass
