import logging
import threading
from typing import Any, Dict

from ehr_sync.exceptions import ConfigurationError
from ehr_sync.models.ehr.types import EhrVendor
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.services.ehr.cerner_adapter import CernerAdapter
from ehr_sync.services.ehr.epic_adapter import EpicAdapter
from ehr_sync.services.ehr.token_cache import TokenCache
from ehr_sync.services.ehr.vendor_adapter import VendorAdapter
from ehr_sync.services.tenant_provider.tenant_provider import TenantProvider

logger = logging.getLogger(__name__)


class VendorAdapterFactory:
    """
    Returns one adapter per ``tenant:vendor``. Adapters are reused so their token state
    survives between calls.
    """

    def __init__(
        self,
        tenant_provider: TenantProvider,
        token_cache: TokenCache,
        timeout: int = 30,
        private_key_dir: str | None = None,
    ) -> None:
        self.__tenant_provider = tenant_provider
        self.__token_cache = token_cache
        self.__timeout = timeout
        self.__private_key_dir = private_key_dir
        self.__cache: Dict[str, VendorAdapter] = {}
        self.__lock = threading.Lock()

    def get_adapter(self, ctx: TenantContext) -> VendorAdapter:
        tenant = self.__tenant_provider.get_tenant(ctx.tenant_id)
        if not tenant.vendor:
            raise ConfigurationError(f"No EHR vendor configured for tenant: {ctx.tenant_id}")

        vendor = self.__parse_vendor(tenant.vendor)
        cache_key = f"{ctx.tenant_id}:{vendor.value}"
        with self.__lock:
            adapter = self.__cache.get(cache_key)
            if adapter is not None:
                logger.debug("Using cached EHR adapter for %s (%s)", ctx.tenant_id, vendor.value)
                return adapter

            logger.info("Creating new EHR adapter for %s (%s)", ctx.tenant_id, vendor.value)
            adapter = self.__create(vendor)
            self.__cache[cache_key] = adapter
            return adapter

    def get_adapter_by_vendor(
        self, vendor: EhrVendor | str, tenant_id: str | None = None
    ) -> VendorAdapter:
        """
        Adapter for an explicit vendor, bypassing the tenant's configured vendor. Only
        cached when a tenant id is given.
        """
        vendor = self.__parse_vendor(vendor)
        if tenant_id is None:
            logger.info("Creating uncached EHR adapter for vendor %s", vendor.value)
            return self.__create(vendor)

        cache_key = f"{tenant_id}:{vendor.value}"
        with self.__lock:
            adapter = self.__cache.get(cache_key)
            if adapter is None:
                adapter = self.__create(vendor)
                self.__cache[cache_key] = adapter
            return adapter

    def clear_cache(self, tenant_id: str) -> int:
        prefix = f"{tenant_id}:"
        with self.__lock:
            keys = [k for k in self.__cache if k.startswith(prefix)]
            for key in keys:
                del self.__cache[key]
        self.__token_cache.invalidate_tenant(tenant_id)
        logger.info("Cleared EHR adapter cache for tenant %s (%d entries)", tenant_id, len(keys))
        return len(keys)

    def clear_all_cache(self) -> int:
        with self.__lock:
            count = len(self.__cache)
            tenants = {k.split(":")[0] for k in self.__cache}
            self.__cache.clear()
        for tenant_id in tenants:
            self.__token_cache.invalidate_tenant(tenant_id)
        logger.info("Cleared all EHR adapter cache (%d entries)", count)
        return count

    @staticmethod
    def supported_vendors() -> list[EhrVendor]:
        return [EhrVendor.CERNER, EhrVendor.EPIC]

    def is_vendor_supported(self, vendor: str) -> bool:
        return vendor.lower() in {v.value for v in self.supported_vendors()}

    def cache_stats(self) -> Dict[str, Any]:
        with self.__lock:
            keys = list(self.__cache.keys())
        return {
            "total_entries": len(keys),
            "tenants": sorted({k.split(":")[0] for k in keys}),
            "vendors": sorted({k.split(":")[1] for k in keys}),
        }

    def __parse_vendor(self, vendor: EhrVendor | str) -> EhrVendor:
        if isinstance(vendor, EhrVendor):
            return vendor
        if not self.is_vendor_supported(vendor):
            raise ConfigurationError(f"Unsupported EHR vendor: {vendor}")
        return EhrVendor(vendor.lower())

    def __create(self, vendor: EhrVendor) -> VendorAdapter:
        match vendor:
            case EhrVendor.CERNER:
                return CernerAdapter(self.__tenant_provider, self.__token_cache, self.__timeout)
            case EhrVendor.EPIC:
                return EpicAdapter(
                    self.__tenant_provider,
                    self.__token_cache,
                    self.__timeout,
                    private_key_dir=self.__private_key_dir,
                )
            case _:
                raise ConfigurationError(f"Unsupported EHR vendor: {vendor}")
