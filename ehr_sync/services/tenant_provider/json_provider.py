import json
import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from ehr_sync.exceptions import ConfigurationError
from ehr_sync.models.tenant.dto import TenantEhrConfig
from ehr_sync.services.tenant_provider.tenant_provider import TenantProvider

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("vendor", "base_url", "system_app")


class TenantJsonProvider(TenantProvider):
    """
    Reads tenant configuration from a JSON file with a ``tenants`` list. Each tenant uses
    either the ``ehr_integration`` shape:

        {"id": "acme", "ehr_integration": {"type": "cerner", "cerner": {"base_url": ..., "system_app": {...}}}}

    or the legacy ``tenant_config`` shape, which is always Cerner and keeps the client
    credentials flat next to ``base_url``. When both are present ``ehr_integration`` wins.
    """

    def __init__(self, json_path: str) -> None:
        self.__raw_tenants = self._read_tenants_file(json_path)

    def get_all_tenants(self) -> List[TenantEhrConfig]:
        return [self.get_tenant(tenant_id) for tenant_id in self.__raw_tenants]

    def get_tenant(self, tenant_id: str) -> TenantEhrConfig:
        raw = self.__raw_tenants.get(tenant_id)
        if raw is None:
            raise ConfigurationError(f"Unknown tenant {tenant_id}")

        resolved = self.resolve(tenant_id, raw)
        missing = [f for f in REQUIRED_FIELDS if not resolved.get(f)]
        if missing:
            raise ConfigurationError(
                f"Tenant {tenant_id} is missing required EHR configuration: {', '.join(missing)}"
            )

        try:
            return TenantEhrConfig(**resolved)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid EHR configuration for tenant {tenant_id}: {e}")

    @staticmethod
    def resolve(tenant_id: str, raw: Dict[str, Any]) -> Dict[str, Any]:
        integration = raw.get("ehr_integration") or {}
        vendor = str(integration.get("type") or "").lower()
        vendor_config = integration.get(vendor) if vendor else None

        if not vendor_config:
            legacy = (raw.get("tenant_config") or {}).get("cerner")
            if legacy:
                logger.info("Tenant %s uses the legacy tenant_config shape", tenant_id)
                vendor = "cerner"
                vendor_config = TenantJsonProvider.from_legacy_shape(legacy)

        vendor_config = vendor_config or {}
        return {
            "tenant_id": tenant_id,
            "vendor": vendor or None,
            "base_url": vendor_config.get("base_url"),
            "system_app": vendor_config.get("system_app"),
            "provider_app": vendor_config.get("provider_app"),
            "target_store": raw.get("target_store"),
            "patients": vendor_config.get("patients") or raw.get("patients") or [],
        }

    @staticmethod
    def from_legacy_shape(legacy: Dict[str, Any]) -> Dict[str, Any]:
        """
        Legacy Cerner configuration kept client credentials flat. A nested ``system_app``
        takes precedence over the flat keys.
        """
        system_app = legacy.get("system_app")
        if system_app is None and legacy.get("client_id"):
            system_app = {
                "client_id": legacy.get("client_id"),
                "client_secret": legacy.get("client_secret"),
                "token_url": legacy.get("token_url"),
                "scopes": legacy.get("scopes"),
            }
        return {
            "base_url": legacy.get("base_url"),
            "system_app": system_app,
            "provider_app": legacy.get("provider_app"),
            "patients": legacy.get("patients"),
        }

    @staticmethod
    def _read_tenants_file(tenants_path: str) -> Dict[str, Dict[str, Any]]:
        try:
            with open(tenants_path) as f:
                data = json.load(f)
                return {str(item["id"]): item for item in data["tenants"]}
        except (FileNotFoundError, json.JSONDecodeError, KeyError) as e:
            raise ValueError(f"Error processing tenants file: {e}")
