import logging
import os
import time
from typing import Any, Dict
from uuid import uuid4

import jwt

from ehr_sync.models.ehr.types import EhrCapabilities, EhrVendor, TokenState
from ehr_sync.models.fhir.types import LOINC_DISCHARGE_SUMMARY, LOINC_SYSTEM
from ehr_sync.models.tenant.dto import SystemAppConfig, TenantContext, TenantEhrConfig
from ehr_sync.services.ehr.token_cache import TokenCache
from ehr_sync.services.ehr.vendor_adapter import VendorAdapter
from ehr_sync.services.tenant_provider.tenant_provider import TenantProvider

logger = logging.getLogger(__name__)

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 300
MAX_SEARCH_COUNT = 100

SUPPORTED_RESOURCES = [
    "Patient",
    "Encounter",
    "DocumentReference",
    "Binary",
    "Observation",
    "Condition",
    "MedicationRequest",
    "Procedure",
    "AllergyIntolerance",
    "Immunization",
    "DiagnosticReport",
    "CarePlan",
]


class EpicAdapter(VendorAdapter):
    """
    Epic FHIR R4 via SMART Backend Services. System tokens are obtained with an RS384
    signed JWT client assertion. Epic is read-mostly: deletes are refused locally and
    updates are attempted with a warning. Every request carries ``Epic-Client-ID``.
    """

    vendor = EhrVendor.EPIC
    default_binary_accept = "application/pdf"

    def __init__(
        self,
        tenant_provider: TenantProvider,
        token_cache: TokenCache,
        timeout: int = 30,
        private_key_dir: str | None = None,
    ) -> None:
        super().__init__(tenant_provider, token_cache, timeout)
        self.__private_key_dir = private_key_dir

    def get_capabilities(self) -> EhrCapabilities:
        return EhrCapabilities(
            vendor=self.vendor,
            supports_delete=False,
            supports_update=False,
            max_search_count=MAX_SEARCH_COUNT,
            supported_resources=SUPPORTED_RESOURCES,
        )

    def _vendor_headers(self, tenant: TenantEhrConfig) -> Dict[str, str]:
        return {"Epic-Client-ID": tenant.system_app.client_id or ""}

    def _search_params(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {**params, "_count": params.get("_count") or MAX_SEARCH_COUNT}

    def _request_system_token(self, tenant: TenantEhrConfig) -> TokenState | None:
        app = tenant.system_app
        if not app.client_id or not app.token_url or not app.scopes:
            logger.error("Missing Epic system app configuration for tenant %s", tenant.tenant_id)
            return None

        if not app.private_key_path or not app.key_id:
            logger.error("Epic requires private_key_path and key_id for JWT authentication")
            return None

        try:
            assertion = self.create_client_assertion(app)
        except (OSError, ValueError, jwt.PyJWTError) as e:
            logger.error("Failed to sign Epic client assertion: %s", e)
            return None

        return self._request_token(
            app.token_url,
            data={
                "grant_type": "client_credentials",
                "client_assertion_type": CLIENT_ASSERTION_TYPE,
                "client_assertion": assertion,
                "scope": app.scopes,
            },
            headers={},
        )

    def create_client_assertion(self, app: SystemAppConfig) -> str:
        now = int(time.time())
        claims = {
            "iss": app.client_id,
            "sub": app.client_id,
            "aud": app.token_url,
            "jti": str(uuid4()),
            "iat": now,
            "exp": now + ASSERTION_LIFETIME_SECONDS,
        }
        return jwt.encode(
            claims,
            self.__read_private_key(str(app.private_key_path)),
            algorithm="RS384",
            headers={"kid": app.key_id},
        )

    def __read_private_key(self, path: str) -> str:
        if self.__private_key_dir and not os.path.isabs(path):
            path = os.path.join(self.__private_key_dir, path)
        with open(path) as f:
            return f.read()

    def update_resource(
        self,
        resource_type: str,
        resource_id: str,
        resource: Dict[str, Any],
        ctx: TenantContext,
    ) -> Dict[str, Any] | None:
        logger.warning("Epic has limited UPDATE support for most resource types")
        return super().update_resource(resource_type, resource_id, resource, ctx)

    def delete_resource(
        self, resource_type: str, resource_id: str, ctx: TenantContext
    ) -> bool | Dict[str, Any]:
        logger.warning(
            "DELETE of %s/%s is not supported by Epic", resource_type, resource_id
        )
        return False

    def search_discharge_summaries(
        self, patient_id: str, ctx: TenantContext
    ) -> Dict[str, Any] | None:
        logger.info("Searching discharge summaries for patient %s in Epic", patient_id)
        return self.search_resource(
            "DocumentReference",
            {
                "patient": patient_id,
                "type": f"{LOINC_SYSTEM}|{LOINC_DISCHARGE_SUMMARY}",
                "_count": MAX_SEARCH_COUNT,
            },
            ctx,
        )
