import base64
import logging
from typing import Any, Dict

from ehr_sync.models.ehr.types import EhrCapabilities, EhrVendor, TokenState
from ehr_sync.models.tenant.dto import TenantContext, TenantEhrConfig
from ehr_sync.services.ehr.vendor_adapter import VendorAdapter, has_resources

logger = logging.getLogger(__name__)

SUPPORTED_RESOURCES = [
    "Patient",
    "Encounter",
    "DocumentReference",
    "Composition",
    "Binary",
    "Observation",
    "Condition",
    "Medication",
    "MedicationRequest",
    "Procedure",
    "AllergyIntolerance",
    "Immunization",
]


class CernerAdapter(VendorAdapter):
    """
    Cerner (Oracle Health) Millennium FHIR R4. System tokens use client credentials with
    HTTP Basic authentication. Full CRUD is supported.
    """

    vendor = EhrVendor.CERNER

    def get_capabilities(self) -> EhrCapabilities:
        return EhrCapabilities(
            vendor=self.vendor,
            supports_delete=True,
            supports_update=True,
            max_search_count=None,
            supported_resources=SUPPORTED_RESOURCES,
        )

    def _request_system_token(self, tenant: TenantEhrConfig) -> TokenState | None:
        app = tenant.system_app
        if not app.client_id or not app.client_secret or not app.token_url or not app.scopes:
            logger.error("Missing Cerner system app configuration for tenant %s", tenant.tenant_id)
            return None

        credentials = base64.b64encode(
            f"{app.client_id}:{app.client_secret}".encode("utf-8")
        ).decode("ascii")
        return self._request_token(
            app.token_url,
            data={"grant_type": "client_credentials", "scope": app.scopes},
            headers={"Authorization": f"Basic {credentials}"},
        )

    def search_discharge_summaries(
        self, patient_id: str, ctx: TenantContext
    ) -> Dict[str, Any] | None:
        logger.info("Searching discharge summaries for patient %s", patient_id)
        result = self.search_resource("DocumentReference", {"patient": patient_id}, ctx)

        if not has_resources(result):
            logger.info("No DocumentReference found for patient %s, trying Composition", patient_id)
            result = self.search_resource("Composition", {"patient": patient_id}, ctx)

        return result
