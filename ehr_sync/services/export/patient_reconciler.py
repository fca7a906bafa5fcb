import logging
import re
from typing import Any, Dict

from fhir.resources.R4B.patient import Patient
from pydantic import ValidationError

from ehr_sync.exceptions import ConfigurationError
from ehr_sync.models.ehr.types import EhrVendor
from ehr_sync.models.export.dto import MappingAction, PatientMapping
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.services.api.target_store_provider import TargetStoreProvider
from ehr_sync.services.ehr.factory import VendorAdapterFactory
from ehr_sync.services.ehr.vendor_adapter import VendorAdapter
from ehr_sync.services.fhir.tags import (
    PATIENT_IDENTIFIER_SYSTEM,
    correlation_meta_tag,
    make_tag,
)

logger = logging.getLogger(__name__)

VALID_GENDERS = {"male", "female", "other", "unknown"}
BIRTH_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MR_TYPE_SYSTEM = "http://terminology.hl7.org/CodeSystem/v2-0203"


def clean_null_characters(value: Any) -> Any:
    """
    Strips NUL characters and surrounding whitespace from every string, recursively.
    """
    if isinstance(value, str):
        return value.replace("\x00", "").strip()
    if isinstance(value, list):
        return [clean_null_characters(v) for v in value]
    if isinstance(value, dict):
        return {k: clean_null_characters(v) for k, v in value.items()}
    return value


def build_target_patient(
    source: Dict[str, Any], source_patient_id: str, vendor: str
) -> Dict[str, Any]:
    cleaned = clean_null_characters(source)

    names = [n for n in cleaned.get("name") or [] if n and (n.get("family") or n.get("given"))]
    gender = cleaned.get("gender") if cleaned.get("gender") in VALID_GENDERS else "unknown"
    birth_date = cleaned.get("birthDate")
    if not isinstance(birth_date, str) or not BIRTH_DATE_PATTERN.match(birth_date):
        birth_date = None

    patient: Dict[str, Any] = {
        "resourceType": "Patient",
        "identifier": [
            {
                "use": "usual",
                "type": {
                    "coding": [
                        {
                            "system": MR_TYPE_SYSTEM,
                            "code": "MR",
                            "display": "Medical record number",
                        }
                    ]
                },
                "system": PATIENT_IDENTIFIER_SYSTEM,
                "value": source_patient_id,
            }
        ],
        "active": source.get("active") is not False,
        "gender": gender,
        "meta": {
            "tag": [
                make_tag(f"imported-from-{vendor}", f"Imported from {vendor.capitalize()}"),
                correlation_meta_tag(vendor, source_patient_id),
            ]
        },
    }
    if names:
        patient["name"] = names
    if birth_date:
        patient["birthDate"] = birth_date

    return patient


class PatientIdentityReconciler:
    """
    Maps a source patient id onto a target store patient, creating the target patient the
    first time the source patient is seen. ``reconcile`` never raises.
    """

    def __init__(
        self,
        target_store_provider: TargetStoreProvider,
        adapter_factory: VendorAdapterFactory,
    ) -> None:
        self.__target_store_provider = target_store_provider
        self.__adapter_factory = adapter_factory

    def reconcile(
        self, adapter: VendorAdapter, source_patient_id: str, ctx: TenantContext
    ) -> PatientMapping:
        vendor = adapter.get_vendor().value
        logger.info("Mapping %s patient %s to target store", vendor, source_patient_id)

        try:
            source = adapter.fetch_resource("Patient", source_patient_id, ctx)
            if not source or source.get("resourceType") != "Patient":
                logger.error("%s patient %s not found", vendor, source_patient_id)
                return self.__failed(source_patient_id, f"{vendor} patient not found")

            store = self.__target_store_provider.get_client(ctx)
            existing = store.search(
                "Patient",
                {"identifier": f"{PATIENT_IDENTIFIER_SYSTEM}|{source_patient_id}", "_count": 1},
            )
            if existing and existing[0].get("id"):
                logger.info(
                    "Found target patient %s for %s patient %s",
                    existing[0]["id"],
                    vendor,
                    source_patient_id,
                )
                return PatientMapping(
                    source_patient_id=source_patient_id,
                    target_patient_id=str(existing[0]["id"]),
                    action=MappingAction.FOUND,
                )

            target_patient = build_target_patient(source, source_patient_id, vendor)
            Patient.model_validate(target_patient)

            created = store.create("Patient", target_patient)
            if not created.get("id"):
                return self.__failed(source_patient_id, "Failed to create target patient")

            logger.info(
                "Created target patient %s for %s patient %s",
                created["id"],
                vendor,
                source_patient_id,
            )
            return PatientMapping(
                source_patient_id=source_patient_id,
                target_patient_id=str(created["id"]),
                action=MappingAction.CREATED,
            )
        except ValidationError as e:
            logger.error("Source patient %s does not yield a valid Patient: %s", source_patient_id, e)
            return self.__failed(source_patient_id, f"Invalid patient data: {e.error_count()} validation errors")
        except Exception as e:
            logger.exception("Error mapping %s patient %s", vendor, source_patient_id)
            return self.__failed(source_patient_id, str(e))

    def reconcile_for_vendor(
        self, vendor: EhrVendor | str, source_patient_id: str, ctx: TenantContext
    ) -> PatientMapping:
        """
        Reconciles against an explicit vendor instead of the tenant's configured one.
        """
        try:
            adapter = self.__adapter_factory.get_adapter_by_vendor(vendor, ctx.tenant_id)
        except ConfigurationError as e:
            return self.__failed(source_patient_id, str(e))
        return self.reconcile(adapter, source_patient_id, ctx)

    @staticmethod
    def __failed(source_patient_id: str, error: str) -> PatientMapping:
        return PatientMapping(
            source_patient_id=source_patient_id,
            action=MappingAction.FAILED,
            error=error,
        )
