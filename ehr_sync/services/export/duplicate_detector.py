import logging

from ehr_sync.models.export.dto import DuplicateCheck
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.services.api.target_store_provider import TargetStoreProvider
from ehr_sync.services.fhir.references import reference_id
from ehr_sync.services.fhir.tags import correlation_tag

logger = logging.getLogger(__name__)


class DuplicateDetector:
    """
    Looks up earlier exports through the correlation tag. Search failures count as
    "not a duplicate" so a flaky target store does not block exports.
    """

    def __init__(self, target_store_provider: TargetStoreProvider) -> None:
        self.__target_store_provider = target_store_provider

    def is_duplicate(
        self, source_document_id: str, ctx: TenantContext, vendor: str
    ) -> DuplicateCheck:
        return self.__check("DocumentReference", source_document_id, ctx, vendor)

    def is_encounter_duplicate(
        self, source_encounter_id: str, ctx: TenantContext, vendor: str
    ) -> DuplicateCheck:
        return self.__check("Encounter", source_encounter_id, ctx, vendor)

    def __check(
        self, resource_type: str, source_id: str, ctx: TenantContext, vendor: str
    ) -> DuplicateCheck:
        tag = correlation_tag(vendor, source_id)
        logger.info("Checking target store for %s with tag %s", resource_type, tag)

        try:
            store = self.__target_store_provider.get_client(ctx)
            matches = store.search(resource_type, {"_tag": tag, "_count": 1})
        except Exception:
            logger.warning(
                "Duplicate check for %s %s failed, assuming not exported", resource_type, source_id,
                exc_info=True,
            )
            return DuplicateCheck(is_duplicate=False)

        if not matches:
            return DuplicateCheck(is_duplicate=False)

        existing = matches[0]
        patient_ref = (existing.get("subject") or {}).get("reference")
        target_patient_id = reference_id(patient_ref, "Patient")
        logger.info(
            "Found earlier export %s/%s for patient %s",
            resource_type,
            existing.get("id"),
            target_patient_id,
        )
        return DuplicateCheck(is_duplicate=True, target_patient_id=target_patient_id)
