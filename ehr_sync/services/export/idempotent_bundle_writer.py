import logging
from typing import Any, Dict

from fhir.resources.R4B.bundle import Bundle

from ehr_sync.exceptions import TargetStoreError
from ehr_sync.models.export.dto import EncounterBundle
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.services.api.target_store_provider import TargetStoreProvider
from ehr_sync.services.export.encounter_bundle_builder import source_identifier
from ehr_sync.services.fhir.references import parse_location
from ehr_sync.services.fhir.tags import if_none_exist_query
from ehr_sync.services.fhir.utils import CREATED_STATUSES, parse_status_code

logger = logging.getLogger(__name__)


class IdempotentBundleWriter:
    """
    Writes encounter data with conditional creates. Each entry is a ``POST`` guarded by
    ``ifNoneExist`` on the correlation identifier, so the target store itself decides
    between creating and matching. The bundle is a batch: one failing entry does not roll
    back the others.
    """

    def __init__(self, target_store_provider: TargetStoreProvider) -> None:
        self.__target_store_provider = target_store_provider

    @staticmethod
    def build_batch(resources: list[Dict[str, Any]], vendor: str) -> Dict[str, Any]:
        entries = []
        for resource in resources:
            resource_type = resource.get("resourceType")
            source_id = source_identifier(resource, vendor)
            if not resource_type or source_id is None:
                logger.info(
                    "Skipping %s without correlation identifier", resource_type or "resource"
                )
                continue

            entries.append(
                {
                    "request": {
                        "method": "POST",
                        "url": resource_type,
                        "ifNoneExist": if_none_exist_query(vendor, source_id),
                    },
                    "resource": resource,
                }
            )

        return {"resourceType": "Bundle", "type": "batch", "entry": entries}

    def create_encounter(
        self, encounter: Dict[str, Any], vendor: str, ctx: TenantContext
    ) -> str:
        """
        Creates (or matches) the encounter on its own, since dependent resources need its
        target id before they can be batched.
        """
        if source_identifier(encounter, vendor) is None:
            raise ValueError(f"Encounter missing original-{vendor.lower()}-id identifier")

        ids = self.__submit_batch(self.build_batch([encounter], vendor), ctx)
        encounter_ids = ids.get("Encounter") or []
        if not encounter_ids:
            raise TargetStoreError("Failed to create encounter in target FHIR store")

        logger.info("Encounter available in target store as Encounter/%s", encounter_ids[0])
        return encounter_ids[0]

    def submit(
        self, bundle: EncounterBundle, vendor: str, ctx: TenantContext
    ) -> dict[str, list[str]]:
        """
        Writes the dependent resources of an encounter. Returns the created or matched ids
        grouped by resource type.
        """
        batch = self.build_batch(bundle.resources(), vendor)
        if not batch["entry"]:
            logger.info("Nothing to write for encounter bundle")
            return {}

        logger.info("Submitting conditional create bundle with %d entries", len(batch["entry"]))
        return self.__submit_batch(batch, ctx)

    def __submit_batch(self, batch: Dict[str, Any], ctx: TenantContext) -> dict[str, list[str]]:
        store = self.__target_store_provider.get_client(ctx)
        response, errors = store.submit_batch(batch)
        for error in errors:
            logger.warning(
                "Bundle entry %d failed with status %d: %s", error.entry, error.status, error.diagnostics
            )
        return self.extract_ids(response)

    @staticmethod
    def extract_ids(response: Bundle) -> dict[str, list[str]]:
        ids: dict[str, list[str]] = {}
        for entry in response.entry or []:
            resp = entry.response  # type: ignore[attr-defined]
            if resp is None or parse_status_code(resp) not in CREATED_STATUSES:
                continue

            location = parse_location(resp.location)
            if location is None:
                logger.warning("Cannot determine resource from location %s", resp.location)
                continue

            ids.setdefault(location.resource_type, []).append(location.id)
            logger.info("%s created or matched: %s", location.resource_type, location.id)

        return ids
