import copy
from datetime import datetime, timezone
import logging
from typing import Any, Dict, NamedTuple

from ehr_sync.models.export.dto import ResourceIds
from ehr_sync.models.fhir.types import LOINC_SYSTEM
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.services.api.target_store_provider import TargetStoreProvider
from ehr_sync.services.fhir.tags import (
    correlation_meta_tag,
    encounter_composition_system,
    exported_from_tag,
    make_tag,
)

logger = logging.getLogger(__name__)


class SectionDefinition(NamedTuple):
    title: str
    resource_type: str
    field: str
    code: str
    display: str


SECTIONS = (
    SectionDefinition("Document References", "DocumentReference", "document_references", "11488-4", "Consult note"),
    SectionDefinition("Conditions", "Condition", "conditions", "11450-4", "Problem list"),
    SectionDefinition("Medication Requests", "MedicationRequest", "medication_requests", "10160-0", "History of medication use"),
    SectionDefinition("Appointments", "Appointment", "appointments", "11450-4", "Appointment list"),
    SectionDefinition("Binary Documents", "Binary", "binaries", "11488-4", "Binary documents"),
)


def _new_section(definition: SectionDefinition) -> Dict[str, Any]:
    return {
        "title": definition.title,
        "code": {
            "coding": [
                {"system": LOINC_SYSTEM, "code": definition.code, "display": definition.display}
            ]
        },
        "entry": [],
    }


class CompositionSectionMerger:
    """
    Keeps one Composition per source encounter that lists everything exported for it.
    Sections are keyed by title and only grow: repeated exports add the references that
    are missing and never drop existing ones.
    """

    def __init__(self, target_store_provider: TargetStoreProvider) -> None:
        self.__target_store_provider = target_store_provider

    @staticmethod
    def merge(
        existing_sections: list[Dict[str, Any]], resource_ids: ResourceIds
    ) -> list[Dict[str, Any]]:
        merged = copy.deepcopy(existing_sections)

        for definition in SECTIONS:
            ids: list[str] = getattr(resource_ids, definition.field)
            if not ids:
                continue

            section = next((s for s in merged if s.get("title") == definition.title), None)
            if section is None:
                section = _new_section(definition)
                merged.append(section)

            entries = section.setdefault("entry", [])
            present = {e.get("reference") for e in entries}
            for resource_id in ids:
                reference = f"{definition.resource_type}/{resource_id}"
                if reference in present:
                    continue
                entries.append({"reference": reference})
                present.add(reference)

        return merged

    def build_sections(self, resource_ids: ResourceIds) -> list[Dict[str, Any]]:
        return self.merge([], resource_ids)

    def find_composition(
        self, source_encounter_id: str, ctx: TenantContext, vendor: str
    ) -> Dict[str, Any] | None:
        store = self.__target_store_provider.get_client(ctx)
        matches = store.search(
            "Composition",
            {"identifier": f"{encounter_composition_system(vendor)}|{source_encounter_id}"},
        )
        return matches[0] if matches else None

    def create_or_update(
        self,
        source_encounter_id: str,
        target_encounter_id: str,
        target_patient_id: str,
        resource_ids: ResourceIds,
        ctx: TenantContext,
        vendor: str,
    ) -> Dict[str, Any] | None:
        """
        Returns the stored Composition, or None when the target store could not be
        searched or written.
        """
        try:
            existing = self.find_composition(source_encounter_id, ctx, vendor)
            store = self.__target_store_provider.get_client(ctx)

            if existing is not None:
                logger.info(
                    "Updating Composition/%s for encounter %s", existing.get("id"), source_encounter_id
                )
                updated = {
                    **existing,
                    "section": self.merge(existing.get("section") or [], resource_ids),
                    "date": datetime.now(timezone.utc).isoformat(),
                }
                return store.update("Composition", str(existing["id"]), updated)

            logger.info("Creating Composition for encounter %s", source_encounter_id)
            return store.create(
                "Composition",
                self.__new_composition(
                    source_encounter_id, target_encounter_id, target_patient_id, resource_ids, vendor
                ),
            )
        except Exception as e:
            logger.error("Error creating or updating composition for encounter %s: %s", source_encounter_id, e)
            return None

    def __new_composition(
        self,
        source_encounter_id: str,
        target_encounter_id: str,
        target_patient_id: str,
        resource_ids: ResourceIds,
        vendor: str,
    ) -> Dict[str, Any]:
        system = encounter_composition_system(vendor)
        return {
            "resourceType": "Composition",
            "status": "final",
            "type": {
                "coding": [{"system": LOINC_SYSTEM, "code": "11488-4", "display": "Consult note"}]
            },
            "subject": {"reference": f"Patient/{target_patient_id}"},
            "encounter": {"reference": f"Encounter/{target_encounter_id}"},
            "date": datetime.now(timezone.utc).isoformat(),
            "title": f"Encounter Export Composition - {source_encounter_id}",
            "author": [{"display": "EHR Sync Export System"}],
            "identifier": {"system": system, "value": source_encounter_id},
            "meta": {
                "tag": [
                    exported_from_tag(vendor),
                    correlation_meta_tag(vendor, source_encounter_id),
                    make_tag(f"{system}-{source_encounter_id}"),
                ]
            },
            "section": self.build_sections(resource_ids),
        }
