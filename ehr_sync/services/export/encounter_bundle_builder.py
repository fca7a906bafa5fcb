"""
Turns vendor encounter data into resources that only point at the target patient and the
target encounter. Any other reference (practitioners, locations, organizations, accounts)
would dangle in the target store, so those fields are dropped.
"""
import logging
from typing import Any, Dict, Iterable

from ehr_sync.models.export.dto import EncounterBundle
from ehr_sync.services.fhir.tags import correlation_identifier_system, correlation_meta_tag

logger = logging.getLogger(__name__)

ENCOUNTER_STRIPPED_FIELDS = (
    "serviceProvider",
    "location",
    "reasonReference",
    "diagnosis",
    "account",
    "hospitalization",
    "partOf",
    "appointment",
    "participant",
    "reasonCode",
)
MEDICATION_REQUEST_STRIPPED_FIELDS = (
    "requester",
    "performer",
    "recorder",
    "basedOn",
    "priorPrescription",
    "detectedIssue",
    "eventHistory",
)
CONDITION_STRIPPED_FIELDS = ("recorder", "asserter", "evidence", "appointment")
APPOINTMENT_STRIPPED_FIELDS = (
    "basedOn",
    "replaces",
    "supportingInformation",
    "extension",
    "partOf",
    "slot",
)


def source_identifier(resource: Dict[str, Any], vendor: str) -> str | None:
    """
    Returns the source id recorded in the correlation identifier of a transformed resource.
    """
    system = correlation_identifier_system(vendor)
    for identifier in resource.get("identifier") or []:
        if identifier.get("system") == system and identifier.get("value"):
            return str(identifier["value"])
    return None


def _correlate(
    resource: Dict[str, Any], vendor: str, stripped: Iterable[str]
) -> Dict[str, Any]:
    transformed = {
        k: v for k, v in resource.items() if k not in stripped and k != "id"
    }
    if not resource.get("id"):
        # Without a source id there is nothing to correlate on; the writer skips these
        logger.warning("%s without id cannot be correlated", resource.get("resourceType"))
        return transformed

    source_id = str(resource["id"])
    transformed["identifier"] = [
        *(resource.get("identifier") or []),
        {"system": correlation_identifier_system(vendor), "value": source_id},
    ]
    meta = {k: v for k, v in (resource.get("meta") or {}).items() if k not in ("versionId", "lastUpdated")}
    meta["tag"] = [correlation_meta_tag(vendor, source_id)]
    transformed["meta"] = meta
    return transformed


def transform_encounter(
    encounter: Dict[str, Any], target_patient_id: str, vendor: str
) -> Dict[str, Any]:
    transformed = _correlate(encounter, vendor, ENCOUNTER_STRIPPED_FIELDS)
    transformed["subject"] = {"reference": f"Patient/{target_patient_id}"}
    return transformed


def transform_medication_request(
    medication_request: Dict[str, Any],
    target_patient_id: str,
    target_encounter_id: str,
    vendor: str,
) -> Dict[str, Any]:
    transformed = _correlate(medication_request, vendor, MEDICATION_REQUEST_STRIPPED_FIELDS)
    transformed["subject"] = {"reference": f"Patient/{target_patient_id}"}
    transformed["encounter"] = {"reference": f"Encounter/{target_encounter_id}"}
    return transformed


def transform_condition(
    condition: Dict[str, Any],
    target_patient_id: str,
    target_encounter_id: str,
    vendor: str,
) -> Dict[str, Any]:
    transformed = _correlate(condition, vendor, CONDITION_STRIPPED_FIELDS)
    transformed["subject"] = {"reference": f"Patient/{target_patient_id}"}
    transformed["encounter"] = {"reference": f"Encounter/{target_encounter_id}"}
    return transformed


def transform_appointment(
    appointment: Dict[str, Any], target_patient_id: str, vendor: str
) -> Dict[str, Any]:
    transformed = _correlate(appointment, vendor, APPOINTMENT_STRIPPED_FIELDS)

    # Only the patient participant survives, re-pointed at the target patient
    participants = []
    for participant in appointment.get("participant") or []:
        actor_ref = (participant.get("actor") or {}).get("reference") or ""
        if "Patient/" not in actor_ref:
            continue
        participants.append({**participant, "actor": {"reference": f"Patient/{target_patient_id}"}})

    if participants:
        transformed["participant"] = participants
    else:
        transformed.pop("participant", None)
    return transformed


def build_encounter_bundle(
    medication_requests: list[Dict[str, Any]],
    appointments: list[Dict[str, Any]],
    conditions: list[Dict[str, Any]],
    target_patient_id: str,
    target_encounter_id: str,
    vendor: str,
) -> EncounterBundle:
    logger.info(
        "Building encounter bundle for Encounter/%s: %d medication requests, %d appointments, %d conditions",
        target_encounter_id,
        len(medication_requests),
        len(appointments),
        len(conditions),
    )
    return EncounterBundle(
        medication_requests=[
            transform_medication_request(m, target_patient_id, target_encounter_id, vendor)
            for m in medication_requests
        ],
        appointments=[transform_appointment(a, target_patient_id, vendor) for a in appointments],
        conditions=[
            transform_condition(c, target_patient_id, target_encounter_id, vendor)
            for c in conditions
        ],
    )
