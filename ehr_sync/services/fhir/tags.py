"""
Correlation tags and identifiers that relate target resources back to their source record.

Every resource this service writes carries exactly one correlation tag of the form
``original-<vendor>-id-<sourceId>``. Conditional creates use the matching identifier
``original-<vendor>-id|<sourceId>``.
"""
from typing import Any

TAG_SYSTEM = "http://ehr-sync.local/fhir/tags"
PATIENT_IDENTIFIER_SYSTEM = "urn:oid:2.16.840.1.113883.3.787.0.0"


def correlation_tag(vendor: str, source_id: str) -> str:
    return f"original-{vendor.lower()}-id-{source_id}"


def correlation_identifier_system(vendor: str) -> str:
    return f"original-{vendor.lower()}-id"


def if_none_exist_query(vendor: str, source_id: str) -> str:
    return f"identifier={correlation_identifier_system(vendor)}|{source_id}"


def encounter_composition_system(vendor: str) -> str:
    return f"original-{vendor.lower()}-encounter"


def make_tag(code: str, display: str | None = None) -> dict[str, Any]:
    tag: dict[str, Any] = {"system": TAG_SYSTEM, "code": code}
    if display:
        tag["display"] = display
    return tag


def correlation_meta_tag(vendor: str, source_id: str) -> dict[str, Any]:
    return make_tag(correlation_tag(vendor, source_id))


def exported_from_tag(vendor: str) -> dict[str, Any]:
    return make_tag(f"exported-from-{vendor.lower()}", f"Exported from {vendor.capitalize()}")


def get_tag_codes(resource: dict[str, Any]) -> list[str]:
    return [
        str(t.get("code"))
        for t in (resource.get("meta") or {}).get("tag") or []
        if t.get("code")
    ]
