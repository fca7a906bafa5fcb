from typing import Any, Dict
from unittest.mock import MagicMock

from ehr_sync.exceptions import TargetStoreError
from ehr_sync.models.export.dto import ResourceIds
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.services.export.composition_merger import CompositionSectionMerger
from ehr_sync.services.fhir.tags import get_tag_codes


def _refs(sections: list[Dict[str, Any]], title: str) -> list[str]:
    section = next(s for s in sections if s["title"] == title)
    return [e["reference"] for e in section["entry"]]


def test_build_sections_should_only_include_non_empty_sections() -> None:
    sections = CompositionSectionMerger.merge(
        [], ResourceIds(conditions=["c1", "c2"], binaries=["b1"])
    )

    assert [s["title"] for s in sections] == ["Conditions", "Binary Documents"]
    assert _refs(sections, "Conditions") == ["Condition/c1", "Condition/c2"]
    assert sections[0]["code"]["coding"][0]["code"] == "11450-4"


def test_merge_should_only_add_missing_references() -> None:
    existing = CompositionSectionMerger.merge(
        [], ResourceIds(conditions=["c1"], medication_requests=["m1"])
    )

    merged = CompositionSectionMerger.merge(
        existing, ResourceIds(conditions=["c1", "c2"], document_references=["d1"])
    )

    assert _refs(merged, "Conditions") == ["Condition/c1", "Condition/c2"]
    assert _refs(merged, "Medication Requests") == ["MedicationRequest/m1"]
    assert _refs(merged, "Document References") == ["DocumentReference/d1"]
    # Input is not modified
    assert _refs(existing, "Conditions") == ["Condition/c1"]


def test_merge_should_keep_unknown_sections() -> None:
    existing = [{"title": "Notes", "entry": [{"reference": "Observation/o1"}]}]

    merged = CompositionSectionMerger.merge(existing, ResourceIds(appointments=["a1"]))

    assert [s["title"] for s in merged] == ["Notes", "Appointments"]


def test_merge_twice_should_not_change_result() -> None:
    ids = ResourceIds(conditions=["c1"], binaries=["b1"], document_references=["d1"])
    once = CompositionSectionMerger.merge([], ids)

    assert CompositionSectionMerger.merge(once, ids) == once


def test_create_or_update_should_create_new_composition(
    target_store_provider: MagicMock, target_store: MagicMock, ctx: TenantContext
) -> None:
    target_store.create.side_effect = lambda t, body: {**body, "id": "comp-1"}

    composition = CompositionSectionMerger(target_store_provider).create_or_update(
        "enc-1", "t-enc", "t-1", ResourceIds(conditions=["c1"]), ctx, "cerner"
    )

    assert composition is not None
    assert composition["id"] == "comp-1"
    assert composition["identifier"] == {"system": "original-cerner-encounter", "value": "enc-1"}
    assert composition["subject"] == {"reference": "Patient/t-1"}
    assert composition["encounter"] == {"reference": "Encounter/t-enc"}
    assert composition["title"] == "Encounter Export Composition - enc-1"
    assert "original-cerner-id-enc-1" in get_tag_codes(composition)
    assert "original-cerner-encounter-enc-1" in get_tag_codes(composition)
    target_store.search.assert_called_once_with(
        "Composition", {"identifier": "original-cerner-encounter|enc-1"}
    )


def test_create_or_update_should_merge_into_existing_composition(
    target_store_provider: MagicMock, target_store: MagicMock, ctx: TenantContext
) -> None:
    existing = {
        "resourceType": "Composition",
        "id": "comp-1",
        "title": "Encounter Export Composition - enc-1",
        "section": CompositionSectionMerger.merge([], ResourceIds(conditions=["c1"])),
    }
    target_store.search.return_value = [existing]
    target_store.update.side_effect = lambda t, i, body: body

    composition = CompositionSectionMerger(target_store_provider).create_or_update(
        "enc-1", "t-enc", "t-1", ResourceIds(conditions=["c2"]), ctx, "cerner"
    )

    assert composition is not None
    assert _refs(composition["section"], "Conditions") == ["Condition/c1", "Condition/c2"]
    assert target_store.update.call_args.args[:2] == ("Composition", "comp-1")
    target_store.create.assert_not_called()


def test_create_or_update_should_return_none_on_store_error(
    target_store_provider: MagicMock, target_store: MagicMock, ctx: TenantContext
) -> None:
    target_store.search.side_effect = TargetStoreError("down", 503)

    assert (
        CompositionSectionMerger(target_store_provider).create_or_update(
            "enc-1", "t-enc", "t-1", ResourceIds(), ctx, "cerner"
        )
        is None
    )
