from typing import Any, Dict
from unittest.mock import MagicMock

import pytest

from ehr_sync.exceptions import TargetStoreError
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.services.export.document_retrieval_service import DocumentRetrievalService

DOCUMENT_REFERENCE = {
    "resourceType": "DocumentReference",
    "id": "dr-1",
    "status": "current",
    "subject": {"reference": "Patient/t-1"},
    "content": [{"attachment": {"contentType": "application/pdf", "url": "Binary/b-1"}}],
}
COMPOSITION = {
    "resourceType": "Composition",
    "id": "comp-1",
    "title": "Discharge Summary",
    "section": [{"title": "Document Reference", "entry": [{"reference": "DocumentReference/dr-1"}]}],
}
BINARY = {"resourceType": "Binary", "id": "b-1", "contentType": "application/pdf", "data": "JVBERi0xLjQ="}


def _store(resources: Dict[str, Dict[str, Any]]) -> Any:
    return lambda resource_type, resource_id: resources.get(f"{resource_type}/{resource_id}")


@pytest.fixture()
def service(target_store_provider: MagicMock) -> DocumentRetrievalService:
    return DocumentRetrievalService(target_store_provider)


def test_get_binary_by_document_reference(
    service: DocumentRetrievalService, target_store: MagicMock, ctx: TenantContext
) -> None:
    target_store.read.side_effect = _store({"DocumentReference/dr-1": DOCUMENT_REFERENCE, "Binary/b-1": BINARY})

    result = service.get_binary(ctx, document_reference_id="dr-1")

    assert result.success is True
    assert result.binary == {
        "id": "b-1",
        "contentType": "application/pdf",
        "data": "JVBERi0xLjQ=",
        "size": 12,
        "meta": None,
    }
    assert result.document_reference is not None
    assert result.document_reference["id"] == "dr-1"
    assert result.composition is None


def test_get_binary_by_composition(
    service: DocumentRetrievalService, target_store: MagicMock, ctx: TenantContext
) -> None:
    target_store.read.side_effect = _store(
        {"Composition/comp-1": COMPOSITION, "DocumentReference/dr-1": DOCUMENT_REFERENCE, "Binary/b-1": BINARY}
    )

    result = service.get_binary(ctx, composition_id="comp-1")

    assert result.success is True
    assert result.composition is not None
    assert result.composition["title"] == "Discharge Summary"
    assert result.binary is not None
    assert result.binary["id"] == "b-1"


def test_get_binary_requires_an_id(service: DocumentRetrievalService, ctx: TenantContext) -> None:
    result = service.get_binary(ctx)

    assert result.success is False
    assert result.error == "Either documentReferenceId or compositionId must be provided"


@pytest.mark.parametrize(
    "resources, kwargs, error",
    [
        ({}, {"document_reference_id": "dr-1"}, "DocumentReference not found or invalid"),
        ({}, {"composition_id": "comp-1"}, "Composition not found or invalid"),
        (
            {"Composition/comp-1": {**COMPOSITION, "section": []}},
            {"composition_id": "comp-1"},
            "No sections found in Composition",
        ),
        (
            {"Composition/comp-1": {**COMPOSITION, "section": [{"title": "x", "entry": []}]}},
            {"composition_id": "comp-1"},
            "No entries found in Composition section",
        ),
        (
            {"Composition/comp-1": {**COMPOSITION, "section": [{"entry": [{"reference": "Condition/c1"}]}]}},
            {"composition_id": "comp-1"},
            "No DocumentReference found in Composition entry",
        ),
        (
            {"Composition/comp-1": COMPOSITION},
            {"composition_id": "comp-1"},
            "Referenced DocumentReference not found or invalid",
        ),
        (
            {"DocumentReference/dr-1": {**DOCUMENT_REFERENCE, "content": []}},
            {"document_reference_id": "dr-1"},
            "No content found in DocumentReference",
        ),
        (
            {"DocumentReference/dr-1": {**DOCUMENT_REFERENCE, "content": [{"attachment": {}}]}},
            {"document_reference_id": "dr-1"},
            "No attachment URL found in DocumentReference",
        ),
        (
            {"DocumentReference/dr-1": {**DOCUMENT_REFERENCE, "content": [{"attachment": {"url": "http://x/"}}]}},
            {"document_reference_id": "dr-1"},
            "Invalid Binary URL format",
        ),
        (
            {"DocumentReference/dr-1": DOCUMENT_REFERENCE},
            {"document_reference_id": "dr-1"},
            "Binary resource not found or invalid",
        ),
    ],
)
def test_get_binary_errors(
    resources: Dict[str, Dict[str, Any]],
    kwargs: Dict[str, str],
    error: str,
    service: DocumentRetrievalService,
    target_store: MagicMock,
    ctx: TenantContext,
) -> None:
    target_store.read.side_effect = _store(resources)

    result = service.get_binary(ctx, **kwargs)

    assert result.success is False
    assert result.error == error


def test_get_binary_should_report_store_errors(
    service: DocumentRetrievalService, target_store: MagicMock, ctx: TenantContext
) -> None:
    target_store.read.side_effect = TargetStoreError("Target store rejected read Binary/b-1 with status 500", 500)

    result = service.get_binary(ctx, document_reference_id="dr-1")

    assert result.success is False
    assert "500" in str(result.error)
