from typing import Any, Dict
from unittest.mock import MagicMock

import pytest

from ehr_sync.models.ehr.types import EhrVendor
from ehr_sync.services.ehr.vendor_adapter import VendorAdapter

SOURCE_PATIENT = {
    "resourceType": "Patient",
    "id": "12724066",
    "active": True,
    "name": [{"family": "Smart\x00", "given": [" Nancy "]}],
    "gender": "female",
    "birthDate": "1980-08-11",
}


def discharge_summary(
    document_id: str = "doc-1",
    patient_id: str | None = "12724066",
    attachment: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    resource: Dict[str, Any] = {
        "resourceType": "DocumentReference",
        "id": document_id,
        "status": "current",
        "type": {"coding": [{"system": "http://loinc.org", "code": "18842-5"}]},
        "date": "2024-01-02T10:00:00Z",
        "content": [
            {
                "attachment": attachment
                or {"contentType": "application/pdf", "url": "Binary/bin-1"}
            }
        ],
    }
    if patient_id:
        resource["subject"] = {"reference": f"Patient/{patient_id}"}
    return resource


@pytest.fixture()
def adapter() -> MagicMock:
    """
    Vendor adapter with the real document parsing and everything else mocked.
    """
    mock = MagicMock(spec=VendorAdapter)
    mock.get_vendor.return_value = EhrVendor.CERNER
    mock.parse_document_reference.side_effect = lambda doc: VendorAdapter.parse_document_reference(
        mock, doc
    )
    return mock


@pytest.fixture()
def adapter_factory_mock(adapter: MagicMock) -> MagicMock:
    factory = MagicMock()
    factory.get_adapter.return_value = adapter
    factory.get_adapter_by_vendor.return_value = adapter
    return factory
