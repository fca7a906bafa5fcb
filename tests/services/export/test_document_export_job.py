from typing import Any, Dict
from unittest.mock import MagicMock

import pytest

from ehr_sync.exceptions import ConfigurationError
from ehr_sync.models.export.dto import ExportMetadata, ExportResult
from ehr_sync.services.export.document_export_job import DocumentExportJob
from ehr_sync.stats import Statsd
from tests.services.export.conftest import discharge_summary
from tests.utils import StaticTenantProvider, cerner_tenant, searchset


def _job(
    adapter_factory_mock: MagicMock,
    orchestrator: MagicMock,
    stats: Statsd,
    max_concurrent: int = 1,
    *tenants: Any,
) -> DocumentExportJob:
    return DocumentExportJob(
        tenant_provider=StaticTenantProvider(*tenants),
        adapter_factory=adapter_factory_mock,
        export_orchestrator=orchestrator,
        stats=stats,
        document_type_code="18842-5",
        document_search_count=5,
        max_concurrent_tenant_exports=max_concurrent,
    )


@pytest.fixture()
def orchestrator() -> MagicMock:
    mock = MagicMock()
    mock.export_document.side_effect = lambda ctx, doc_id: ExportResult(
        success=doc_id != "doc-bad", source_document_id=doc_id, metadata=ExportMetadata(vendor="cerner")
    )
    return mock


def _progress_note(document_id: str) -> Dict[str, Any]:
    doc = discharge_summary(document_id)
    doc["type"] = {"coding": [{"system": "http://loinc.org", "code": "11506-3"}]}
    return doc


def test_export_tenant_should_export_matching_documents(
    adapter_factory_mock: MagicMock, adapter: MagicMock, orchestrator: MagicMock, stats: Statsd
) -> None:
    adapter.search_resource.return_value = searchset(
        discharge_summary("doc-1"), discharge_summary("doc-bad"), _progress_note("doc-3")
    )
    job = _job(adapter_factory_mock, orchestrator, stats, 1, cerner_tenant(patients=["p1"]))

    result = job.export_tenant("demo")

    assert result == {"tenant_id": "demo", "status": "success", "exported": 1, "failed": 1, "skipped": 1}
    adapter.search_resource.assert_called_once()
    resource_type, params, ctx = adapter.search_resource.call_args.args
    assert resource_type == "DocumentReference"
    assert params == {"patient": "p1", "type": "18842-5", "_count": 5, "_sort": "-_lastUpdated"}
    assert ctx.tenant_id == "demo"


def test_export_tenant_without_patients_should_do_nothing(
    adapter_factory_mock: MagicMock, adapter: MagicMock, orchestrator: MagicMock, stats: Statsd
) -> None:
    job = _job(adapter_factory_mock, orchestrator, stats, 1, cerner_tenant())

    assert job.export_tenant("demo")["exported"] == 0
    adapter.search_resource.assert_not_called()


def test_export_tenant_should_raise_for_unknown_tenant(
    adapter_factory_mock: MagicMock, orchestrator: MagicMock, stats: Statsd
) -> None:
    with pytest.raises(ConfigurationError):
        _job(adapter_factory_mock, orchestrator, stats).export_tenant("nope")


def test_export_all_should_report_errors_per_tenant(
    adapter_factory_mock: MagicMock, adapter: MagicMock, orchestrator: MagicMock, stats: Statsd
) -> None:
    adapter.search_resource.return_value = searchset(discharge_summary("doc-1"))

    def get_adapter(ctx: Any) -> MagicMock:
        if ctx.tenant_id != "a":
            raise ConfigurationError("Unsupported EHR vendor: x")
        return adapter

    adapter_factory_mock.get_adapter.side_effect = get_adapter
    job = _job(
        adapter_factory_mock,
        orchestrator,
        stats,
        2,
        cerner_tenant("a", patients=["p1"]),
        cerner_tenant("b", patients=["p1"]),
    )

    results = sorted(job.export_all(), key=lambda r: r["tenant_id"])

    assert results[0]["status"] == "success"
    assert results[0]["exported"] == 1
    assert results[1] == {"tenant_id": "b", "status": "error", "error": "Unsupported EHR vendor: x"}


def test_export_all_should_return_empty_when_tenants_cannot_be_read(
    adapter_factory_mock: MagicMock, orchestrator: MagicMock, stats: Statsd
) -> None:
    tenant_provider = MagicMock()
    tenant_provider.get_all_tenants.side_effect = ValueError("Error processing tenants file")
    job = DocumentExportJob(
        tenant_provider=tenant_provider,
        adapter_factory=adapter_factory_mock,
        export_orchestrator=orchestrator,
        stats=stats,
    )

    assert job.export_all() == []
