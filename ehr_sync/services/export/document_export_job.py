from concurrent.futures import ThreadPoolExecutor, as_completed
import logging
from typing import Any

from ehr_sync.models.tenant.dto import TenantContext, TenantEhrConfig
from ehr_sync.services.ehr.factory import VendorAdapterFactory
from ehr_sync.services.export.export_orchestrator import ExportOrchestrator
from ehr_sync.services.fhir.bundle_parser import get_resources
from ehr_sync.services.tenant_provider.tenant_provider import TenantProvider
from ehr_sync.stats import Stats

logger = logging.getLogger(__name__)


class DocumentExportJob:
    """
    Periodic export of the most recent documents of every configured patient. Earlier
    exports are detected by the orchestrator, so each run only writes what is new.
    """

    def __init__(
        self,
        tenant_provider: TenantProvider,
        adapter_factory: VendorAdapterFactory,
        export_orchestrator: ExportOrchestrator,
        stats: Stats,
        document_type_code: str = "18842-5",
        document_search_count: int = 5,
        max_concurrent_tenant_exports: int = 1,
    ) -> None:
        self.__tenant_provider = tenant_provider
        self.__adapter_factory = adapter_factory
        self.__export_orchestrator = export_orchestrator
        self.__stats = stats
        self.__document_type_code = document_type_code
        self.__document_search_count = document_search_count
        self.__max_concurrent_tenant_exports = max(1, max_concurrent_tenant_exports)

    def export_all(self) -> list[dict[str, Any]]:
        """Export all tenants (optionally in parallel)."""
        with self.__stats.timer("export_all_tenants"):
            try:
                tenants = self.__tenant_provider.get_all_tenants()
            except Exception:
                logger.exception("Failed to retrieve tenants")
                return []

            if self.__max_concurrent_tenant_exports <= 1:
                return [self.__export_one(t) for t in tenants]

            results: list[dict[str, Any]] = []
            with ThreadPoolExecutor(max_workers=self.__max_concurrent_tenant_exports) as executor:
                future_map = {executor.submit(self.__export_one, tenant): tenant for tenant in tenants}
                for future in as_completed(future_map):
                    try:
                        results.append(future.result())
                    except Exception as e:
                        tenant = future_map[future]
                        logger.exception("Unhandled exception while exporting tenant %s", tenant.tenant_id)
                        results.append(
                            {"tenant_id": tenant.tenant_id, "status": "error", "error": str(e)}
                        )
            return results

    def export_tenant(self, tenant_id: str) -> dict[str, Any]:
        return self.__export_one(self.__tenant_provider.get_tenant(tenant_id))

    def __export_one(self, tenant: TenantEhrConfig) -> dict[str, Any]:
        ctx = TenantContext(tenant_id=tenant.tenant_id)
        exported = 0
        failed = 0
        skipped = 0

        try:
            adapter = self.__adapter_factory.get_adapter(ctx)
            for patient_id in tenant.patients:
                documents = get_resources(
                    adapter.search_resource(
                        "DocumentReference",
                        {
                            "patient": patient_id,
                            "type": self.__document_type_code,
                            "_count": self.__document_search_count,
                            "_sort": "-_lastUpdated",
                        },
                        ctx,
                    )
                )
                logger.info(
                    "Found %d documents for patient %s of tenant %s",
                    len(documents),
                    patient_id,
                    tenant.tenant_id,
                )

                for doc in documents:
                    document = adapter.parse_document_reference(doc)
                    if document is None:
                        continue
                    if self.__document_type_code not in document.type_codes():
                        logger.debug("Skipping document %s with types %s", document.id, document.type_codes())
                        skipped += 1
                        continue

                    result = self.__export_orchestrator.export_document(ctx, document.id)
                    if result.success:
                        exported += 1
                    else:
                        failed += 1
        except Exception as e:
            logger.exception("Failed to export tenant %s", tenant.tenant_id)
            return {"tenant_id": tenant.tenant_id, "status": "error", "error": str(e)}

        logger.info(
            "Tenant %s: %d exported, %d failed, %d skipped", tenant.tenant_id, exported, failed, skipped
        )
        return {
            "tenant_id": tenant.tenant_id,
            "status": "success",
            "exported": exported,
            "failed": failed,
            "skipped": skipped,
        }
