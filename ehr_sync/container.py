from typing import cast

import inject

from ehr_sync.config import get_config
from ehr_sync.services.api.authenticators.factory import AuthenticatorFactory
from ehr_sync.services.api.target_store_provider import TargetStoreProvider
from ehr_sync.services.ehr.factory import VendorAdapterFactory
from ehr_sync.services.ehr.token_cache import TokenCache
from ehr_sync.services.events.event_publisher import EventPublisher
from ehr_sync.services.events.provider import EventPublisherProvider
from ehr_sync.services.export.binary_transformer import BinaryTransformer
from ehr_sync.services.export.composition_merger import CompositionSectionMerger
from ehr_sync.services.export.document_export_job import DocumentExportJob
from ehr_sync.services.export.document_retrieval_service import DocumentRetrievalService
from ehr_sync.services.export.duplicate_detector import DuplicateDetector
from ehr_sync.services.export.encounter_export_service import EncounterExportService
from ehr_sync.services.export.export_orchestrator import ExportOrchestrator
from ehr_sync.services.export.idempotent_bundle_writer import IdempotentBundleWriter
from ehr_sync.services.export.patient_reconciler import PatientIdentityReconciler
from ehr_sync.services.scheduler import Scheduler
from ehr_sync.services.tenant_provider.json_provider import TenantJsonProvider
from ehr_sync.services.tenant_provider.tenant_provider import TenantProvider
from ehr_sync.stats import get_stats


def container_config(binder: inject.Binder) -> None:
    config = get_config()
    stats = get_stats()

    tenant_provider = TenantJsonProvider(json_path=config.tenants.tenants_file_path)
    binder.bind(TenantProvider, tenant_provider)

    adapter_factory = VendorAdapterFactory(
        tenant_provider=tenant_provider,
        token_cache=TokenCache(),
        timeout=config.ehr.timeout,
        private_key_dir=config.ehr.private_key_dir,
    )
    binder.bind(VendorAdapterFactory, adapter_factory)

    auth = AuthenticatorFactory(config=config).create_authenticator()
    target_store_provider = TargetStoreProvider(
        config=config.target_store,
        tenant_provider=tenant_provider,
        auth=auth,
        default_base_url=config.tenants.default_target_store_url,
    )
    binder.bind(TargetStoreProvider, target_store_provider)

    event_publisher = EventPublisherProvider(config=config.events).create()
    binder.bind(EventPublisher, event_publisher)

    patient_reconciler = PatientIdentityReconciler(
        target_store_provider=target_store_provider, adapter_factory=adapter_factory
    )
    duplicate_detector = DuplicateDetector(target_store_provider=target_store_provider)

    export_orchestrator = ExportOrchestrator(
        adapter_factory=adapter_factory,
        target_store_provider=target_store_provider,
        patient_reconciler=patient_reconciler,
        duplicate_detector=duplicate_detector,
        binary_transformer=BinaryTransformer(),
        event_publisher=event_publisher,
        stats=stats,
    )
    binder.bind(ExportOrchestrator, export_orchestrator)

    encounter_export_service = EncounterExportService(
        adapter_factory=adapter_factory,
        patient_reconciler=patient_reconciler,
        duplicate_detector=duplicate_detector,
        export_orchestrator=export_orchestrator,
        bundle_writer=IdempotentBundleWriter(target_store_provider=target_store_provider),
        composition_merger=CompositionSectionMerger(target_store_provider=target_store_provider),
        event_publisher=event_publisher,
        stats=stats,
        encounter_search_count=config.ehr.encounter_search_count,
    )
    binder.bind(EncounterExportService, encounter_export_service)

    binder.bind(
        DocumentRetrievalService,
        DocumentRetrievalService(target_store_provider=target_store_provider),
    )

    export_job = DocumentExportJob(
        tenant_provider=tenant_provider,
        adapter_factory=adapter_factory,
        export_orchestrator=export_orchestrator,
        stats=stats,
        document_type_code=config.ehr.document_type_code,
        document_search_count=config.ehr.document_search_count,
        max_concurrent_tenant_exports=config.scheduler.max_concurrent_tenant_exports,
    )
    binder.bind(DocumentExportJob, export_job)

    export_scheduler = Scheduler(
        function=export_job.export_all,
        delay=config.scheduler.delay_input_in_sec,  # type: ignore
        max_logs_entries=config.scheduler.max_logs_entries,
    )
    binder.bind("export_scheduler", export_scheduler)


def get_export_scheduler() -> Scheduler:
    return cast(Scheduler, inject.instance("export_scheduler"))


def get_tenant_provider() -> TenantProvider:
    return inject.instance(TenantProvider)  # type: ignore


def get_adapter_factory() -> VendorAdapterFactory:
    return inject.instance(VendorAdapterFactory)


def get_event_publisher() -> EventPublisher:
    return inject.instance(EventPublisher)  # type: ignore


def get_export_orchestrator() -> ExportOrchestrator:
    return inject.instance(ExportOrchestrator)


def get_encounter_export_service() -> EncounterExportService:
    return inject.instance(EncounterExportService)


def get_document_retrieval_service() -> DocumentRetrievalService:
    return inject.instance(DocumentRetrievalService)


def get_document_export_job() -> DocumentExportJob:
    return inject.instance(DocumentExportJob)


def setup_container() -> None:
    inject.configure(container_config, once=True)
