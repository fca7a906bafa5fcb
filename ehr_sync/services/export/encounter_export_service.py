from datetime import datetime, timezone
import logging
from typing import Any, Dict

from ehr_sync.models.events.dto import EncounterExportEvent
from ehr_sync.models.export.dto import (
    DuplicateStatus,
    EncounterExportMetadata,
    EncounterExportResult,
    MappingAction,
    PatientEncounterExportResult,
    ResourceIds,
)
from ehr_sync.models.fhir.types import EncounterResources
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.services.ehr.factory import VendorAdapterFactory
from ehr_sync.services.ehr.vendor_adapter import VendorAdapter
from ehr_sync.services.events.event_publisher import EventPublisher
from ehr_sync.services.export.composition_merger import CompositionSectionMerger
from ehr_sync.services.export.duplicate_detector import DuplicateDetector
from ehr_sync.services.export.encounter_bundle_builder import (
    build_encounter_bundle,
    transform_encounter,
)
from ehr_sync.services.export.export_orchestrator import ExportOrchestrator
from ehr_sync.services.export.idempotent_bundle_writer import IdempotentBundleWriter
from ehr_sync.services.export.patient_reconciler import PatientIdentityReconciler
from ehr_sync.services.fhir.bundle_parser import get_resources
from ehr_sync.services.fhir.references import reference_id
from ehr_sync.stats import Stats

logger = logging.getLogger(__name__)

DOCUMENT_SEARCH_COUNT = 10
CLINICAL_SEARCH_COUNT = 100
APPOINTMENT_SEARCH_COUNT = 10


class EncounterExportService:
    """
    Exports the recent encounters of a patient together with their medication requests,
    conditions, appointments and documents, and lists everything in one Composition per
    encounter.
    """

    def __init__(
        self,
        adapter_factory: VendorAdapterFactory,
        patient_reconciler: PatientIdentityReconciler,
        duplicate_detector: DuplicateDetector,
        export_orchestrator: ExportOrchestrator,
        bundle_writer: IdempotentBundleWriter,
        composition_merger: CompositionSectionMerger,
        event_publisher: EventPublisher | None,
        stats: Stats,
        encounter_search_count: int = 5,
    ) -> None:
        self.__adapter_factory = adapter_factory
        self.__patient_reconciler = patient_reconciler
        self.__duplicate_detector = duplicate_detector
        self.__export_orchestrator = export_orchestrator
        self.__bundle_writer = bundle_writer
        self.__composition_merger = composition_merger
        self.__event_publisher = event_publisher
        self.__stats = stats
        self.__encounter_search_count = encounter_search_count

    def export_encounters(
        self, ctx: TenantContext, source_patient_id: str
    ) -> PatientEncounterExportResult:
        adapter = self.__adapter_factory.get_adapter(ctx)
        vendor = adapter.get_vendor().value
        logger.info("Starting encounter export for %s patient %s", vendor, source_patient_id)

        mapping = self.__patient_reconciler.reconcile(adapter, source_patient_id, ctx)
        if not mapping.success or mapping.target_patient_id is None:
            logger.error("Failed to map patient %s: %s", source_patient_id, mapping.error)
            return PatientEncounterExportResult(
                success=False,
                source_patient_id=source_patient_id,
                error=f"Failed to map patient: {mapping.error}",
            )

        encounters = self.__search(
            adapter,
            EncounterResources.ENCOUNTER,
            {"patient": source_patient_id, "_count": self.__encounter_search_count},
            ctx,
        )
        if not encounters:
            logger.warning("No recent encounters found for patient %s", source_patient_id)

        results = []
        for encounter in encounters:
            result = self.export_single_encounter(
                adapter, encounter, mapping.target_patient_id, ctx, mapping.action
            )
            results.append(result)
            self.__stats.outcome("export.encounter", result.success)
            if result.success:
                self.__publish(ctx, source_patient_id, result)

        logger.info(
            "Encounter export completed for patient %s: %d encounters, %d resources",
            source_patient_id,
            len(results),
            sum(r.metadata.resources_processed for r in results),
        )
        return PatientEncounterExportResult(
            success=True,
            source_patient_id=source_patient_id,
            target_patient_id=mapping.target_patient_id,
            encounters=results,
        )

    def export_single_encounter(
        self,
        adapter: VendorAdapter,
        encounter: Dict[str, Any],
        target_patient_id: str,
        ctx: TenantContext,
        patient_mapping: MappingAction | None = None,
    ) -> EncounterExportResult:
        vendor = adapter.get_vendor().value
        source_encounter_id = str(encounter.get("id"))
        metadata = EncounterExportMetadata(vendor=vendor, patient_mapping=patient_mapping)
        source_patient_id = reference_id(
            (encounter.get("subject") or {}).get("reference"), "Patient"
        )

        try:
            with self.__stats.timer("export.encounter"):
                return self.__export_encounter(
                    adapter,
                    encounter,
                    source_encounter_id,
                    source_patient_id,
                    target_patient_id,
                    ctx,
                    metadata,
                )
        except Exception as e:
            logger.exception("Error exporting encounter %s", source_encounter_id)
            return EncounterExportResult(
                success=False,
                source_encounter_id=source_encounter_id,
                source_patient_id=source_patient_id,
                target_patient_id=target_patient_id,
                error=str(e),
                metadata=metadata,
            )

    def __export_encounter(
        self,
        adapter: VendorAdapter,
        encounter: Dict[str, Any],
        source_encounter_id: str,
        source_patient_id: str | None,
        target_patient_id: str,
        ctx: TenantContext,
        metadata: EncounterExportMetadata,
    ) -> EncounterExportResult:
        vendor = adapter.get_vendor().value
        if source_patient_id is None:
            raise ValueError(f"Encounter {source_encounter_id} has no patient reference")

        logger.info("Exporting encounter %s with related resources", source_encounter_id)
        duplicate = self.__duplicate_detector.is_encounter_duplicate(source_encounter_id, ctx, vendor)
        metadata.duplicate_check = (
            DuplicateStatus.DUPLICATE if duplicate.is_duplicate else DuplicateStatus.NEW
        )

        documents = self.__search(
            adapter,
            EncounterResources.DOCUMENT_REFERENCE,
            {
                "encounter": source_encounter_id,
                "patient": source_patient_id,
                "_count": DOCUMENT_SEARCH_COUNT,
                "_sort": "-_lastUpdated",
            },
            ctx,
        )
        medication_requests = self.__search(
            adapter,
            EncounterResources.MEDICATION_REQUEST,
            {"encounter": source_encounter_id, "patient": source_patient_id, "_count": CLINICAL_SEARCH_COUNT},
            ctx,
        )
        conditions = self.__search(
            adapter,
            EncounterResources.CONDITION,
            {"encounter": source_encounter_id, "patient": source_patient_id, "_count": CLINICAL_SEARCH_COUNT},
            ctx,
        )
        appointments = self.__search(
            adapter,
            EncounterResources.APPOINTMENT,
            {
                "patient": source_patient_id,
                "date": f"lt{datetime.now(timezone.utc).isoformat()}",
                "_count": APPOINTMENT_SEARCH_COUNT,
            },
            ctx,
        )

        target_encounter_id = self.__bundle_writer.create_encounter(
            transform_encounter(encounter, target_patient_id, vendor), vendor, ctx
        )

        bundle = build_encounter_bundle(
            medication_requests, appointments, conditions, target_patient_id, target_encounter_id, vendor
        )
        written = self.__bundle_writer.submit(bundle, vendor, ctx)
        resource_ids = ResourceIds(
            medication_requests=written.get(EncounterResources.MEDICATION_REQUEST.value, []),
            appointments=written.get(EncounterResources.APPOINTMENT.value, []),
            conditions=written.get(EncounterResources.CONDITION.value, []),
        )

        for document in documents:
            doc_result = self.__export_orchestrator.export_document(
                ctx, str(document.get("id")), target_encounter_id
            )
            if doc_result.success and doc_result.target_document_reference_id:
                resource_ids.document_references.append(doc_result.target_document_reference_id)
                if doc_result.target_binary_id:
                    resource_ids.binaries.append(doc_result.target_binary_id)
            else:
                logger.warning("DocumentReference %s export failed: %s", document.get("id"), doc_result.error)

        composition = self.__composition_merger.create_or_update(
            source_encounter_id, target_encounter_id, target_patient_id, resource_ids, ctx, vendor
        )

        # The encounter itself counts as a processed resource
        metadata.resources_processed = 1 + resource_ids.total()
        logger.info(
            "Encounter %s exported as Encounter/%s: %d resources",
            source_encounter_id,
            target_encounter_id,
            metadata.resources_processed,
        )
        return EncounterExportResult(
            success=True,
            source_encounter_id=source_encounter_id,
            target_encounter_id=target_encounter_id,
            source_patient_id=source_patient_id,
            target_patient_id=target_patient_id,
            resource_ids=resource_ids,
            composition_id=str(composition["id"]) if composition and composition.get("id") else None,
            metadata=metadata,
        )

    @staticmethod
    def __search(
        adapter: VendorAdapter,
        resource_type: EncounterResources,
        params: Dict[str, Any],
        ctx: TenantContext,
    ) -> list[Dict[str, Any]]:
        logger.info("Searching %s with %s", resource_type.value, params)
        resources = [
            r
            for r in get_resources(adapter.search_resource(resource_type.value, params, ctx))
            if r.get("resourceType") == resource_type.value
        ]
        logger.info("Found %d %s resources", len(resources), resource_type.value)
        return resources

    def __publish(
        self, ctx: TenantContext, source_patient_id: str, result: EncounterExportResult
    ) -> None:
        if self.__event_publisher is None:
            return
        if result.resource_ids.total() == 0:
            logger.info(
                "No additional resources for encounter %s, skipping event", result.source_encounter_id
            )
            return
        if not result.composition_id:
            logger.info(
                "No composition for encounter %s, skipping event", result.source_encounter_id
            )
            return

        self.__event_publisher.publish_encounter_event(
            EncounterExportEvent(
                tenant_id=ctx.tenant_id,
                patient_id=source_patient_id,
                status="success",
                source_encounter_id=result.source_encounter_id,
                target_encounter_id=result.target_encounter_id,
                composition_id=result.composition_id,
                counts={
                    "documentReferences": len(result.resource_ids.document_references),
                    "medicationRequests": len(result.resource_ids.medication_requests),
                    "appointments": len(result.resource_ids.appointments),
                    "conditions": len(result.resource_ids.conditions),
                    "binaries": len(result.resource_ids.binaries),
                },
            )
        )
