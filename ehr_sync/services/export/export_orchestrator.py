from datetime import datetime, timezone
import logging
from typing import Any, Dict

from ehr_sync.models.ehr.types import SourceDocument
from ehr_sync.models.events.dto import DocumentExportEvent
from ehr_sync.models.export.dto import (
    DuplicateStatus,
    ExportMetadata,
    ExportResult,
    MappingAction,
    TransformedBinary,
)
from ehr_sync.models.fhir.types import LOINC_DISCHARGE_SUMMARY, LOINC_SYSTEM
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.services.api.target_store_provider import TargetStoreProvider
from ehr_sync.services.ehr.factory import VendorAdapterFactory
from ehr_sync.services.ehr.vendor_adapter import VendorAdapter
from ehr_sync.services.events.event_publisher import EventPublisher
from ehr_sync.services.export.binary_transformer import BinaryTransformer
from ehr_sync.services.export.duplicate_detector import DuplicateDetector
from ehr_sync.services.export.patient_reconciler import PatientIdentityReconciler
from ehr_sync.services.fhir.tags import correlation_meta_tag, exported_from_tag
from ehr_sync.stats import Stats

logger = logging.getLogger(__name__)

TARGET_STORE_NAME = "target FHIR store"
US_CORE_CATEGORY_SYSTEM = "http://hl7.org/fhir/us/core/CodeSystem/us-core-documentreference-category"
LOINC_CONSULT_NOTE = "11488-4"

DISCHARGE_SUMMARY_TYPE = {
    "coding": [
        {"system": LOINC_SYSTEM, "code": LOINC_DISCHARGE_SUMMARY, "display": "Discharge summary"}
    ]
}
CLINICAL_NOTE_CATEGORY = [
    {
        "coding": [
            {"system": US_CORE_CATEGORY_SYSTEM, "code": "clinical-note", "display": "Clinical Note"}
        ]
    }
]


def _authors(document: SourceDocument) -> list[Dict[str, str]]:
    if not document.authors:
        return [{"display": "System"}]
    return [{"display": author} for author in document.authors]


def _document_date(document: SourceDocument) -> str:
    return document.date or datetime.now(timezone.utc).isoformat()


def build_document_reference(
    document: SourceDocument,
    binary_id: str,
    binary: TransformedBinary,
    target_patient_id: str,
    vendor: str,
    encounter_id: str | None = None,
) -> Dict[str, Any]:
    doc_ref: Dict[str, Any] = {
        "resourceType": "DocumentReference",
        "status": "current",
        "type": document.type or DISCHARGE_SUMMARY_TYPE,
        "category": CLINICAL_NOTE_CATEGORY,
        "subject": {"reference": f"Patient/{target_patient_id}"},
        "date": _document_date(document),
        "author": _authors(document),
        "content": [
            {
                "attachment": {
                    "contentType": binary.content_type,
                    "url": f"Binary/{binary_id}",
                    "title": "Discharge Summary",
                    "size": binary.size,
                }
            }
        ],
        "meta": {"tag": [exported_from_tag(vendor), correlation_meta_tag(vendor, document.id)]},
    }
    if encounter_id:
        doc_ref["context"] = {"encounter": [{"reference": f"Encounter/{encounter_id}"}]}
    return doc_ref


def build_document_composition(
    document: SourceDocument,
    document_reference_id: str,
    target_patient_id: str,
    vendor: str,
) -> Dict[str, Any]:
    return {
        "resourceType": "Composition",
        "status": "final",
        "type": DISCHARGE_SUMMARY_TYPE,
        "category": CLINICAL_NOTE_CATEGORY,
        "subject": {"reference": f"Patient/{target_patient_id}"},
        "date": _document_date(document),
        "author": _authors(document),
        "title": "Discharge Summary",
        "section": [
            {
                "title": "Document Reference",
                "code": {
                    "coding": [
                        {"system": LOINC_SYSTEM, "code": LOINC_CONSULT_NOTE, "display": "Consult note"}
                    ]
                },
                "entry": [{"reference": f"DocumentReference/{document_reference_id}"}],
            }
        ],
        "meta": {"tag": [exported_from_tag(vendor), correlation_meta_tag(vendor, document.id)]},
    }


class ExportOrchestrator:
    """
    Exports one source document into the target store:

        locate source -> check duplicate -> reconcile patient -> download binary
        -> transform -> write Binary -> write DocumentReference -> write Composition

    Every step either proceeds or ends the run with a failed ExportResult. Only the
    Composition is optional. Re-running an export is safe: an earlier export is detected
    through its correlation tag and reported as a duplicate without writing anything.
    """

    def __init__(
        self,
        adapter_factory: VendorAdapterFactory,
        target_store_provider: TargetStoreProvider,
        patient_reconciler: PatientIdentityReconciler,
        duplicate_detector: DuplicateDetector,
        binary_transformer: BinaryTransformer,
        event_publisher: EventPublisher | None,
        stats: Stats,
    ) -> None:
        self.__adapter_factory = adapter_factory
        self.__target_store_provider = target_store_provider
        self.__patient_reconciler = patient_reconciler
        self.__duplicate_detector = duplicate_detector
        self.__binary_transformer = binary_transformer
        self.__event_publisher = event_publisher
        self.__stats = stats

    def export_document(
        self,
        ctx: TenantContext,
        document_id: str,
        encounter_id: str | None = None,
    ) -> ExportResult:
        """
        Exports a source DocumentReference. ``encounter_id`` is a target store Encounter the
        new DocumentReference gets linked to.
        """
        adapter = self.__adapter_factory.get_adapter(ctx)
        vendor = adapter.get_vendor().value
        logger.info("Starting export of document %s from %s for tenant %s", document_id, vendor, ctx.tenant_id)

        with self.__stats.timer("export.document"):
            try:
                result = self.__run(adapter, vendor, ctx, document_id, encounter_id)
            except Exception as e:
                logger.exception("Export of document %s failed", document_id)
                result = ExportResult(
                    success=False,
                    source_document_id=document_id,
                    error=str(e),
                    metadata=ExportMetadata(vendor=vendor),
                )

        self.__stats.outcome("export.document", result.success)
        self.__publish(ctx, result)
        return result

    def __run(
        self,
        adapter: VendorAdapter,
        vendor: str,
        ctx: TenantContext,
        document_id: str,
        encounter_id: str | None,
    ) -> ExportResult:
        metadata = ExportMetadata(vendor=vendor)

        logger.info("Step 1: locating source document %s in %s", document_id, vendor)
        document = adapter.parse_document_reference(
            adapter.fetch_resource("DocumentReference", document_id, ctx)
        )
        if document is None:
            logger.warning("No discharge summary found in %s for document %s", vendor, document_id)
            return self.__failed(f"No discharge summary found in {vendor}", metadata, document_id)

        source_patient_id = document.patient_id
        if not source_patient_id:
            logger.error("No patient ID found in %s document %s", vendor, document.id)
            return self.__failed(f"No patient ID found in {vendor} document", metadata, document.id)

        logger.info("Step 2: checking for an earlier export of %s", document.id)
        duplicate = self.__duplicate_detector.is_duplicate(document.id, ctx, vendor)
        if duplicate.is_duplicate:
            logger.info("Document %s was already exported, skipping", document.id)
            metadata.duplicate_check = DuplicateStatus.DUPLICATE
            metadata.patient_mapping = MappingAction.FOUND
            return ExportResult(
                success=True,
                source_document_id=document.id,
                source_patient_id=source_patient_id,
                target_patient_id=duplicate.target_patient_id,
                encounter_id=document.encounter_id,
                metadata=metadata,
            )

        logger.info("Step 3: mapping %s patient %s", vendor, source_patient_id)
        mapping = self.__patient_reconciler.reconcile(adapter, source_patient_id, ctx)
        metadata.patient_mapping = mapping.action
        if not mapping.success or mapping.target_patient_id is None:
            logger.error("Failed to map patient: %s", mapping.error)
            return self.__failed(
                f"Failed to map patient: {mapping.error}", metadata, document.id, source_patient_id
            )
        target_patient_id = mapping.target_patient_id

        logger.info("Step 4: downloading binary data from %s", vendor)
        binary = self.__binary_transformer.download(adapter, document, ctx)
        if binary is None:
            return self.__failed(
                f"Failed to download Binary data from {vendor}", metadata, document.id, source_patient_id
            )

        logger.info("Step 5: transforming document %s (%s bytes, %s)", document.id, binary.size, binary.content_type)
        binary_resource = self.__binary_transformer.build_binary_resource(binary, document, vendor)

        store = self.__target_store_provider.get_client(ctx)

        logger.info("Step 6: storing Binary in target store")
        target_binary_id = self.__create(store, "Binary", binary_resource)
        if target_binary_id is None:
            return self.__failed(
                f"Failed to store Binary data in {TARGET_STORE_NAME}", metadata, document.id, source_patient_id
            )

        logger.info("Step 7: creating DocumentReference for patient %s", target_patient_id)
        doc_ref = build_document_reference(
            document, target_binary_id, binary, target_patient_id, vendor, encounter_id
        )
        target_doc_ref_id = self.__create(store, "DocumentReference", doc_ref)
        if target_doc_ref_id is None:
            return self.__failed(
                f"Failed to create DocumentReference in {TARGET_STORE_NAME}",
                metadata,
                document.id,
                source_patient_id,
            )

        logger.info("Step 8: creating Composition")
        composition = build_document_composition(document, target_doc_ref_id, target_patient_id, vendor)
        target_composition_id = self.__create(store, "Composition", composition)
        if target_composition_id is None:
            logger.warning("Composition creation failed for document %s (optional step)", document.id)

        metadata.duplicate_check = DuplicateStatus.NEW
        metadata.content_type = binary.content_type
        metadata.original_size = binary.size

        logger.info(
            "Exported %s document %s as DocumentReference %s (patient %s -> %s)",
            vendor,
            document.id,
            target_doc_ref_id,
            source_patient_id,
            target_patient_id,
        )
        return ExportResult(
            success=True,
            source_document_id=document.id,
            target_binary_id=target_binary_id,
            target_document_reference_id=target_doc_ref_id,
            target_composition_id=target_composition_id,
            source_patient_id=source_patient_id,
            target_patient_id=target_patient_id,
            encounter_id=document.encounter_id,
            metadata=metadata,
        )

    @staticmethod
    def __create(store: Any, resource_type: str, resource: Dict[str, Any]) -> str | None:
        try:
            created = store.create(resource_type, resource)
        except Exception as e:
            logger.error("Failed to create %s in target store: %s", resource_type, e)
            return None
        resource_id = created.get("id")
        return str(resource_id) if resource_id else None

    @staticmethod
    def __failed(
        error: str,
        metadata: ExportMetadata,
        document_id: str | None = None,
        source_patient_id: str | None = None,
    ) -> ExportResult:
        return ExportResult(
            success=False,
            source_document_id=document_id,
            source_patient_id=source_patient_id,
            error=error,
            metadata=metadata,
        )

    def __publish(self, ctx: TenantContext, result: ExportResult) -> None:
        if self.__event_publisher is None:
            return

        event = DocumentExportEvent(
            source_document_id=result.source_document_id,
            tenant_id=ctx.tenant_id,
            patient_id=result.target_patient_id or result.source_patient_id,
            status="success" if result.success else "failed",
            error=result.error,
            metadata={
                "binaryId": result.target_binary_id,
                "documentReferenceId": result.target_document_reference_id,
                "compositionId": result.target_composition_id,
                "originalSize": result.metadata.original_size,
                "contentType": result.metadata.content_type,
                "duplicateCheck": result.metadata.duplicate_check,
            },
        )
        self.__event_publisher.publish_document_event(event)
