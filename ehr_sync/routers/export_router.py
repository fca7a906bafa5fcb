import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from ehr_sync.container import (
    get_document_export_job,
    get_document_retrieval_service,
    get_encounter_export_service,
    get_export_orchestrator,
)
from ehr_sync.exceptions import ConfigurationError
from ehr_sync.models.export.dto import (
    BinaryRetrievalResult,
    DocumentExportRequest,
    EncounterExportRequest,
    ExportResult,
    PatientEncounterExportResult,
)
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.routers.tenant_context import get_tenant_context
from ehr_sync.services.export.document_export_job import DocumentExportJob
from ehr_sync.services.export.document_retrieval_service import DocumentRetrievalService
from ehr_sync.services.export.encounter_export_service import EncounterExportService
from ehr_sync.services.export.export_orchestrator import ExportOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/export", tags=["Export"])


@router.post("/document", response_model=ExportResult, response_model_exclude_none=True)
def export_document(
    body: DocumentExportRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    orchestrator: ExportOrchestrator = Depends(get_export_orchestrator),
) -> ExportResult:
    try:
        result = orchestrator.export_document(ctx, body.document_id, body.encounter_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.success:
        raise HTTPException(
            status_code=500,
            detail={
                "message": "Export failed",
                "error": result.error,
                "metadata": result.metadata.model_dump(by_alias=True, exclude_none=True, mode="json"),
            },
        )
    return result


@router.post(
    "/encounters", response_model=PatientEncounterExportResult, response_model_exclude_none=True
)
def export_encounters(
    body: EncounterExportRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    service: EncounterExportService = Depends(get_encounter_export_service),
) -> PatientEncounterExportResult:
    try:
        result = service.export_encounters(ctx, body.patient_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.success:
        raise HTTPException(
            status_code=500,
            detail={"message": "Encounter export failed", "error": result.error},
        )
    return result


@router.get("/binary", response_model=BinaryRetrievalResult, response_model_exclude_none=True)
def get_binary(
    document_reference_id: str | None = Query(default=None, alias="documentReferenceId"),
    composition_id: str | None = Query(default=None, alias="compositionId"),
    ctx: TenantContext = Depends(get_tenant_context),
    service: DocumentRetrievalService = Depends(get_document_retrieval_service),
) -> BinaryRetrievalResult:
    if not document_reference_id and not composition_id:
        raise HTTPException(
            status_code=400,
            detail={
                "message": "Either documentReferenceId or compositionId must be provided",
                "error": "Missing required parameter",
            },
        )

    try:
        result = service.get_binary(ctx, document_reference_id, composition_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.success:
        raise HTTPException(
            status_code=500,
            detail={
                "message": "Failed to get binary resource",
                "error": result.error,
                "documentReference": result.document_reference,
                "composition": result.composition,
            },
        )
    return result


@router.post("/tenants", summary="Runs the scheduled document export once for all tenants")
def export_all_tenants(
    job: DocumentExportJob = Depends(get_document_export_job),
) -> list[dict[str, Any]]:
    return job.export_all()


@router.post("/tenants/{tenant_id}", summary="Runs the scheduled document export for one tenant")
def export_tenant(
    tenant_id: str,
    job: DocumentExportJob = Depends(get_document_export_job),
) -> dict[str, Any]:
    try:
        return job.export_tenant(tenant_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=404, detail=str(e))
