import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from ehr_sync.container import get_adapter_factory
from ehr_sync.exceptions import ConfigurationError
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.routers.tenant_context import get_tenant_context
from ehr_sync.services.ehr.factory import VendorAdapterFactory

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/adapters", tags=["EHR adapters"])


@router.get("/vendors")
def supported_vendors() -> dict[str, Any]:
    return {"vendors": [v.value for v in VendorAdapterFactory.supported_vendors()]}


@router.get("/vendor")
def tenant_vendor(
    ctx: TenantContext = Depends(get_tenant_context),
    factory: VendorAdapterFactory = Depends(get_adapter_factory),
) -> dict[str, Any]:
    try:
        adapter = factory.get_adapter(ctx)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "tenantId": ctx.tenant_id,
        "vendor": adapter.get_vendor().value,
        "capabilities": adapter.get_capabilities().model_dump(mode="json"),
        "authenticated": adapter.is_authenticated(ctx),
    }


@router.get("/discharge-summaries/{patient_id}")
def discharge_summaries(
    patient_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    factory: VendorAdapterFactory = Depends(get_adapter_factory),
) -> dict[str, Any]:
    try:
        adapter = factory.get_adapter(ctx)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = adapter.search_discharge_summaries(patient_id, ctx)
    if result is None:
        raise HTTPException(
            status_code=502, detail=f"Could not search discharge summaries for patient {patient_id}"
        )
    return result


@router.get("/cache")
def cache_stats(factory: VendorAdapterFactory = Depends(get_adapter_factory)) -> dict[str, Any]:
    return factory.cache_stats()


@router.delete("/cache")
def clear_all_cache(factory: VendorAdapterFactory = Depends(get_adapter_factory)) -> dict[str, Any]:
    return {"cleared": factory.clear_all_cache()}


@router.delete("/cache/{tenant_id}")
def clear_tenant_cache(
    tenant_id: str, factory: VendorAdapterFactory = Depends(get_adapter_factory)
) -> dict[str, Any]:
    logger.info("Clearing adapter cache for tenant %s", tenant_id)
    return {"tenantId": tenant_id, "cleared": factory.clear_cache(tenant_id)}
