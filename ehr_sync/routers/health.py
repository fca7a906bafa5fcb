import logging
from typing import Any

from fastapi import APIRouter, Depends

from ehr_sync.container import get_event_publisher, get_export_scheduler, get_tenant_provider
from ehr_sync.services.events.event_publisher import EventPublisher
from ehr_sync.services.scheduler import Scheduler
from ehr_sync.services.tenant_provider.tenant_provider import TenantProvider

logger = logging.getLogger(__name__)
router = APIRouter()


def ok_or_error(value: bool) -> str:
    return "ok" if value else "error"


def tenants_health(tenant_provider: TenantProvider) -> bool:
    try:
        tenant_provider.get_all_tenants()
        return True
    except Exception:
        logger.warning("Tenant configuration is not healthy", exc_info=True)
        return False


@router.get("/health")
def health(
    tenant_provider: TenantProvider = Depends(get_tenant_provider),
    event_publisher: EventPublisher = Depends(get_event_publisher),
    scheduler: Scheduler = Depends(get_export_scheduler),
) -> dict[str, Any]:
    logger.info("Checking health")
    components = {
        "tenants": ok_or_error(tenants_health(tenant_provider)),
        "events": ok_or_error(event_publisher.is_healthy()),
    }
    healthy = all(status == "ok" for status in components.values())
    return {
        "status": ok_or_error(healthy),
        "components": components,
        "scheduler": "running" if scheduler.is_running() else "stopped",
    }
