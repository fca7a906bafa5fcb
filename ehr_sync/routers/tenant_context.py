from uuid import uuid4

from fastapi import Header, HTTPException

from ehr_sync.models.tenant.dto import TenantContext


def get_tenant_context(
    x_tenant_id: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_request_id: str | None = Header(default=None),
) -> TenantContext:
    if not x_tenant_id:
        raise HTTPException(status_code=400, detail="Missing X-Tenant-ID header")

    return TenantContext(
        tenant_id=x_tenant_id,
        user_id=x_user_id,
        request_id=x_request_id or str(uuid4()),
    )
