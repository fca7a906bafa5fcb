from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class TenantContext(BaseModel):
    """
    Per-call tenant scope. Created at the HTTP or job boundary and only read afterwards.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    user_id: str | None = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SystemAppConfig(BaseModel):
    client_id: str
    token_url: str
    client_secret: str | None = None
    scopes: str | None = None
    # Signed-JWT vendors
    private_key_path: str | None = None
    key_id: str | None = None


class ProviderAppConfig(BaseModel):
    client_id: str
    client_secret: str | None = None
    redirect_uri: str | None = None
    scopes: str | None = None


class TargetStoreConfig(BaseModel):
    base_url: str


class TenantEhrConfig(BaseModel):
    tenant_id: str
    vendor: str
    base_url: str
    system_app: SystemAppConfig
    provider_app: ProviderAppConfig | None = None
    target_store: TargetStoreConfig | None = None
    # Source patients scanned by the scheduled export job
    patients: list[str] = Field(default_factory=list)
