from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock

from fastapi import FastAPI
from fastapi.testclient import TestClient
import inject
import pytest

from ehr_sync.application import create_fastapi_app
from ehr_sync.config import set_config
from ehr_sync.models.tenant.dto import TenantContext
from ehr_sync.services.ehr.cerner_adapter import CernerAdapter
from ehr_sync.services.ehr.epic_adapter import EpicAdapter
from ehr_sync.services.ehr.factory import VendorAdapterFactory
from ehr_sync.services.ehr.token_cache import TokenCache
from ehr_sync.stats import MemoryClient, Statsd
from tests.test_config import get_test_config
from tests.utils import StaticTenantProvider, cerner_tenant, epic_tenant


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fastapi_app() -> Generator[FastAPI, None, None]:
    set_config(get_test_config())
    app = create_fastapi_app()
    yield app
    inject.clear()


@pytest.fixture
def api_client(fastapi_app: FastAPI) -> TestClient:
    return TestClient(fastapi_app)


@pytest.fixture()
def ctx() -> TenantContext:
    return TenantContext(tenant_id="demo", request_id="req-1")


@pytest.fixture()
def epic_ctx() -> TenantContext:
    return TenantContext(tenant_id="epic-tenant", request_id="req-2")


@pytest.fixture()
def tenant_provider() -> StaticTenantProvider:
    return StaticTenantProvider(cerner_tenant(), epic_tenant())


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def token_cache(clock: FakeClock) -> TokenCache:
    return TokenCache(clock=clock)


@pytest.fixture()
def cerner_adapter(tenant_provider: StaticTenantProvider, token_cache: TokenCache) -> CernerAdapter:
    return CernerAdapter(tenant_provider, token_cache, timeout=1)


@pytest.fixture()
def epic_adapter(tenant_provider: StaticTenantProvider, token_cache: TokenCache) -> EpicAdapter:
    return EpicAdapter(tenant_provider, token_cache, timeout=1)


@pytest.fixture()
def adapter_factory(
    tenant_provider: StaticTenantProvider, token_cache: TokenCache
) -> VendorAdapterFactory:
    return VendorAdapterFactory(tenant_provider=tenant_provider, token_cache=token_cache, timeout=1)


@pytest.fixture()
def memory_client() -> MemoryClient:
    return MemoryClient()


@pytest.fixture()
def stats(memory_client: MemoryClient) -> Statsd:
    return Statsd(memory_client)


@pytest.fixture()
def target_store() -> MagicMock:
    store = MagicMock()
    store.search.return_value = []
    return store


@pytest.fixture()
def target_store_provider(target_store: MagicMock) -> MagicMock:
    provider = MagicMock()
    provider.get_client.return_value = target_store
    return provider


@pytest.fixture()
def event_publisher() -> MagicMock:
    publisher: Any = MagicMock()
    publisher.publish_document_event.return_value = True
    publisher.publish_encounter_event.return_value = True
    return publisher
