from typing import Any, Dict

import pytest

from ehr_sync.services.api.api_service import HttpService
from ehr_sync.services.api.authenticators.authenticator import Authenticator
from ehr_sync.services.api.target_store_api import TargetStoreApi

MOCK_AUTH_TOKEN = "some-token"
MOCK_AUTH = "some-auth"


class MockAuthenticator(Authenticator):
    """
    Dummy class for testing purposes only
    """

    def get_authentication_header(self) -> str:
        return MOCK_AUTH_TOKEN

    def get_auth(self) -> Any:
        return MOCK_AUTH


@pytest.fixture()
def base_url() -> str:
    return "http://target.example.com/fhir"


@pytest.fixture()
def mock_body() -> Dict[str, Any]:
    return {"resourceType": "Patient", "id": "p1"}


@pytest.fixture()
def http_service(base_url: str) -> HttpService:
    return HttpService(base_url=base_url, timeout=1, retries=2, backoff=0)


@pytest.fixture()
def mock_authenticator() -> MockAuthenticator:
    return MockAuthenticator()


@pytest.fixture()
def target_store_api(base_url: str) -> TargetStoreApi:
    return TargetStoreApi(base_url=base_url, timeout=1, backoff=0, retries=1)
