import json
from typing import Any, Dict, List
from unittest.mock import MagicMock

from requests import JSONDecodeError

from ehr_sync.exceptions import ConfigurationError
from ehr_sync.models.tenant.dto import SystemAppConfig, TargetStoreConfig, TenantEhrConfig
from ehr_sync.services.tenant_provider.tenant_provider import TenantProvider


class StaticTenantProvider(TenantProvider):
    def __init__(self, *tenants: TenantEhrConfig) -> None:
        self.tenants = {t.tenant_id: t for t in tenants}

    def get_all_tenants(self) -> List[TenantEhrConfig]:
        return list(self.tenants.values())

    def get_tenant(self, tenant_id: str) -> TenantEhrConfig:
        if tenant_id not in self.tenants:
            raise ConfigurationError(f"Unknown tenant {tenant_id}")
        return self.tenants[tenant_id]


def cerner_tenant(tenant_id: str = "demo", **overrides: Any) -> TenantEhrConfig:
    values: Dict[str, Any] = {
        "tenant_id": tenant_id,
        "vendor": "cerner",
        "base_url": "http://cerner.example.com/r4",
        "system_app": SystemAppConfig(
            client_id="cerner-client",
            client_secret="cerner-secret",
            token_url="http://cerner.example.com/token",
            scopes="system/Patient.read",
        ),
        "target_store": TargetStoreConfig(base_url="http://target.example.com/fhir"),
    }
    values.update(overrides)
    return TenantEhrConfig(**values)


def epic_tenant(tenant_id: str = "epic-tenant", **overrides: Any) -> TenantEhrConfig:
    values: Dict[str, Any] = {
        "tenant_id": tenant_id,
        "vendor": "epic",
        "base_url": "http://epic.example.com/R4",
        "system_app": SystemAppConfig(
            client_id="epic-client",
            token_url="http://epic.example.com/token",
            private_key_path="key.pem",
            key_id="kid-1",
            scopes="system/Patient.read",
        ),
        "target_store": TargetStoreConfig(base_url="http://target.example.com/fhir"),
    }
    values.update(overrides)
    return TenantEhrConfig(**values)


def mock_response(
    status_code: int = 200,
    json_data: Any = None,
    headers: Dict[str, str] | None = None,
    content: bytes | None = None,
) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {"Content-Type": "application/fhir+json"}
    if json_data is None:
        response.json.side_effect = JSONDecodeError("Expecting value", "", 0)
        response.text = (content or b"").decode("utf-8", errors="replace")
    else:
        response.json.return_value = json_data
        response.text = json.dumps(json_data)
    response.content = content if content is not None else response.text.encode("utf-8")
    return response


def token_response(access_token: str = "access-token", expires_in: int | None = 3600) -> MagicMock:
    body: Dict[str, Any] = {"access_token": access_token, "token_type": "Bearer"}
    if expires_in is not None:
        body["expires_in"] = expires_in
    return mock_response(200, body)


def searchset(*resources: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "resourceType": "Bundle",
        "type": "searchset",
        "total": len(resources),
        "entry": [{"resource": r} for r in resources],
    }


def batch_response(*entries: tuple[str, str | None]) -> Dict[str, Any]:
    """
    Builds a batch-response bundle from (status, location) pairs.
    """
    return {
        "resourceType": "Bundle",
        "type": "batch-response",
        "entry": [
            {"response": {"status": status, **({"location": location} if location else {})}}
            for status, location in entries
        ],
    }


class InMemoryTargetStore:
    """
    Target store stand-in that keeps created resources and answers ``_tag`` and
    ``identifier`` searches, so repeated exports see their earlier writes.
    """

    def __init__(self) -> None:
        self.resources: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.created: List[tuple[str, str]] = []

    def create(self, resource_type: str, body: Dict[str, Any]) -> Dict[str, Any]:
        store = self.resources.setdefault(resource_type, {})
        resource_id = f"{resource_type.lower()}-{len(store) + 1}"
        stored = {**body, "id": resource_id}
        store[resource_id] = stored
        self.created.append((resource_type, resource_id))
        return stored

    def read(self, resource_type: str, resource_id: str) -> Dict[str, Any] | None:
        return self.resources.get(resource_type, {}).get(resource_id)

    def update(self, resource_type: str, resource_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        stored = {**body, "id": resource_id}
        self.resources.setdefault(resource_type, {})[resource_id] = stored
        return stored

    def search(self, resource_type: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        matches = [
            r
            for r in self.resources.get(resource_type, {}).values()
            if self.__matches(r, params)
        ]
        count = params.get("_count")
        return matches[: int(count)] if count else matches

    @staticmethod
    def __matches(resource: Dict[str, Any], params: Dict[str, Any]) -> bool:
        tag = params.get("_tag")
        if tag is not None:
            codes = [t.get("code") for t in (resource.get("meta") or {}).get("tag") or []]
            if tag not in codes:
                return False

        identifier = params.get("identifier")
        if identifier is not None:
            system, _, value = str(identifier).rpartition("|")
            identifiers = resource.get("identifier") or []
            if isinstance(identifiers, dict):
                identifiers = [identifiers]
            if not any(
                i.get("value") == value and (not system or i.get("system") == system)
                for i in identifiers
            ):
                return False

        return True
