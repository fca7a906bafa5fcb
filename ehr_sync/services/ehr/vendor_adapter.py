from abc import ABC, abstractmethod
import logging
from typing import Any, Dict

from requests import JSONDecodeError, Response, request
from requests.exceptions import RequestException

from ehr_sync.exceptions import ConfigurationError, TransportError
from ehr_sync.models.ehr.types import (
    AuthType,
    BinaryDocument,
    DocumentContent,
    EhrCapabilities,
    EhrVendor,
    SourceDocument,
    TokenState,
)
from ehr_sync.models.tenant.dto import TenantContext, TenantEhrConfig
from ehr_sync.services.ehr.token_cache import TokenCache, TokenKey, compute_expiry
from ehr_sync.services.fhir.bundle_parser import get_resources
from ehr_sync.services.fhir.references import reference_id
from ehr_sync.services.tenant_provider.tenant_provider import TenantProvider

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"
FORM_URLENCODED = "application/x-www-form-urlencoded"

# Binary payloads shorter than this are placeholders or corrupted test data
MIN_BINARY_LENGTH = 10
INVALID_BINARY_ERROR = "Invalid binary data - likely corrupted or test data"


class VendorAdapter(ABC):
    """
    Uniform FHIR surface over one EHR vendor.

    Every network operation first makes sure a valid access token exists for the
    (tenant, vendor) pair of the call. When that fails the operation returns None (or
    False for deletes) without sending anything. Non-2xx responses with a JSON body are
    returned as data so callers can inspect the OperationOutcome. Only
    ``create_resource`` raises, when there is no structured body to return.
    """

    vendor: EhrVendor
    default_binary_accept = "application/octet-stream"

    def __init__(
        self,
        tenant_provider: TenantProvider,
        token_cache: TokenCache,
        timeout: int = 30,
    ) -> None:
        self._tenant_provider = tenant_provider
        self._token_cache = token_cache
        self._timeout = timeout

    def get_vendor(self) -> EhrVendor:
        return self.vendor

    @abstractmethod
    def get_capabilities(self) -> EhrCapabilities:
        ...

    @abstractmethod
    def search_discharge_summaries(
        self, patient_id: str, ctx: TenantContext
    ) -> Dict[str, Any] | None:
        """
        Searches the discharge summaries of a patient. Returns the search bundle, the
        vendor error payload or None.
        """
        ...

    @abstractmethod
    def _request_system_token(self, tenant: TenantEhrConfig) -> TokenState | None:
        """
        Obtains a token with the vendor's client credentials flavour. Returns None when the
        configuration is incomplete or the vendor refuses.
        """
        ...

    def _vendor_headers(self, tenant: TenantEhrConfig) -> Dict[str, str]:
        return {}

    def _search_params(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return params

    # Authentication

    def authenticate(self, ctx: TenantContext, auth_type: AuthType = AuthType.SYSTEM) -> bool:
        """
        Drops any cached token and authenticates again.
        """
        self._token_cache.invalidate(self._token_key(ctx))
        return self.ensure_token(ctx, auth_type)

    def ensure_token(self, ctx: TenantContext, auth_type: AuthType = AuthType.SYSTEM) -> bool:
        return self._access_token(ctx, auth_type) is not None

    def _access_token(
        self, ctx: TenantContext, auth_type: AuthType = AuthType.SYSTEM
    ) -> TokenState | None:
        """
        The token FHIR requests of this call are sent with. Callers hold on to it instead
        of reading the cache again, since a short-lived token may already count as expired.
        """
        if auth_type == AuthType.PROVIDER:
            self._provider_token(ctx)
            return None

        try:
            tenant = self._tenant(ctx)
        except ConfigurationError as e:
            logger.error("Cannot authenticate with %s for tenant %s: %s", self.vendor.value, ctx.tenant_id, e)
            return None

        return self._token_cache.ensure(
            self._token_key(ctx), lambda: self._request_system_token(tenant)
        )

    def is_authenticated(self, ctx: TenantContext) -> bool:
        return self._token_cache.get_valid(self._token_key(ctx)) is not None

    def _provider_token(self, ctx: TenantContext) -> bool:
        if not ctx.user_id:
            logger.error("User ID required for provider app authentication")
            return False

        logger.warning(
            "Provider app authentication is not supported for %s (tenant %s, user %s)",
            self.vendor.value,
            ctx.tenant_id,
            ctx.user_id,
        )
        return False

    def _request_token(
        self, token_url: str, data: Dict[str, str], headers: Dict[str, str]
    ) -> TokenState | None:
        try:
            response = request(
                method="POST",
                url=token_url,
                data=data,
                headers={"Content-Type": FORM_URLENCODED, **headers},
                timeout=self._timeout,
            )
        except RequestException as e:
            logger.error("%s token request failed: %s", self.vendor.value, e)
            return None

        if response.status_code >= 400:
            logger.error(
                "%s authentication failed with status %s: %s",
                self.vendor.value,
                response.status_code,
                response.text,
            )
            return None

        try:
            token_data = response.json()
        except JSONDecodeError:
            logger.error("Invalid JSON response from %s token endpoint", self.vendor.value)
            return None

        access_token = token_data.get("access_token")
        if not access_token:
            logger.error("%s token response did not contain an access token", self.vendor.value)
            return None

        expires_in = token_data.get("expires_in")
        if expires_in is not None:
            try:
                expires_in = float(expires_in)
            except (TypeError, ValueError):
                logger.warning(
                    "%s token response has an invalid expires_in %r, using the default lifetime",
                    self.vendor.value,
                    expires_in,
                )
                expires_in = None

        logger.info("%s system app authentication successful", self.vendor.value)
        return TokenState(
            access_token=str(access_token),
            expires_at=compute_expiry(expires_in, self._token_cache.now()),
        )

    # FHIR operations

    def create_resource(
        self, resource_type: str, resource: Dict[str, Any], ctx: TenantContext
    ) -> Dict[str, Any] | None:
        token = self._access_token(ctx)
        if token is None:
            logger.error("Authentication failed. Cannot create %s", resource_type)
            return None

        tenant = self._tenant(ctx)
        try:
            response = self._send(
                "POST", f"{tenant.base_url}/{resource_type}", token, tenant, json=resource
            )
        except RequestException as e:
            logger.error("Failed to create %s: %s", resource_type, e)
            raise TransportError(f"Failed to create {resource_type}: {e}") from e

        if self._is_success(response):
            logger.info("Created %s successfully", resource_type)
            return self._json(response) or {}

        body = self._json(response)
        if body is not None:
            logger.error("Failed to create %s: %s", resource_type, body)
            return body
        raise TransportError(
            f"Failed to create {resource_type}: HTTP {response.status_code}"
        )

    def fetch_resource(
        self, resource_type: str, resource_id: str, ctx: TenantContext
    ) -> Dict[str, Any] | None:
        return self._read("GET", f"{resource_type}/{resource_id}", ctx)

    def update_resource(
        self,
        resource_type: str,
        resource_id: str,
        resource: Dict[str, Any],
        ctx: TenantContext,
    ) -> Dict[str, Any] | None:
        return self._read("PUT", f"{resource_type}/{resource_id}", ctx, json=resource)

    def delete_resource(
        self, resource_type: str, resource_id: str, ctx: TenantContext
    ) -> bool | Dict[str, Any]:
        token = self._access_token(ctx)
        if token is None:
            return False

        tenant = self._tenant(ctx)
        try:
            response = self._send("DELETE", f"{tenant.base_url}/{resource_type}/{resource_id}", token, tenant)
        except RequestException as e:
            logger.error("Failed to delete %s/%s: %s", resource_type, resource_id, e)
            return False

        if self._is_success(response):
            logger.info("Deleted %s/%s successfully", resource_type, resource_id)
            return True

        body = self._json(response)
        logger.error("Failed to delete %s/%s: %s", resource_type, resource_id, body)
        return body if body is not None else False

    def search_resource(
        self,
        resource_type: str,
        params: Dict[str, Any],
        ctx: TenantContext,
        auth_type: AuthType = AuthType.SYSTEM,
    ) -> Dict[str, Any] | None:
        return self._read(
            "GET", resource_type, ctx, params=self._search_params(params), auth_type=auth_type
        )

    def fetch_binary_document(
        self, binary_id: str, ctx: TenantContext, accept: str | None = None
    ) -> BinaryDocument | None:
        accept = accept or self.default_binary_accept
        token = self._access_token(ctx)
        if token is None:
            return None

        tenant = self._tenant(ctx)
        try:
            response = self._send(
                "GET", f"{tenant.base_url}/Binary/{binary_id}", token, tenant, accept=accept
            )
        except RequestException as e:
            logger.error("Failed to fetch Binary/%s: %s", binary_id, e)
            return None

        if not self._is_success(response):
            body = self._json(response)
            logger.error("Failed to fetch Binary/%s: HTTP %s", binary_id, response.status_code)
            if body is None:
                return None
            return BinaryDocument(
                id=binary_id,
                content_type=accept,
                error=f"HTTP {response.status_code}",
                outcome=body,
            )

        return self._binary_from_response(binary_id, response, accept)

    def parse_document_reference(self, doc: Dict[str, Any] | None) -> SourceDocument | None:
        if not doc or doc.get("resourceType") != "DocumentReference":
            return None

        encounters = (doc.get("context") or {}).get("encounter") or []
        encounter_id = None
        if encounters:
            encounter_id = reference_id(encounters[0].get("reference"), "Encounter")

        subject = (doc.get("subject") or {}).get("reference")
        return SourceDocument(
            id=str(doc.get("id")),
            status=doc.get("status"),
            type=doc.get("type"),
            patient_id=reference_id(subject, "Patient"),
            encounter_id=encounter_id,
            date=doc.get("date"),
            authors=[
                a.get("display") or a.get("reference")
                for a in doc.get("author") or []
                if a.get("display") or a.get("reference")
            ],
            content=[
                DocumentContent(
                    content_type=(c.get("attachment") or {}).get("contentType"),
                    url=(c.get("attachment") or {}).get("url"),
                    data=(c.get("attachment") or {}).get("data"),
                    title=(c.get("attachment") or {}).get("title"),
                    size=(c.get("attachment") or {}).get("size"),
                )
                for c in doc.get("content") or []
            ],
        )

    # Helpers

    def _tenant(self, ctx: TenantContext) -> TenantEhrConfig:
        return self._tenant_provider.get_tenant(ctx.tenant_id)

    def _token_key(self, ctx: TenantContext) -> TokenKey:
        return (ctx.tenant_id, self.vendor.value)

    def _read(
        self,
        method: str,
        sub_route: str,
        ctx: TenantContext,
        json: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
        auth_type: AuthType = AuthType.SYSTEM,
    ) -> Dict[str, Any] | None:
        token = self._access_token(ctx, auth_type)
        if token is None:
            return None

        tenant = self._tenant(ctx)
        try:
            response = self._send(
                method, f"{tenant.base_url}/{sub_route}", token, tenant, json=json, params=params
            )
        except RequestException as e:
            logger.error("%s %s failed: %s", method, sub_route, e)
            return None

        body = self._json(response)
        if not self._is_success(response):
            logger.error("%s %s failed with status %s: %s", method, sub_route, response.status_code, body)
        return body

    def _send(
        self,
        method: str,
        url: str,
        token: TokenState,
        tenant: TenantEhrConfig,
        json: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
        accept: str = FHIR_JSON,
    ) -> Response:
        headers = {
            "Accept": accept,
            "Authorization": f"Bearer {token.access_token}",
            **self._vendor_headers(tenant),
        }
        if json is not None:
            headers["Content-Type"] = FHIR_JSON

        logger.info("Making %s request to %s", method, url)
        return request(
            method=method,
            url=url,
            headers=headers,
            json=json,
            params=params,
            timeout=self._timeout,
        )

    @staticmethod
    def _is_success(response: Response) -> bool:
        return 200 <= response.status_code < 300

    @staticmethod
    def _json(response: Response) -> Dict[str, Any] | None:
        try:
            data = response.json()
        except (JSONDecodeError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    def _binary_from_response(
        self, binary_id: str, response: Response, accept: str
    ) -> BinaryDocument:
        content_type = response.headers.get("Content-Type") or accept
        media_type = content_type.split(";")[0].strip().lower()

        payload: str | bytes | None
        if media_type in (FHIR_JSON, "application/json"):
            body = self._json(response) or {}
            if body.get("resourceType") == "Binary":
                # Server answered with the Binary resource itself; data is already base64
                content_type = body.get("contentType") or content_type
                payload = body.get("data")
            else:
                payload = response.text
        elif media_type.startswith("text/") or media_type.endswith("xml"):
            payload = response.text
        else:
            payload = response.content

        if payload is None or len(payload) < MIN_BINARY_LENGTH:
            logger.warning(
                "Binary/%s contains invalid data: %r", binary_id, payload
            )
            return BinaryDocument(
                id=binary_id,
                content_type=content_type,
                data=None,
                size=0,
                error=INVALID_BINARY_ERROR,
            )

        logger.info("Fetched Binary/%s successfully", binary_id)
        return BinaryDocument(
            id=binary_id,
            content_type=content_type,
            data=payload,
            size=len(payload),
        )


def has_resources(bundle: Dict[str, Any] | None) -> bool:
    return bool(get_resources(bundle))
