import base64
from unittest.mock import MagicMock, patch

import pytest
from requests.exceptions import ConnectionError

from ehr_sync.exceptions import TransportError
from ehr_sync.models.ehr.types import AuthType, EhrVendor
from ehr_sync.models.tenant.dto import SystemAppConfig, TenantContext
from ehr_sync.services.ehr.cerner_adapter import CernerAdapter
from ehr_sync.services.ehr.token_cache import DEFAULT_TOKEN_LIFETIME_SECONDS, TokenCache
from ehr_sync.services.ehr.vendor_adapter import INVALID_BINARY_ERROR
from tests.conftest import FakeClock
from tests.utils import StaticTenantProvider, cerner_tenant, mock_response, searchset, token_response

PATCHED_MODULE = "ehr_sync.services.ehr.vendor_adapter.request"

DISCHARGE_SUMMARY = {
    "resourceType": "DocumentReference",
    "id": "doc-1",
    "status": "current",
    "type": {"coding": [{"system": "http://loinc.org", "code": "18842-5"}]},
    "subject": {"reference": "Patient/12724066"},
    "context": {"encounter": [{"reference": "Encounter/enc-1"}]},
    "author": [{"display": "Dr. Jones"}, {"reference": "Practitioner/p1"}],
    "date": "2024-01-02T10:00:00Z",
    "content": [
        {"attachment": {"contentType": "application/pdf", "url": "Binary/bin-1", "size": 1024}}
    ],
}


@patch(PATCHED_MODULE)
def test_authenticate_should_use_basic_client_credentials(
    mock_request: MagicMock, cerner_adapter: CernerAdapter, ctx: TenantContext
) -> None:
    mock_request.return_value = token_response()

    assert cerner_adapter.authenticate(ctx) is True

    kwargs = mock_request.call_args.kwargs
    expected = base64.b64encode(b"cerner-client:cerner-secret").decode("ascii")
    assert kwargs["method"] == "POST"
    assert kwargs["url"] == "http://cerner.example.com/token"
    assert kwargs["headers"]["Authorization"] == f"Basic {expected}"
    assert kwargs["data"] == {"grant_type": "client_credentials", "scope": "system/Patient.read"}
    assert cerner_adapter.is_authenticated(ctx) is True


@patch(PATCHED_MODULE)
def test_operations_should_reuse_token(
    mock_request: MagicMock, cerner_adapter: CernerAdapter, ctx: TenantContext
) -> None:
    mock_request.side_effect = [
        token_response("abc"),
        mock_response(200, {"resourceType": "Patient", "id": "1"}),
        mock_response(200, {"resourceType": "Patient", "id": "2"}),
    ]

    cerner_adapter.fetch_resource("Patient", "1", ctx)
    cerner_adapter.fetch_resource("Patient", "2", ctx)

    assert mock_request.call_count == 3
    token_calls = [c for c in mock_request.call_args_list if c.kwargs["url"].endswith("/token")]
    assert len(token_calls) == 1
    assert mock_request.call_args.kwargs["headers"]["Authorization"] == "Bearer abc"


@patch(PATCHED_MODULE)
def test_short_lived_token_should_still_authorize_request(
    mock_request: MagicMock, cerner_adapter: CernerAdapter, ctx: TenantContext
) -> None:
    mock_request.side_effect = [
        token_response("short", expires_in=30),
        mock_response(200, {"resourceType": "Patient", "id": "1"}),
    ]

    assert cerner_adapter.fetch_resource("Patient", "1", ctx) == {"resourceType": "Patient", "id": "1"}

    assert mock_request.call_args.kwargs["headers"]["Authorization"] == "Bearer short"


@patch(PATCHED_MODULE)
def test_expired_token_should_still_authorize_request(
    mock_request: MagicMock, cerner_adapter: CernerAdapter, ctx: TenantContext
) -> None:
    mock_request.side_effect = [
        token_response("instant", expires_in=0),
        mock_response(200, {"resourceType": "Patient", "id": "1"}),
    ]

    cerner_adapter.fetch_resource("Patient", "1", ctx)

    assert mock_request.call_args.kwargs["headers"]["Authorization"] == "Bearer instant"


@patch(PATCHED_MODULE)
def test_invalid_expires_in_should_use_default_lifetime(
    mock_request: MagicMock, cerner_adapter: CernerAdapter, ctx: TenantContext, clock: FakeClock
) -> None:
    mock_request.return_value = mock_response(200, {"access_token": "abc", "expires_in": "soon"})

    assert cerner_adapter.ensure_token(ctx) is True

    clock.advance(DEFAULT_TOKEN_LIFETIME_SECONDS - 1)
    assert cerner_adapter.is_authenticated(ctx) is True
    clock.advance(2)
    assert cerner_adapter.is_authenticated(ctx) is False


@patch(PATCHED_MODULE)
def test_failed_authentication_should_skip_request(
    mock_request: MagicMock, cerner_adapter: CernerAdapter, ctx: TenantContext
) -> None:
    mock_request.return_value = mock_response(401, {"error": "invalid_client"})

    assert cerner_adapter.fetch_resource("Patient", "1", ctx) is None
    assert mock_request.call_count == 1


def test_incomplete_configuration_should_not_authenticate(token_cache: TokenCache) -> None:
    tenant = cerner_tenant(
        system_app=SystemAppConfig(client_id="c", token_url="http://cerner.example.com/token")
    )
    adapter = CernerAdapter(StaticTenantProvider(tenant), token_cache, timeout=1)

    with patch(PATCHED_MODULE) as mock_request:
        assert adapter.authenticate(TenantContext(tenant_id="demo")) is False
        mock_request.assert_not_called()


def test_unknown_tenant_should_not_authenticate(cerner_adapter: CernerAdapter) -> None:
    assert cerner_adapter.ensure_token(TenantContext(tenant_id="nope")) is False


def test_provider_auth_should_fail(cerner_adapter: CernerAdapter) -> None:
    ctx = TenantContext(tenant_id="demo", user_id="user-1")

    assert cerner_adapter.ensure_token(ctx, AuthType.PROVIDER) is False
    assert cerner_adapter.ensure_token(TenantContext(tenant_id="demo"), AuthType.PROVIDER) is False


@patch(PATCHED_MODULE)
def test_search_should_return_error_body_on_failure(
    mock_request: MagicMock, cerner_adapter: CernerAdapter, ctx: TenantContext
) -> None:
    outcome = {"resourceType": "OperationOutcome", "issue": [{"severity": "error", "code": "forbidden"}]}
    mock_request.side_effect = [token_response(), mock_response(403, outcome)]

    assert cerner_adapter.search_resource("Encounter", {"patient": "1"}, ctx) == outcome


@patch(PATCHED_MODULE)
def test_search_should_return_none_on_network_error(
    mock_request: MagicMock, cerner_adapter: CernerAdapter, ctx: TenantContext
) -> None:
    mock_request.side_effect = [token_response(), ConnectionError("down")]

    assert cerner_adapter.search_resource("Encounter", {"patient": "1"}, ctx) is None


@patch(PATCHED_MODULE)
def test_search_discharge_summaries_should_fall_back_to_composition(
    mock_request: MagicMock, cerner_adapter: CernerAdapter, ctx: TenantContext
) -> None:
    composition = {"resourceType": "Composition", "id": "comp-1"}
    mock_request.side_effect = [
        token_response(),
        mock_response(200, searchset()),
        mock_response(200, searchset(composition)),
    ]

    result = cerner_adapter.search_discharge_summaries("12724066", ctx)

    assert result is not None
    assert result["entry"][0]["resource"] == composition
    assert mock_request.call_args.kwargs["url"] == "http://cerner.example.com/r4/Composition"
    assert mock_request.call_args.kwargs["params"] == {"patient": "12724066"}


@patch(PATCHED_MODULE)
def test_create_resource_should_raise_without_error_body(
    mock_request: MagicMock, cerner_adapter: CernerAdapter, ctx: TenantContext
) -> None:
    mock_request.side_effect = [token_response(), mock_response(500, None, content=b"oops")]

    with pytest.raises(TransportError):
        cerner_adapter.create_resource("Patient", {"resourceType": "Patient"}, ctx)


@patch(PATCHED_MODULE)
def test_create_resource_should_return_error_body(
    mock_request: MagicMock, cerner_adapter: CernerAdapter, ctx: TenantContext
) -> None:
    outcome = {"resourceType": "OperationOutcome", "issue": []}
    mock_request.side_effect = [token_response(), mock_response(400, outcome)]

    assert cerner_adapter.create_resource("Patient", {"resourceType": "Patient"}, ctx) == outcome
    assert mock_request.call_args.kwargs["headers"]["Content-Type"] == "application/fhir+json"


@patch(PATCHED_MODULE)
def test_delete_resource_should_return_true(
    mock_request: MagicMock, cerner_adapter: CernerAdapter, ctx: TenantContext
) -> None:
    mock_request.side_effect = [token_response(), mock_response(204, None)]

    assert cerner_adapter.delete_resource("Patient", "1", ctx) is True


@patch(PATCHED_MODULE)
def test_fetch_binary_should_return_bytes(
    mock_request: MagicMock, cerner_adapter: CernerAdapter, ctx: TenantContext
) -> None:
    pdf = b"%PDF-1.4 " + b"x" * 100
    mock_request.side_effect = [
        token_response(),
        mock_response(200, None, headers={"Content-Type": "application/pdf"}, content=pdf),
    ]

    binary = cerner_adapter.fetch_binary_document("bin-1", ctx, "application/pdf")

    assert binary is not None
    assert binary.error is None
    assert binary.data == pdf
    assert binary.size == len(pdf)
    assert mock_request.call_args.kwargs["headers"]["Accept"] == "application/pdf"


@patch(PATCHED_MODULE)
def test_fetch_binary_should_unwrap_binary_resource(
    mock_request: MagicMock, cerner_adapter: CernerAdapter, ctx: TenantContext
) -> None:
    encoded = base64.b64encode(b"discharge summary text").decode("ascii")
    mock_request.side_effect = [
        token_response(),
        mock_response(200, {"resourceType": "Binary", "contentType": "text/plain", "data": encoded}),
    ]

    binary = cerner_adapter.fetch_binary_document("bin-1", ctx)

    assert binary is not None
    assert binary.content_type == "text/plain"
    assert binary.data == encoded


@pytest.mark.parametrize("payload", [b"", b"abc", b"123456789"])
def test_fetch_binary_should_reject_short_payloads(
    payload: bytes, cerner_adapter: CernerAdapter, ctx: TenantContext
) -> None:
    with patch(PATCHED_MODULE) as mock_request:
        mock_request.side_effect = [
            token_response(),
            mock_response(200, None, headers={"Content-Type": "application/pdf"}, content=payload),
        ]
        binary = cerner_adapter.fetch_binary_document("bin-1", ctx)

    assert binary is not None
    assert binary.data is None
    assert binary.error == INVALID_BINARY_ERROR


def test_parse_document_reference(cerner_adapter: CernerAdapter) -> None:
    document = cerner_adapter.parse_document_reference(DISCHARGE_SUMMARY)

    assert document is not None
    assert document.id == "doc-1"
    assert document.patient_id == "12724066"
    assert document.encounter_id == "enc-1"
    assert document.authors == ["Dr. Jones", "Practitioner/p1"]
    assert document.type_codes() == ["18842-5"]
    assert document.content[0].url == "Binary/bin-1"
    assert document.content[0].size == 1024

    assert cerner_adapter.parse_document_reference({"resourceType": "Patient"}) is None
    assert cerner_adapter.parse_document_reference(None) is None


def test_capabilities(cerner_adapter: CernerAdapter) -> None:
    capabilities = cerner_adapter.get_capabilities()

    assert capabilities.vendor == EhrVendor.CERNER
    assert capabilities.supports_delete is True
    assert capabilities.supports_update is True
    assert capabilities.max_search_count is None
