import logging
from typing import Any, Dict

from fhir.resources.R4B.bundle import Bundle
from requests import JSONDecodeError, Response

from ehr_sync.exceptions import TargetStoreError
from ehr_sync.models.fhir.types import BundleError
from ehr_sync.services.api.api_service import HttpService
from ehr_sync.services.api.authenticators.authenticator import Authenticator
from ehr_sync.services.fhir.bundle_parser import create_bundle, get_resources
from ehr_sync.services.fhir.utils import collect_errors

ERR_MSG_FORMAT = "Target store error: %s"
logger = logging.getLogger(__name__)


class TargetStoreApi(HttpService):
    """
    FHIR REST client for the target store of one tenant.
    """

    def __init__(
        self,
        base_url: str,
        timeout: int,
        backoff: float,
        retries: int,
        auth: Authenticator | None = None,
        mtls_cert: str | None = None,
        mtls_key: str | None = None,
        mtls_ca: str | None = None,
    ):
        super().__init__(
            base_url=base_url,
            timeout=timeout,
            backoff=backoff,
            retries=retries,
            authenticator=auth,
            mtls_ca=mtls_ca,
            mtls_cert=mtls_cert,
            mtls_key=mtls_key,
        )

    def create(self, resource_type: str, body: Dict[str, Any]) -> Dict[str, Any]:
        response = self.do_request("POST", sub_route=resource_type, json=body)
        return self.__json_or_raise(response, f"create {resource_type}")

    def read(self, resource_type: str, resource_id: str) -> Dict[str, Any] | None:
        response = self.do_request("GET", sub_route=f"{resource_type}/{resource_id}")
        if response.status_code in (404, 410):
            logger.info("%s/%s not found in target store", resource_type, resource_id)
            return None
        return self.__json_or_raise(response, f"read {resource_type}/{resource_id}")

    def update(
        self, resource_type: str, resource_id: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        response = self.do_request(
            "PUT", sub_route=f"{resource_type}/{resource_id}", json=body
        )
        return self.__json_or_raise(response, f"update {resource_type}/{resource_id}")

    def delete(self, resource_type: str, resource_id: str) -> None:
        response = self.do_request("DELETE", sub_route=f"{resource_type}/{resource_id}")
        if response.status_code >= 400 and response.status_code != 404:
            self.__raise(response, f"delete {resource_type}/{resource_id}")

    def search(self, resource_type: str, params: Dict[str, Any]) -> list[Dict[str, Any]]:
        """
        Search for resources of a given type. Returns the resources of the first page.
        """
        response = self.do_request("GET", sub_route=resource_type, params=params)
        data = self.__json_or_raise(response, f"search {resource_type}")
        return get_resources(data)

    def submit_batch(self, bundle: Dict[str, Any]) -> tuple[Bundle, list[BundleError]]:
        """
        Post a batch or transaction bundle. Returns the parsed response bundle together with
        the errors of the individual entries.
        """
        response = self.do_request("POST", json=bundle)
        data = self.__json_or_raise(response, "submit batch")
        response_bundle = create_bundle(data)
        return response_bundle, collect_errors(response_bundle)

    def __json_or_raise(self, response: Response, action: str) -> Dict[str, Any]:
        if response.status_code >= 400:
            self.__raise(response, action)

        try:
            return response.json()  # type: ignore[no-any-return]
        except JSONDecodeError:
            logger.error("Failed to decode JSON response: %s", response.text)
            raise TargetStoreError(
                f"Invalid JSON from target store on {action}", response.status_code
            )

    @staticmethod
    def __raise(response: Response, action: str) -> None:
        try:
            outcome = response.json()
        except JSONDecodeError:
            outcome = None
        logger.error(ERR_MSG_FORMAT, outcome if outcome is not None else response.text)
        raise TargetStoreError(
            f"Target store rejected {action} with status {response.status_code}",
            response.status_code,
            outcome,
        )
