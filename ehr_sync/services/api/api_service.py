from abc import ABC
import logging
import time
from typing import Dict, Any
from requests import request, Response
from requests.exceptions import Timeout, ConnectionError
from yarl import URL

from ehr_sync.services.api.authenticators.authenticator import Authenticator

logger = logging.getLogger(__name__)

RETRYABLE_METHODS = frozenset({"GET", "HEAD"})


class HttpService(ABC):
    """
    Base class for making HTTP requests with retry logic
    """

    def __init__(
        self,
        base_url: str,
        timeout: int,
        retries: int,
        backoff: float,
        authenticator: Authenticator | None = None,
        mtls_cert: str | None = None,
        mtls_key: str | None = None,
        mtls_ca: str | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.authenticator = authenticator
        self.__mtls_cert = mtls_cert
        self.__mtls_key = mtls_key
        self.__mtls_ca = mtls_ca
        self.__timeout = timeout
        self.__retries = max(1, retries)
        self.__backoff = backoff

    def do_request(
        self,
        method: str,
        sub_route: str | None = None,
        json: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
    ) -> Response:
        """
        Perform an HTTP request. Reads are retried on connection errors and timeouts.
        Writes are sent once: a timeout can arrive after the store already accepted the
        body, and sending it again would create a second copy.
        """
        headers = self.make_headers()
        url = self.make_target_url(sub_route, params)
        attempts = self.__retries if method.upper() in RETRYABLE_METHODS else 1

        for attempt in range(attempts):
            try:
                logger.info(f"Making HTTP {method} request to {url}")
                response = request(
                    method=method,
                    url=str(url),
                    headers=headers,
                    timeout=self.__timeout,
                    json=json,
                    cert=(
                        (self.__mtls_cert, self.__mtls_key)
                        if self.__mtls_cert and self.__mtls_key
                        else None
                    ),
                    verify=self.__mtls_ca or True,
                    auth=self.authenticator.get_auth() if self.authenticator else None,
                )
                return response
            except (
                ConnectionError,
                Timeout,
            ) as e:
                logger.warning(f"Failed to make {method} request to {url} on attempt {attempt}: {e}")

                if attempt < attempts - 1:
                    logger.info(f"Retrying in {self.__backoff * (2**attempt)} seconds")
                    time.sleep(self.__backoff * (2**attempt))
                elif attempts == 1:
                    raise ConnectionError(f"Failed to make {method} request to {url}") from e

        logger.error(f"Failed to make request to {url} after {attempts} attempts")
        raise ConnectionError("Failed to make request after too many retries")

    def make_headers(self) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/fhir+json",
            "Accept": "application/fhir+json",
        }
        if self.authenticator:
            auth_header = self.authenticator.get_authentication_header()
            if auth_header:
                headers["Authorization"] = auth_header

        return headers

    def make_target_url(
        self, sub_route: str | None = None, params: Dict[str, Any] | None = None
    ) -> URL:
        url = self.base_url
        if sub_route:
            url = f"{url}/{sub_route.lstrip('/')}"

        target = URL(url)
        if params:
            return target.with_query({k: str(v) for k, v in params.items()})

        return target
