import logging
import threading
import time
import requests
from typing import Any
from requests.exceptions import RequestException
from ehr_sync.services.api.authenticators.authenticator import Authenticator

logger = logging.getLogger(__name__)


class OAuth2Authenticator(Authenticator):
    """
    Client credentials flow against the identity provider of the target store.
    """
    def __init__(
        self, token_url: str, client_id: str, client_secret: str, scope: str
    ) -> None:
        self.__token_url = token_url
        self.__client_id = client_id
        self.__client_secret = client_secret
        self.__scope = scope
        self.__lock = threading.Lock()
        self.token: str | None = None
        self.expiry = 0.0

    def get_auth(self) -> Any:
        return None

    def get_authentication_header(self) -> str:
        with self.__lock:
            if self.token is None or time.time() >= self.expiry:
                token_data = self.__get_token()
                self.token = str(token_data["access_token"])
                self.expiry = time.time() + float(token_data.get("expires_in", 3600)) - 60.0
        return f"Bearer {self.token}"

    def __get_token(self) -> dict[str, Any]:
        try:
            response = requests.post(
                self.__token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.__client_id,
                    "client_secret": self.__client_secret,
                    "scope": self.__scope,
                },
            )
        except RequestException as e:
            raise ConnectionError(f"Failed to connect to token endpoint: {e}")

        if response.status_code >= 400:
            try:
                error_details = response.json()
            except requests.JSONDecodeError:
                error_details = response.text
            logger.error("Target store authentication failed with status %s", response.status_code)
            raise ValueError(f"Authentication failed with status {response.status_code}: {error_details}")

        try:
            return response.json()  # type: ignore
        except requests.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON response from token endpoint: {e}")
