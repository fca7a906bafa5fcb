from typing import Any
from ehr_sync.services.api.authenticators.authenticator import Authenticator


class NullAuthenticator(Authenticator):
    """
    Performs no authentication. Used when target store authentication is turned off.
    """
    def get_authentication_header(self) -> str:
        return ""

    def get_auth(self) -> Any:
        return None
