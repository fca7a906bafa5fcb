from abc import ABC, abstractmethod
from typing import Any


class Authenticator(ABC):
    """
    Authentication strategy for the target FHIR store.

    Implementations either supply an ``Authorization`` header value, a
    library-specific auth object for ``requests``, or both.
    """

    @abstractmethod
    def get_authentication_header(self) -> str:
        """
        Returns the value of the ``Authorization`` header, e.g. ``"Bearer <token>"``.
        An empty string means no header is sent.
        """
        ...

    @abstractmethod
    def get_auth(self) -> Any:
        """
        Returns an object accepted by the ``auth`` parameter of ``requests``, or None.
        """
        ...
