class ConfigurationError(Exception):
    """
    Raised when tenant or vendor configuration is missing or invalid. Fatal to the call.
    """


class TransportError(Exception):
    """
    Raised when a vendor create fails without a structured error body, or on a network failure.
    """


class TargetStoreError(Exception):
    """
    Raised when the target FHIR store rejects a request.
    """

    def __init__(self, message: str, status_code: int | None = None, outcome: dict | None = None) -> None:  # type: ignore[type-arg]
        super().__init__(message)
        self.status_code = status_code
        self.outcome = outcome
