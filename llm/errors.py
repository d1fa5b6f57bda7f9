"""
Error types raised by the provider adapter and turn orchestrator.

Every error can render itself as the JSON error payload returned to callers:
``{"error": str, "statusCode"?: int, "isRateLimit"?: bool}``.
"""

from typing import Optional


class InvalidRequest(Exception):
    """Raised when a turn request is missing or malformed. Never retried."""

    response_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict:
        return {"error": self.message}


class ProviderError(Exception):
    """
    Base class for failures talking to a text-generation backend.

    Args:
        message: Human-readable explanation, including any remediation hint
        status_code: HTTP status returned by the backend, if there was one
        http_status: Status to answer our own caller with (defaults per class)
    """

    default_http_status = 502

    def __init__(self, message: str, status_code: Optional[int] = None,
                 http_status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self._http_status = http_status

    @property
    def is_rate_limit(self) -> bool:
        return self.status_code == 429

    @property
    def response_status(self) -> int:
        if self._http_status is not None:
            return self._http_status
        if self.status_code is not None and self.status_code >= 400:
            return self.status_code
        return self.default_http_status

    def to_payload(self) -> dict:
        payload = {"error": self.message}
        if self.status_code is not None:
            payload["statusCode"] = self.status_code
            payload["isRateLimit"] = self.is_rate_limit
        return payload


class ProviderAuthMissing(ProviderError):
    """Raised when no API key or model was supplied for a provider call."""

    default_http_status = 400

    def __init__(self, message: str = "API key and model are required. Please provide valid credentials."):
        super().__init__(message)


class ProviderHttpError(ProviderError):
    """
    Raised when the backend answers with a non-success status, reports an
    error inside a 200 body, or cannot be reached at all (status_code=None).
    """
    pass


class EmptyResponse(ProviderError):
    """Raised when the backend answered but no text could be extracted."""

    default_http_status = 422

    def __init__(self, message: str, finish_reason: Optional[str] = None,
                 observed_keys: Optional[list] = None, debug: Optional[str] = None):
        super().__init__(message)
        self.finish_reason = finish_reason
        self.observed_keys = observed_keys or []
        self.debug = debug

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if self.debug:
            payload["debug"] = self.debug
        return payload
