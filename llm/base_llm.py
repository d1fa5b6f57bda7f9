"""
Base class for provider adapters.

A provider adapter knows one backend API shape: where to POST, how to
authenticate, how to build the request body and how to dig the reply text
out of the response. The HTTP exchange and error normalization are shared.
"""

import abc
import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from game.models import ModelEntry, ProviderConfig
from .errors import EmptyResponse, ProviderAuthMissing, ProviderHttpError

logger = logging.getLogger(__name__)

ZERO_QUOTA_HINT = (
    "Gemini 3 Pro Preview currently has no free tier. Please enable billing in "
    "Google AI Studio (https://ai.google.dev/) or switch to a model with a free "
    "tier like 'Gemini 2.5 Flash' or 'GPT-4o'."
)
ZERO_QUOTA_SIGNATURES = ("limit: 0", "gemini-3-pro", "free_tier_requests")


def is_zero_quota_family(model: str, message: str) -> bool:
    """Whether the model (or the error text) points at the no-free-tier family."""
    model = model or ""
    return "gemini-3" in model or "pro-preview" in model or "gemini-3-pro" in message


def extract_error_message(body_text: str, status: int) -> tuple[str, Optional[str]]:
    """
    Pull a readable message out of an error response body.

    Returns:
        Tuple of (message, provider error status such as "RESOURCE_EXHAUSTED")
    """
    fallback = f"LLM API call failed with status {status}."
    try:
        data = json.loads(body_text) if body_text else None
    except ValueError:
        return (body_text[:500] if body_text else fallback), None

    if not isinstance(data, dict):
        return (body_text[:500] if body_text else fallback), None

    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message") if isinstance(error.get("message"), str) else None
        return message or fallback, error.get("status")
    if isinstance(error, str) and error:
        return error, None
    if isinstance(data.get("message"), str) and data["message"]:
        return data["message"], None
    return fallback, None


def describe_http_error(model: str, status: int, body_text: str,
                        retry_after: Optional[str] = None) -> str:
    """Build the user-facing message for a non-success response."""
    message, error_status = extract_error_message(body_text, status)

    quota_signal = error_status == "RESOURCE_EXHAUSTED" or status == 429
    if quota_signal and any(s in message for s in ZERO_QUOTA_SIGNATURES) \
            and is_zero_quota_family(model, message):
        return ZERO_QUOTA_HINT

    if status == 429:
        if retry_after:
            message += f" Please wait {retry_after} seconds before trying again."
        else:
            message += (" This usually means you've hit your API quota/rate limit. "
                        "Please check your billing or wait a moment and try again.")
    return message


def describe_embedded_error(model: str, error: Any) -> str:
    """Build the message for an error object returned inside a 200 body."""
    if isinstance(error, dict):
        message = error.get("message") or json.dumps(error)
        error_status = error.get("status")
    else:
        message = str(error)
        error_status = None

    if is_zero_quota_family(model, message) and (
        error_status == "RESOURCE_EXHAUSTED"
        or "limit: 0" in message
        or "free_tier_requests" in message
    ):
        message = ZERO_QUOTA_HINT
    return f"LLM API error: {message}"


class BaseProvider(abc.ABC):
    """Abstract base class for text-generation backends."""

    tag: str = ""
    max_output_tokens: int = 500
    temperature: float = 0.1

    def __init__(self, config: ProviderConfig, timeout: float = 120.0,
                 extra_headers: Optional[dict] = None):
        """
        Initialize the provider.

        Args:
            config: Model, credentials and base URL
            timeout: Total seconds allowed per HTTP request
            extra_headers: Additional headers sent with every request
        """
        self.config = config
        self.timeout = timeout
        self.extra_headers = extra_headers or {}
        # Token usage tracking
        self.prompt_tokens = 0
        self.completion_tokens = 0
        # Last response for debugging parse failures
        self.last_raw_response: str = ""
        self._session: Optional[aiohttp.ClientSession] = None
        self._owns_session = False

    @property
    def model(self) -> str:
        return self.config.model

    @abc.abstractmethod
    def completion_endpoint(self) -> str:
        """URL that completion requests are POSTed to."""
        ...

    @abc.abstractmethod
    def auth_headers(self) -> dict:
        """Headers carrying the API key (empty when there is no key)."""
        ...

    @abc.abstractmethod
    def build_payload(self, system_prompt: str, user_prompt: str) -> dict:
        """JSON body for a completion request."""
        ...

    @abc.abstractmethod
    def extract_text(self, data: Any) -> str:
        """Return the assistant text from a response, or "" if there is none."""
        ...

    @abc.abstractmethod
    def finish_reason(self, data: Any) -> Optional[str]:
        """Why generation stopped (e.g. "length", "MAX_TOKENS"), if reported."""
        ...

    @abc.abstractmethod
    def empty_response_error(self, data: Any) -> EmptyResponse:
        """Describe a response that carried no usable text."""
        ...

    def record_usage(self, data: Any) -> None:
        """Track token usage if the response reports it."""
        pass

    def models_endpoint(self) -> str:
        return f"{self.config.base_url}/models"

    def normalize_model_id(self, raw_id: str) -> str:
        return raw_id

    def headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        headers.update(self.auth_headers())
        headers.update(self.extra_headers)
        return headers

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Lazily create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def use_session(self, session: aiohttp.ClientSession) -> None:
        """Share a caller-owned session instead of creating one."""
        self._session = session
        self._owns_session = False

    async def _request(self, method: str, url: str, payload: Optional[dict] = None) -> Any:
        """
        Issue one HTTP request and decode the body.

        Returns:
            Decoded JSON body, or the raw text if the body is not JSON

        Raises:
            ProviderHttpError: On a non-success status or a transport failure
        """
        session = await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with session.request(method, url, headers=self.headers(), json=payload,
                                       timeout=timeout) as response:
                text = await response.text(errors="replace")
                if response.status < 200 or response.status >= 300:
                    logger.warning(f"LLM API error {response.status}: {text[:500]}")
                    message = describe_http_error(
                        self.model, response.status, text, response.headers.get("Retry-After")
                    )
                    raise ProviderHttpError(message, status_code=response.status)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderHttpError(
                f"Could not reach LLM API at {url}: {type(e).__name__}: {e}"
            ) from e

        try:
            return json.loads(text) if text else None
        except ValueError:
            return text

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """
        Request a completion and return the normalized reply text.

        Raises:
            ProviderAuthMissing: If the API key or model is missing
            ProviderHttpError: If the backend call fails or reports an error
            EmptyResponse: If no text could be extracted from the response
        """
        if not (self.config.api_key or "").strip() or not self.model:
            raise ProviderAuthMissing()

        self.last_raw_response = ""
        data = await self._request(
            "POST", self.completion_endpoint(), self.build_payload(system_prompt, user_prompt)
        )

        if isinstance(data, dict) and data.get("error"):
            logger.warning(f"LLM API returned error in response body: {data['error']}")
            raise ProviderHttpError(describe_embedded_error(self.model, data["error"]), http_status=422)

        logger.debug(f"LLM API response structure: {json.dumps(data)[:500]}")
        self.record_usage(data)

        text = self.extract_text(data)
        if not text.strip():
            raise self.empty_response_error(data)

        if self.finish_reason(data) in ("length", "MAX_TOKENS"):
            logger.warning("LLM response was truncated due to token limit, attempting to parse anyway")

        self.last_raw_response = text
        return text

    async def list_models(self) -> list[ModelEntry]:
        """
        Fetch the models offered at the base URL.

        Raises:
            ProviderHttpError: If the listing call fails
        """
        data = await self._request("GET", self.models_endpoint())
        return parse_model_listing(data, self.normalize_model_id)

    async def close(self) -> None:
        """Close the aiohttp session if this provider created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        self._owns_session = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False


def _first_str(entry: dict, *keys: str) -> Optional[str]:
    for key in keys:
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def parse_model_listing(data: Any, normalize_id=lambda raw: raw) -> list[ModelEntry]:
    """
    Normalize a model-listing response.

    Accepts a ``data`` or ``models`` array. Entries are deduplicated by id and
    sorted case-insensitively by label (falling back to id), then by id.

    Args:
        data: Decoded listing response
        normalize_id: Maps a raw id to the identifier requests should use

    Returns:
        Sorted list of ModelEntry
    """
    raw_entries = []
    if isinstance(data, dict):
        if isinstance(data.get("data"), list):
            raw_entries = data["data"]
        elif isinstance(data.get("models"), list):
            raw_entries = data["models"]

    models: dict[str, ModelEntry] = {}
    for entry in raw_entries:
        if not isinstance(entry, dict):
            continue
        raw_id = _first_str(entry, "id", "model", "name")
        if not raw_id:
            continue
        model_id = normalize_id(raw_id.strip())
        if model_id in models:
            continue

        label = _first_str(entry, "display_name", "displayName", "label")
        if label is None and entry.get("name") != raw_id:
            label = _first_str(entry, "name")
        if label is None:
            label = _first_str(entry, "description")

        provider = _first_str(entry, "provider", "owned_by")
        if provider is None and "/" in model_id:
            provider = model_id.split("/")[0]

        models[model_id] = ModelEntry(id=model_id, label=label, provider=provider)

    return sorted(
        models.values(),
        key=lambda m: ((m.label or m.id).lower(), m.id.lower()),
    )
