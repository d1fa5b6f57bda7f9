"""
Google Gemini provider (single-turn generateContent API).

Talks to the REST endpoint directly so that the request shape, the
``x-goog-api-key`` header and the raw response can be handled explicitly.
"""

import json
import logging
import re
from typing import Any, Optional

from .base_llm import BaseProvider
from .errors import EmptyResponse

logger = logging.getLogger(__name__)

# Host pattern identifying the generation-style API
GEMINI_HOST_PATTERN = "googleapis.com"

_EMBEDDED_MOVE_RE = re.compile(r'\{"from":\[[\d,]+\],"to":\[[\d,]+\]\}')


def _first_candidate(data: Any) -> dict:
    if not isinstance(data, dict):
        return {}
    candidates = data.get("candidates")
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
        return candidates[0]
    return {}


def extract_gemini_text(data: Any) -> str:
    """
    Extract the reply text from a generateContent response.

    Takes the first part with text. When generation stopped at MAX_TOKENS
    without any text part, scans the whole response for an embedded move
    object as a last resort.

    Args:
        data: Decoded response body

    Returns:
        The reply text, or "" if there is none
    """
    candidate = _first_candidate(data)
    content = candidate.get("content") if isinstance(candidate.get("content"), dict) else {}
    parts = content.get("parts")
    if isinstance(parts, list):
        for part in parts:
            if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"]:
                return part["text"]

    if candidate.get("finishReason") == "MAX_TOKENS":
        logger.warning("Gemini hit MAX_TOKENS with no content. Thinking tokens may have consumed the limit.")
        if content and "text" in json.dumps(content):
            flattened = json.dumps(data, separators=(",", ":")).replace('\\"', '"')
            match = _EMBEDDED_MOVE_RE.search(flattened)
            if match:
                return match.group(0)
    return ""


class GeminiProvider(BaseProvider):
    """Provider speaking the Gemini generateContent wire format."""

    tag = "gemini"
    # Thinking tokens count toward the output cap, so it must be generous.
    max_output_tokens = 8192

    def completion_endpoint(self) -> str:
        return f"{self.config.base_url}/models/{self.model}:generateContent"

    def auth_headers(self) -> dict:
        if not self.config.api_key:
            return {}
        return {"x-goog-api-key": self.config.api_key.strip()}

    def build_payload(self, system_prompt: str, user_prompt: str) -> dict:
        return {
            "contents": [{
                "parts": [{"text": f"{system_prompt}\n\n{user_prompt}"}],
            }],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
                "responseMimeType": "application/json",
            },
        }

    def extract_text(self, data: Any) -> str:
        return extract_gemini_text(data)

    def finish_reason(self, data: Any) -> Optional[str]:
        reason = _first_candidate(data).get("finishReason")
        return reason if isinstance(reason, str) else None

    def record_usage(self, data: Any) -> None:
        usage = data.get("usageMetadata") if isinstance(data, dict) else None
        if isinstance(usage, dict):
            self.prompt_tokens += usage.get("promptTokenCount") or 0
            self.completion_tokens += usage.get("candidatesTokenCount") or 0

    def empty_response_error(self, data: Any) -> EmptyResponse:
        finish_reason = self.finish_reason(data)
        top_keys = list(data.keys()) if isinstance(data, dict) else []

        if finish_reason == "MAX_TOKENS":
            usage = data.get("usageMetadata") if isinstance(data, dict) else None
            usage = usage if isinstance(usage, dict) else {}
            thoughts = usage.get("thoughtsTokenCount") or 0
            return EmptyResponse(
                f'{self.model} hit the token limit. The model used {thoughts} "thinking tokens" '
                "(internal reasoning) which count toward the output limit. This is a built-in "
                "feature of some Gemini models that cannot be disabled. Recommendation: Use a "
                "different model like GPT-4o, Claude, or a standard Gemini model (if available) "
                "for more reliable chess moves.",
                finish_reason=finish_reason,
                observed_keys=top_keys,
                debug=(
                    f"Finish reason: {finish_reason}, Thinking tokens: {thoughts}, "
                    f"Total tokens: {usage.get('totalTokenCount', 'unknown')}, "
                    f"Max output tokens: {self.max_output_tokens}"
                ),
            )

        return EmptyResponse(
            "LLM returned an empty response. Please check your API key and model configuration. "
            "The API may use a different response format.",
            finish_reason=finish_reason or "unknown",
            observed_keys=top_keys,
            debug=f"Response structure: {json.dumps(top_keys)[:200]}",
        )

    def normalize_model_id(self, raw_id: str) -> str:
        # Listings name models "models/<id>"; requests want the bare id
        return raw_id[len("models/"):] if raw_id.startswith("models/") else raw_id
