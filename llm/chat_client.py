"""
Chat-completion provider (OpenAI wire format).

Covers OpenAI, Anthropic's OpenAI-compatible endpoint, OpenRouter, LiteLLM
proxies and any other host exposing ``/chat/completions``.
"""

import json
import logging
from typing import Any, Optional

from game.models import DEFAULT_BASE_URL
from utils import is_reasoning_model
from .base_llm import BaseProvider
from .errors import EmptyResponse

logger = logging.getLogger(__name__)

# Hosts known to honour response_format={"type": "json_object"}
JSON_MODE_HOSTS = ("openai.com", "anthropic.com")


def _nonblank(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value.strip() else None


def _text_from_object(obj: dict) -> Optional[str]:
    """Content given as an object: {"text": ...}, {"text": {"value": ...}} or {"content": ...}."""
    text = obj.get("text")
    if _nonblank(text):
        return text
    if isinstance(text, dict) and _nonblank(text.get("value")):
        return text["value"]
    return _nonblank(obj.get("content"))


def _text_from_part(part: Any) -> str:
    """One entry of an array of typed content parts."""
    if not isinstance(part, dict):
        return part if isinstance(part, str) else ""
    text = part.get("text")
    if isinstance(text, str):
        return text
    if isinstance(text, dict):
        for key in ("value", "text"):
            if isinstance(text.get(key), str):
                return text[key]
    content = part.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, dict) and isinstance(content.get("value"), str):
        return content["value"]
    if isinstance(part.get("value"), str):
        return part["value"]
    return ""


def _arguments_text(args: Any) -> Optional[str]:
    if _nonblank(args):
        return args
    if isinstance(args, dict) and args:
        return json.dumps(args)
    return None


def extract_chat_text(data: Any) -> str:
    """
    Extract the assistant text from a chat-completion style response.

    Checks, in order: choice message content (string, object, or array of
    parts), legacy choice text, top-level content, refusals, tool-call and
    function-call arguments, then streaming delta content.

    Args:
        data: Decoded response body

    Returns:
        The reply text, or "" if none of the known shapes carry any
    """
    if isinstance(data, str):
        return data
    if not isinstance(data, dict):
        return ""

    choices = data.get("choices")
    choice = choices[0] if isinstance(choices, list) and choices else None
    if isinstance(choice, str):
        return choice
    if not isinstance(choice, dict):
        choice = {}
    message = choice.get("message") if isinstance(choice.get("message"), dict) else {}
    top_message = data.get("message") if isinstance(data.get("message"), dict) else {}

    content = message.get("content")
    if content is None:
        content = choice.get("text")
    if content is None:
        content = data.get("content")
    if content is None:
        content = top_message.get("content")

    if _nonblank(content):
        return content
    if isinstance(content, dict):
        text = _text_from_object(content)
        if text:
            return text
    if isinstance(content, list):
        joined = "".join(_text_from_part(part) for part in content)
        if joined.strip():
            return joined

    # Refusals and content filters
    refusal = _nonblank(message.get("refusal")) or _nonblank(choice.get("refusal"))
    if refusal:
        return refusal

    # Tool calling: the arguments often hold the JSON move
    tool_calls = message.get("tool_calls")
    if isinstance(tool_calls, list):
        for call in tool_calls:
            function = call.get("function") if isinstance(call, dict) else None
            if isinstance(function, dict):
                args = _arguments_text(function.get("arguments"))
                if args:
                    return args

    function_call = message.get("function_call")
    if isinstance(function_call, dict):
        args = _arguments_text(function_call.get("arguments"))
        if args:
            return args

    delta = choice.get("delta")
    if isinstance(delta, dict) and _nonblank(delta.get("content")):
        return delta["content"]

    return ""


class ChatCompletionProvider(BaseProvider):
    """Provider speaking the OpenAI chat-completion wire format."""

    tag = "chat"
    max_output_tokens = 500

    def completion_endpoint(self) -> str:
        return f"{self.config.base_url}/chat/completions"

    def auth_headers(self) -> dict:
        if not self.config.api_key:
            return {}
        return {"Authorization": f"Bearer {self.config.api_key.strip()}"}

    def supports_json_mode(self) -> bool:
        base_url = self.config.base_url
        return base_url == DEFAULT_BASE_URL or any(host in base_url for host in JSON_MODE_HOSTS)

    def build_payload(self, system_prompt: str, user_prompt: str) -> dict:
        payload = {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_output_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if self.supports_json_mode():
            payload["response_format"] = {"type": "json_object"}
        return payload

    def extract_text(self, data: Any) -> str:
        return extract_chat_text(data)

    def finish_reason(self, data: Any) -> Optional[str]:
        if not isinstance(data, dict):
            return None
        choices = data.get("choices")
        choice = choices[0] if isinstance(choices, list) and choices else None
        if not isinstance(choice, dict):
            return None
        reason = choice.get("finish_reason", choice.get("finishReason"))
        return reason if isinstance(reason, str) else None

    def record_usage(self, data: Any) -> None:
        usage = data.get("usage") if isinstance(data, dict) else None
        if isinstance(usage, dict):
            self.prompt_tokens += usage.get("prompt_tokens") or 0
            self.completion_tokens += usage.get("completion_tokens") or 0

    def empty_response_error(self, data: Any) -> EmptyResponse:
        finish_reason = self.finish_reason(data) or "unknown"
        top_keys = list(data.keys()) if isinstance(data, dict) else []
        message_keys = "none"
        if isinstance(data, dict) and isinstance(data.get("choices"), list) and data["choices"]:
            choice = data["choices"][0]
            if isinstance(choice, dict) and isinstance(choice.get("message"), dict):
                message_keys = ", ".join(choice["message"].keys()) or "none"

        message = (
            f"LLM returned an empty response. finish_reason={finish_reason}. "
            f"Top-level keys: {', '.join(top_keys)}. choice.message keys: {message_keys}."
        )
        if finish_reason == "length" and is_reasoning_model(self.model):
            message += (
                f" {self.model} hit the output token limit of {self.max_output_tokens}, most likely "
                "spent on internal reasoning tokens before any answer was written. Use a "
                "non-reasoning model or one with a lower reasoning effort."
            )
        else:
            message += " Please check your API key and model configuration."
        return EmptyResponse(message, finish_reason=finish_reason, observed_keys=top_keys)
