"""Tests for the provider adapters: response extraction, errors, and HTTP exchange."""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from game.models import ProviderConfig
from llm.adapter import completion_allowance, create_provider, detect_provider, issue_completion, list_models
from llm.base_llm import (
    ZERO_QUOTA_HINT,
    describe_embedded_error,
    describe_http_error,
    extract_error_message,
    parse_model_listing,
)
from llm.chat_client import ChatCompletionProvider, extract_chat_text
from llm.errors import EmptyResponse, ProviderAuthMissing, ProviderHttpError
from llm.gemini_client import GeminiProvider, extract_gemini_text
from settings import Settings

MOVE = '{"from":[6,4],"to":[4,4]}'


class TestChatExtraction:
    def test_message_content(self):
        assert extract_chat_text({"choices": [{"message": {"content": MOVE}}]}) == MOVE

    def test_content_parts(self):
        data = {"choices": [{"message": {"content": [
            {"type": "text", "text": '{"from":[6,4],'},
            {"type": "text", "text": {"value": '"to":[4,4]}'}},
        ]}}]}
        assert extract_chat_text(data) == MOVE

    def test_content_object(self):
        data = {"choices": [{"message": {"content": {"text": {"value": MOVE}}}}]}
        assert extract_chat_text(data) == MOVE

    def test_legacy_choice_text(self):
        assert extract_chat_text({"choices": [{"text": MOVE}]}) == MOVE

    def test_top_level_content(self):
        assert extract_chat_text({"content": MOVE}) == MOVE
        assert extract_chat_text({"message": {"content": MOVE}}) == MOVE

    def test_tool_call_arguments(self):
        data = {"choices": [{"message": {"content": None, "tool_calls": [
            {"function": {"name": "move", "arguments": {"from": [6, 4], "to": [4, 4]}}},
        ]}}]}
        assert extract_chat_text(data) == '{"from": [6, 4], "to": [4, 4]}'

    def test_function_call_arguments(self):
        data = {"choices": [{"message": {"function_call": {"arguments": MOVE}}}]}
        assert extract_chat_text(data) == MOVE

    def test_refusal(self):
        data = {"choices": [{"message": {"content": "", "refusal": "I cannot help"}}]}
        assert extract_chat_text(data) == "I cannot help"

    def test_delta(self):
        assert extract_chat_text({"choices": [{"delta": {"content": MOVE}}]}) == MOVE

    def test_raw_string_body(self):
        assert extract_chat_text(MOVE) == MOVE

    def test_nothing(self):
        assert extract_chat_text({"choices": [{"message": {"content": "  "}}]}) == ""
        assert extract_chat_text([1, 2]) == ""


class TestGeminiExtraction:
    def test_first_text_part(self):
        data = {"candidates": [{"content": {"parts": [{"thought": True}, {"text": MOVE}]}}]}
        assert extract_gemini_text(data) == MOVE

    def test_max_tokens_scan(self):
        data = {"candidates": [{
            "finishReason": "MAX_TOKENS",
            "content": {"parts": [{"text": ""}, {"note": 'text {"from":[6,4],"to":[4,4]}'}]},
        }]}
        assert extract_gemini_text(data) == MOVE

    def test_empty(self):
        assert extract_gemini_text({"candidates": []}) == ""
        assert extract_gemini_text("nope") == ""


class TestErrorMessages:
    def test_structured_error(self):
        body = '{"error": {"message": "Invalid key", "status": "UNAUTHENTICATED"}}'
        assert extract_error_message(body, 401) == ("Invalid key", "UNAUTHENTICATED")

    def test_plain_message_field(self):
        assert extract_error_message('{"message": "nope"}', 400) == ("nope", None)

    def test_raw_body_snippet(self):
        assert extract_error_message("Bad Gateway" * 100, 502)[0] == ("Bad Gateway" * 100)[:500]

    def test_empty_body(self):
        assert extract_error_message("", 503)[0] == "LLM API call failed with status 503."

    def test_rate_limit_hint_with_retry_after(self):
        message = describe_http_error("gpt-4o", 429, '{"error": {"message": "Slow down"}}', "12")
        assert message == "Slow down Please wait 12 seconds before trying again."

    def test_rate_limit_hint_without_retry_after(self):
        message = describe_http_error("gpt-4o", 429, '{"error": "Slow down"}')
        assert message.startswith("Slow down This usually means")

    def test_zero_quota_rewrite(self):
        body = '{"error": {"message": "Quota exceeded, limit: 0", "status": "RESOURCE_EXHAUSTED"}}'
        assert describe_http_error("gemini-3-pro-preview", 429, body) == ZERO_QUOTA_HINT

    def test_zero_quota_ignored_for_other_models(self):
        body = '{"error": {"message": "Quota exceeded, limit: 0", "status": "RESOURCE_EXHAUSTED"}}'
        assert describe_http_error("gemini-2.5-flash", 400, body) == "Quota exceeded, limit: 0"

    def test_embedded_error(self):
        assert describe_embedded_error("gpt-4o", {"message": "boom"}) == "LLM API error: boom"
        assert describe_embedded_error("gpt-4o", "boom") == "LLM API error: boom"


class TestEmptyResponses:
    def test_chat_reasoning_hint(self):
        provider = ChatCompletionProvider(ProviderConfig(model="o3-mini", api_key="k"))
        error = provider.empty_response_error(
            {"choices": [{"message": {"content": ""}, "finish_reason": "length"}], "usage": {}}
        )
        assert isinstance(error, EmptyResponse)
        assert error.finish_reason == "length"
        assert "choice.message keys: content" in error.message
        assert "reasoning tokens" in error.message
        assert error.response_status == 422

    def test_chat_generic_hint(self):
        provider = ChatCompletionProvider(ProviderConfig(model="gpt-4o", api_key="k"))
        error = provider.empty_response_error({"id": "x"})
        assert "finish_reason=unknown" in error.message
        assert "Please check your API key" in error.message

    def test_gemini_thinking_tokens(self):
        provider = GeminiProvider(ProviderConfig(model="gemini-2.5-flash", api_key="k"))
        error = provider.empty_response_error({
            "candidates": [{"finishReason": "MAX_TOKENS", "content": {}}],
            "usageMetadata": {"thoughtsTokenCount": 8000, "totalTokenCount": 8200},
        })
        assert "8000" in error.message
        assert error.to_payload()["debug"].startswith("Finish reason: MAX_TOKENS, Thinking tokens: 8000")


class TestModelListing:
    def test_openai_style(self):
        data = {"data": [
            {"id": "zeta", "owned_by": "acme"},
            {"id": "openai/gpt-4o", "name": "GPT-4o"},
            {"id": "zeta"},
            {"nope": True},
        ]}
        models = parse_model_listing(data)
        assert [m.id for m in models] == ["openai/gpt-4o", "zeta"]
        assert models[0].label == "GPT-4o"
        assert models[0].provider == "openai"
        assert models[1].provider == "acme"

    def test_gemini_style(self):
        provider = GeminiProvider(ProviderConfig(model="x", api_key="k"))
        data = {"models": [{"name": "models/gemini-2.5-flash", "displayName": "Gemini 2.5 Flash"}]}
        models = parse_model_listing(data, provider.normalize_model_id)
        assert models[0].id == "gemini-2.5-flash"
        assert models[0].label == "Gemini 2.5 Flash"

    def test_unknown_shape(self):
        assert parse_model_listing({"items": []}) == []


class TestDispatch:
    def test_detect_by_url(self):
        gemini = ProviderConfig(model="gemini-2.5-flash", base_url="https://generativelanguage.googleapis.com/v1beta/")
        assert detect_provider(gemini) == "gemini"
        assert gemini.base_url == "https://generativelanguage.googleapis.com/v1beta"
        assert detect_provider(ProviderConfig(model="gpt-4o")) == "chat"

    def test_forced_provider(self):
        config = ProviderConfig(model="m", base_url="http://localhost:9000", provider="gemini")
        assert detect_provider(config) == "gemini"
        assert completion_allowance(config) == 8192

    def test_model_alias(self):
        assert ProviderConfig(model=" gemini-3-flash ").model == "gemini-2.5-flash"

    def test_openrouter_headers(self):
        config = ProviderConfig(model="m", api_key="k", base_url="https://openrouter.ai/api/v1")
        settings = Settings(openrouter_referer="http://localhost", openrouter_title="Arena")
        provider = create_provider(config, settings)
        assert provider.headers()["HTTP-Referer"] == "http://localhost"
        assert provider.headers()["X-Title"] == "Arena"
        assert provider.headers()["Authorization"] == "Bearer k"

    def test_json_mode_only_for_known_hosts(self):
        openai = ChatCompletionProvider(ProviderConfig(model="gpt-4o", api_key="k"))
        assert openai.build_payload("s", "u")["response_format"] == {"type": "json_object"}
        other = ChatCompletionProvider(ProviderConfig(model="m", api_key="k", base_url="http://localhost:4000"))
        assert "response_format" not in other.build_payload("s", "u")


class FakeBackend:
    """Tiny HTTP backend recording every request it receives."""

    def __init__(self):
        self.requests = []
        self.status = 200
        self.body = None
        self.headers = {}

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self.handle)
        return app

    async def handle(self, request: web.Request) -> web.Response:
        payload = await request.json() if request.can_read_body else None
        self.requests.append({
            "method": request.method,
            "path": request.path,
            "headers": dict(request.headers),
            "json": payload,
        })
        if isinstance(self.body, bytes):
            return web.Response(status=self.status, body=self.body,
                                content_type="application/json", headers=self.headers)
        if isinstance(self.body, str):
            return web.Response(status=self.status, text=self.body, headers=self.headers)
        return web.json_response(self.body, status=self.status, headers=self.headers)


@pytest.fixture
async def backend():
    fake = FakeBackend()
    async with TestServer(fake.app()) as server:
        fake.base_url = str(server.make_url("/v1"))
        yield fake


class TestHttpExchange:
    @pytest.mark.asyncio
    async def test_chat_completion(self, backend):
        backend.body = {"choices": [{"message": {"content": MOVE}, "finish_reason": "stop"}],
                        "usage": {"prompt_tokens": 10, "completion_tokens": 5}}
        config = ProviderConfig(model="gpt-4o", api_key="sk-1", base_url=backend.base_url)

        text = await issue_completion(config, "system", "user", settings=Settings())

        assert text == MOVE
        sent = backend.requests[0]
        assert sent["path"] == "/v1/chat/completions"
        assert sent["headers"]["Authorization"] == "Bearer sk-1"
        assert sent["json"]["max_tokens"] == 500
        assert sent["json"]["messages"][0] == {"role": "system", "content": "system"}

    @pytest.mark.asyncio
    async def test_gemini_generate_content(self, backend):
        backend.body = {"candidates": [{"content": {"parts": [{"text": MOVE}]}, "finishReason": "STOP"}]}
        config = ProviderConfig(model="gemini-2.5-flash", api_key="g-1",
                                base_url=backend.base_url, provider="gemini")

        text = await issue_completion(config, "system", "user", settings=Settings())

        assert text == MOVE
        sent = backend.requests[0]
        assert sent["path"] == "/v1/models/gemini-2.5-flash:generateContent"
        assert sent["headers"]["x-goog-api-key"] == "g-1"
        assert "Authorization" not in sent["headers"]
        assert sent["json"]["contents"][0]["parts"][0]["text"] == "system\n\nuser"
        assert sent["json"]["generationConfig"]["maxOutputTokens"] == 8192

    @pytest.mark.asyncio
    async def test_rate_limited_status(self, backend):
        backend.status = 429
        backend.body = {"error": {"message": "Too many requests"}}
        backend.headers = {"Retry-After": "3"}
        config = ProviderConfig(model="gpt-4o", api_key="sk-1", base_url=backend.base_url)

        with pytest.raises(ProviderHttpError) as exc_info:
            await issue_completion(config, "s", "u", settings=Settings())

        error = exc_info.value
        assert error.status_code == 429
        assert error.is_rate_limit
        assert error.message == "Too many requests Please wait 3 seconds before trying again."
        assert error.to_payload() == {"error": error.message, "statusCode": 429, "isRateLimit": True}

    @pytest.mark.asyncio
    async def test_server_error(self, backend):
        backend.status = 500
        backend.body = "upstream exploded"
        config = ProviderConfig(model="gpt-4o", api_key="sk-1", base_url=backend.base_url)

        with pytest.raises(ProviderHttpError) as exc_info:
            await issue_completion(config, "s", "u", settings=Settings())
        assert exc_info.value.message == "upstream exploded"
        assert exc_info.value.response_status == 500
        assert not exc_info.value.is_rate_limit

    @pytest.mark.asyncio
    async def test_error_inside_success_body(self, backend):
        backend.body = {"error": {"message": "model overloaded"}}
        config = ProviderConfig(model="gpt-4o", api_key="sk-1", base_url=backend.base_url)

        with pytest.raises(ProviderHttpError) as exc_info:
            await issue_completion(config, "s", "u", settings=Settings())
        assert exc_info.value.message == "LLM API error: model overloaded"
        assert exc_info.value.response_status == 422

    @pytest.mark.asyncio
    async def test_invalid_utf8_body(self, backend):
        backend.body = b'{"choices":[{"message":{"content":"\xff\xfe"}}]}'
        config = ProviderConfig(model="gpt-4o", api_key="sk-1", base_url=backend.base_url)

        text = await issue_completion(config, "s", "u", settings=Settings())

        assert text == "\ufffd\ufffd"

    @pytest.mark.asyncio
    async def test_invalid_utf8_error_body(self, backend):
        backend.status = 502
        backend.body = b"\xffbad gateway"
        config = ProviderConfig(model="gpt-4o", api_key="sk-1", base_url=backend.base_url)

        with pytest.raises(ProviderHttpError) as exc_info:
            await issue_completion(config, "s", "u", settings=Settings())
        assert exc_info.value.message == "\ufffdbad gateway"
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_empty_reply(self, backend):
        backend.body = {"choices": [{"message": {"content": ""}, "finish_reason": "stop"}]}
        config = ProviderConfig(model="gpt-4o", api_key="sk-1", base_url=backend.base_url)

        with pytest.raises(EmptyResponse):
            await issue_completion(config, "s", "u", settings=Settings())

    @pytest.mark.asyncio
    async def test_missing_credentials_make_no_call(self, backend):
        config = ProviderConfig(model="gpt-4o", api_key="  ", base_url=backend.base_url)

        with pytest.raises(ProviderAuthMissing):
            await issue_completion(config, "s", "u", settings=Settings())
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_unreachable_host(self):
        config = ProviderConfig(model="gpt-4o", api_key="sk-1", base_url="http://127.0.0.1:1/v1")

        with pytest.raises(ProviderHttpError) as exc_info:
            await issue_completion(config, "s", "u", settings=Settings(http_timeout=5))
        assert exc_info.value.status_code is None
        assert exc_info.value.message.startswith("Could not reach LLM API at http://127.0.0.1:1/v1/chat/completions")

    @pytest.mark.asyncio
    async def test_list_models(self, backend):
        backend.body = {"data": [{"id": "b-model"}, {"id": "a-model", "owned_by": "acme"}]}
        config = ProviderConfig(model="", api_key="sk-1", base_url=backend.base_url)

        models = await list_models(config, settings=Settings())

        assert [m.id for m in models] == ["a-model", "b-model"]
        assert backend.requests[0]["method"] == "GET"
        assert backend.requests[0]["path"] == "/v1/models"
