"""
Provider dispatch: pick the request shape for a base URL and run requests.
"""

import logging
from typing import Optional

import aiohttp

from game.models import ModelEntry, ProviderConfig
from settings import Settings, get_settings
from .base_llm import BaseProvider
from .chat_client import ChatCompletionProvider
from .gemini_client import GEMINI_HOST_PATTERN, GeminiProvider

logger = logging.getLogger(__name__)

PROVIDERS = {
    ChatCompletionProvider.tag: ChatCompletionProvider,
    GeminiProvider.tag: GeminiProvider,
}

OPENROUTER_HOST = "openrouter.ai"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def detect_provider(config: ProviderConfig) -> str:
    """Return the provider tag for a config ("gemini" or "chat")."""
    if config.provider:
        return config.provider
    if GEMINI_HOST_PATTERN in config.base_url:
        return GeminiProvider.tag
    return ChatCompletionProvider.tag


def _extra_headers(config: ProviderConfig, settings: Settings) -> dict:
    headers = {}
    if OPENROUTER_HOST in config.base_url:
        if settings.openrouter_referer:
            headers["HTTP-Referer"] = settings.openrouter_referer
        if settings.openrouter_title:
            headers["X-Title"] = settings.openrouter_title
    return headers


def create_provider(config: ProviderConfig, settings: Optional[Settings] = None) -> BaseProvider:
    """Instantiate the adapter matching the config's endpoint."""
    settings = settings or get_settings()
    provider_cls = PROVIDERS[detect_provider(config)]
    return provider_cls(
        config,
        timeout=settings.http_timeout,
        extra_headers=_extra_headers(config, settings),
    )


def completion_allowance(config: ProviderConfig) -> int:
    """Output tokens a request for this config may consume."""
    return PROVIDERS[detect_provider(config)].max_output_tokens


async def issue_completion(
    config: ProviderConfig,
    system_prompt: str,
    user_prompt: str,
    session: Optional[aiohttp.ClientSession] = None,
    settings: Optional[Settings] = None,
) -> str:
    """
    Send one completion request and return the normalized reply text.

    Args:
        config: Model, credentials and base URL
        system_prompt: System instructions
        user_prompt: Per-turn prompt
        session: Optional shared aiohttp session
        settings: Optional settings override

    Raises:
        ProviderAuthMissing, ProviderHttpError, EmptyResponse
    """
    async with create_provider(config, settings) as provider:
        if session is not None:
            provider.use_session(session)
        return await provider.complete(system_prompt, user_prompt)


async def list_models(
    config: ProviderConfig,
    session: Optional[aiohttp.ClientSession] = None,
    settings: Optional[Settings] = None,
) -> list[ModelEntry]:
    """
    List models available at a base URL.

    Raises:
        ProviderHttpError: If the listing call fails
    """
    async with create_provider(config, settings) as provider:
        if session is not None:
            provider.use_session(session)
        models = await provider.list_models()
    logger.info(f"Fetched {len(models)} models from {config.base_url}")
    return models
