# LLM provider adapters, prompts, move parsing and rate limiting
from .errors import (
    EmptyResponse,
    InvalidRequest,
    ProviderAuthMissing,
    ProviderError,
    ProviderHttpError,
)

__all__ = [
    "EmptyResponse",
    "InvalidRequest",
    "ProviderAuthMissing",
    "ProviderError",
    "ProviderHttpError",
]
