"""Shared utility functions."""

from typing import Optional

# Shorthand names accepted from callers, mapped to the identifiers providers expect.
MODEL_ALIASES = {
    "gemini-3-pro": "gemini-3-pro-preview",
    "gemini-3-flash": "gemini-2.5-flash",
}


def resolve_model_alias(model: Optional[str]) -> Optional[str]:
    """Trim a model identifier and resolve known shorthand aliases."""
    if not model:
        return model
    trimmed = model.strip()
    return MODEL_ALIASES.get(trimmed, trimmed)


def is_reasoning_model(model: str) -> bool:
    """
    Determine if a model spends hidden reasoning tokens, based on naming conventions.

    Used to explain empty replies that were cut off by the output token cap.

    NOTE: This list must be manually updated as new reasoning models are released.
    """
    if not model:
        return False

    model_lower = model.lower()
    # Drop an "org/" prefix so "openai/o3-mini" is treated like "o3-mini"
    short = model_lower.rsplit("/", 1)[-1]

    # Check for OpenAI reasoning models (o1, o3, o4-mini) at word boundaries
    # to avoid matching version strings like "v0.1"
    if short in ("o1", "o3") or short.startswith("o1-") or \
       short.startswith("o3-") or short.startswith("o4-mini"):
        return True

    reasoning_indicators = [
        "-r1",          # DeepSeek R1 models
        "gemini-3",     # Gemini 3.x models
        "gemini-2.5",   # Gemini 2.5 models think by default
        "grok-4",       # Grok 4.x models
        "-thinking",    # Explicit thinking suffix
        "gpt-5",
    ]
    return any(indicator in model_lower for indicator in reasoning_indicators)
