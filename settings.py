"""
Runtime settings for the LLM chess arena.

Values come from an optional YAML file (config/arena.yaml, or the path in
LLM_ARENA_CONFIG). Environment variables override the file.
"""

import logging
import math
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent / "config" / "arena.yaml"

# Admission ceilings per minute for each rate-limit profile
RATE_LIMIT_PROFILES = {
    "smooth": {"max_requests_per_minute": 80, "max_tokens_per_minute": 60_000},
    "cost-controlled": {"max_requests_per_minute": 60, "max_tokens_per_minute": 25_000},
}
DEFAULT_PROFILE = "smooth"


class RateLimitSettings(BaseModel):
    """Resolved admission-control ceilings."""
    profile: str = DEFAULT_PROFILE
    max_requests_per_minute: int = 80
    max_tokens_per_minute: int = 60_000
    window_seconds: float = 60.0


class Settings(BaseModel):
    """Process-wide settings."""
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    http_timeout: float = 120.0         # Seconds per provider request
    openrouter_api_key: Optional[str] = None
    openrouter_referer: Optional[str] = None
    openrouter_title: Optional[str] = None
    players: dict = Field(default_factory=dict)   # "white"/"black" player blocks for matches
    max_moves: int = 200


def clamp_int(value, fallback: int) -> int:
    """Floor a numeric override to an int >= 1; unusable values give the fallback."""
    if value is None or isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return max(1, math.floor(number))


def normalize_profile(raw: Optional[str]) -> str:
    """Map a profile selector to a known profile name (default: smooth)."""
    profile = (raw or "").strip().lower()
    if profile in ("cost-controlled", "cost_controlled"):
        return "cost-controlled"
    return DEFAULT_PROFILE


def resolve_rate_limit(profile: Optional[str] = None, max_rpm=None, max_tpm=None) -> RateLimitSettings:
    """
    Resolve rate-limit ceilings from a profile plus optional numeric overrides.

    Args:
        profile: "smooth" or "cost-controlled" (anything else means smooth)
        max_rpm: Optional requests-per-minute override
        max_tpm: Optional tokens-per-minute override

    Returns:
        RateLimitSettings with every ceiling >= 1
    """
    name = normalize_profile(profile)
    defaults = RATE_LIMIT_PROFILES[name]
    return RateLimitSettings(
        profile=name,
        max_requests_per_minute=clamp_int(max_rpm, defaults["max_requests_per_minute"]),
        max_tokens_per_minute=clamp_int(max_tpm, defaults["max_tokens_per_minute"]),
    )


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {path}: expected a mapping")
        return {}
    return data


def load_settings(config_path: Optional[Path] = None, environ: Optional[dict] = None) -> Settings:
    """
    Load settings from YAML and the environment.

    Args:
        config_path: YAML file to read (defaults to LLM_ARENA_CONFIG or config/arena.yaml)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Settings instance
    """
    env = os.environ if environ is None else environ
    path = Path(config_path or env.get("LLM_ARENA_CONFIG") or CONFIG_PATH)
    config = _load_yaml(path)

    rate_cfg = config.get("rate_limit") or {}
    rate_limit = resolve_rate_limit(
        profile=env.get("LLM_ARENA_RATE_LIMIT_PROFILE", rate_cfg.get("profile")),
        max_rpm=env.get("LLM_ARENA_MAX_RPM", rate_cfg.get("max_rpm")),
        max_tpm=env.get("LLM_ARENA_MAX_TPM", rate_cfg.get("max_tpm")),
    )

    openrouter_cfg = config.get("openrouter") or {}
    timeout = env.get("LLM_ARENA_HTTP_TIMEOUT", config.get("http_timeout"))

    return Settings(
        rate_limit=rate_limit,
        http_timeout=float(clamp_int(timeout, 120)),
        openrouter_api_key=(env.get("OPENROUTER_API_KEY") or openrouter_cfg.get("api_key") or "").strip() or None,
        openrouter_referer=(env.get("OPENROUTER_HTTP_REFERER") or openrouter_cfg.get("referer") or "").strip() or None,
        openrouter_title=(env.get("OPENROUTER_APP_TITLE") or openrouter_cfg.get("title") or "").strip() or None,
        players=config.get("players") or {},
        max_moves=clamp_int(config.get("max_moves"), 200),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings (loaded once)."""
    return load_settings()
