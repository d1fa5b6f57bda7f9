"""
Fixed-window admission control for outbound LLM requests.

Buckets are keyed by "<client identity>:<model>" and live for the lifetime of
the process. A bucket resets wholesale once its window has elapsed. This is
advisory: a denial tells the caller to skip the network call, it never blocks.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

DEFAULT_WINDOW_SECONDS = 60.0
CHARS_PER_TOKEN = 4


@dataclass
class _Bucket:
    window_start: float
    requests: int = 0
    tokens: int = 0


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of an admission check."""
    allowed: bool
    retry_after: float = 0.0        # Seconds until the window rolls over
    reason: Optional[str] = None    # "requests" or "tokens" when denied

    @property
    def retry_after_ms(self) -> int:
        return int(math.ceil(self.retry_after * 1000))


def estimate_tokens_for_text(text: str) -> int:
    """Rough heuristic: ~4 characters per token, at least 1."""
    chars = len(text) if isinstance(text, str) else 0
    return max(1, math.ceil(chars / CHARS_PER_TOKEN))


def estimate_tokens_for_messages(messages: Iterable[dict]) -> int:
    """Sum the token estimate over chat messages (each counts at least 1)."""
    return sum(estimate_tokens_for_text(msg.get("content", "")) for msg in messages)


def estimate_request_tokens(messages: Iterable[dict], completion_allowance: int) -> int:
    """Prompt estimate plus a fixed allowance for the expected completion."""
    return estimate_tokens_for_messages(messages) + max(0, int(completion_allowance))


class RateLimiter:
    """
    Per-key fixed-window request and token budget tracker.

    All reads and writes of a key's bucket happen under one lock, so the
    reset-then-increment sequence is atomic for concurrent callers.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            clock: Monotonic time source in seconds (injectable for tests)
        """
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def admit(
        self,
        key: str,
        estimated_tokens: float,
        max_requests_per_window: int,
        max_tokens_per_window: int,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ) -> RateLimitDecision:
        """
        Try to admit one request costing ``estimated_tokens``.

        A request-ceiling denial consumes nothing. A token-ceiling denial still
        counts the request against the window.

        Returns:
            RateLimitDecision (allowed, or denied with retry_after and reason)
        """
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket(window_start=now)
                self._buckets[key] = bucket

            if now - bucket.window_start >= window_seconds:
                bucket.window_start = now
                bucket.requests = 0
                bucket.tokens = 0

            retry_after = max(0.0, window_seconds - (now - bucket.window_start))

            next_requests = bucket.requests + 1
            if next_requests > max_requests_per_window:
                return RateLimitDecision(allowed=False, retry_after=retry_after, reason="requests")
            bucket.requests = next_requests

            tokens = max(1, math.floor(estimated_tokens))
            next_tokens = bucket.tokens + tokens
            if next_tokens > max_tokens_per_window:
                return RateLimitDecision(allowed=False, retry_after=retry_after, reason="tokens")
            bucket.tokens = next_tokens

            return RateLimitDecision(allowed=True)

    def reset(self) -> None:
        """Forget every bucket."""
        with self._lock:
            self._buckets.clear()


_DEFAULT_LIMITER = RateLimiter()


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide limiter shared by every turn."""
    return _DEFAULT_LIMITER
