"""
Turn orchestrator: obtains one validated move from an LLM per turn.

Each turn is a small state machine::

    Attempting(n) -> Attempting(n + 1)   reply unparseable or illegal, n < max
    Attempting(n) -> Done(move)          reply parsed to a legal move
    Attempting(n) -> Fallback(move)      rate limited, attempts exhausted,
                                         or provider failure under DEGRADE

Transitions are plain functions so each can be tested without a network.
Both terminal states carry a legal move.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence, Union

import aiohttp

from engines.random_engine import RandomEngine
from llm.adapter import completion_allowance, issue_completion
from llm.errors import InvalidRequest, ProviderAuthMissing, ProviderError
from llm.move_parser import parse_move
from llm.prompts import AttemptRecord, build_messages
from llm.rate_limit import RateLimitDecision, RateLimiter, estimate_request_tokens, get_rate_limiter
from settings import RateLimitSettings, Settings, get_settings
from .models import Move, ProviderConfig, TurnRequest, TurnResult

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5

CompletionFn = Callable[[ProviderConfig, str, str], Awaitable[str]]


class TurnPolicy(str, Enum):
    """How provider failures are handled."""
    STRICT = "strict"       # Surface provider errors to the caller
    DEGRADE = "degrade"     # Never stop the match: fall back to a random move


@dataclass(frozen=True)
class Attempting:
    attempt: int
    previous: Optional[AttemptRecord] = None


@dataclass(frozen=True)
class Done:
    move: Move
    attempts: int


@dataclass(frozen=True)
class Fallback:
    move: Move
    attempts: int
    reason: str             # requests, tokens, exhausted, provider_error, auth_missing
    note: str
    retry_after_ms: Optional[int] = None

    @property
    def rate_limited(self) -> bool:
        return self.reason in ("requests", "tokens")


TurnState = Union[Attempting, Done, Fallback]


def on_rate_limited(state: Attempting, decision: RateLimitDecision,
                    legal_moves: Sequence[Move], engine: RandomEngine) -> Fallback:
    """Admission was denied before the call for this attempt."""
    return Fallback(
        move=engine.select_move(legal_moves),
        attempts=state.attempt - 1,
        reason=decision.reason or "requests",
        note=(
            f"Local rate limit reached ({decision.reason} budget); played a random legal move. "
            f"Retry after {decision.retry_after:.1f}s."
        ),
        retry_after_ms=decision.retry_after_ms,
    )


def on_provider_error(state: Attempting, error: ProviderError, policy: TurnPolicy,
                      legal_moves: Sequence[Move], engine: RandomEngine) -> Fallback:
    """
    The provider call failed.

    Raises:
        ProviderError: Re-raised unchanged under the STRICT policy
    """
    if policy == TurnPolicy.STRICT:
        raise error
    reason = "auth_missing" if isinstance(error, ProviderAuthMissing) else "provider_error"
    return Fallback(
        move=engine.select_move(legal_moves),
        attempts=state.attempt,
        reason=reason,
        note=f"LLM request failed ({error.message}); played a random legal move.",
    )


def on_response(state: Attempting, raw_text: str, legal_moves: Sequence[Move],
                engine: RandomEngine, max_attempts: int = MAX_ATTEMPTS) -> TurnState:
    """Parse and validate a reply, then retry, finish, or fall back."""
    move = parse_move(raw_text)
    if move is not None and move in set(legal_moves):
        return Done(move=move, attempts=state.attempt)

    snippet = (raw_text or "")[:200]
    if move is None:
        problem = "unparseable"
        logger.warning(f"Attempt {state.attempt}: could not parse a move from reply: {snippet!r}")
    else:
        problem = "illegal"
        logger.warning(f"Attempt {state.attempt}: suggested move {move} is not legal")

    if state.attempt >= max_attempts:
        return Fallback(
            move=engine.select_move(legal_moves),
            attempts=state.attempt,
            reason="exhausted",
            note=f"No legal move after {state.attempt} attempts; played a random legal move.",
        )
    return Attempting(
        attempt=state.attempt + 1,
        previous=AttemptRecord(attempt_number=state.attempt, raw_response=raw_text or "", problem=problem),
    )


def to_result(state: Union[Done, Fallback]) -> TurnResult:
    if isinstance(state, Done):
        return TurnResult(move=state.move, attempts_used=state.attempts)
    return TurnResult(
        move=state.move,
        attempts_used=state.attempts,
        fallback=True,
        rate_limited=state.rate_limited,
        retry_after_ms=state.retry_after_ms,
        reason=state.reason,
        note=state.note,
    )


class TurnOrchestrator:
    """
    Drives the retry loop for one side's turn.

    Under either policy, parse failures and illegal suggestions are retried
    with feedback, and rate-limit denials and exhausted attempts fall back
    to a random legal move.
    """

    def __init__(
        self,
        policy: TurnPolicy = TurnPolicy.DEGRADE,
        rate_limiter: Optional[RateLimiter] = None,
        rate_limit: Optional[RateLimitSettings] = None,
        completion_fn: Optional[CompletionFn] = None,
        engine: Optional[RandomEngine] = None,
        max_attempts: int = MAX_ATTEMPTS,
        settings: Optional[Settings] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            policy: STRICT surfaces provider errors, DEGRADE falls back instead
            rate_limiter: Admission tracker (defaults to the process-wide one)
            rate_limit: Admission ceilings (defaults to the configured profile)
            completion_fn: async (config, system_prompt, user_prompt) -> text
            engine: Fallback move chooser
            max_attempts: Provider calls allowed per turn
            settings: Settings override
            session: Optional shared aiohttp session for provider calls
        """
        self.policy = TurnPolicy(policy)
        self.settings = settings or get_settings()
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.rate_limit = rate_limit or self.settings.rate_limit
        self.completion_fn = completion_fn or self._issue_completion
        self.engine = engine or RandomEngine()
        self.max_attempts = max_attempts
        self.session = session

    async def _issue_completion(self, config: ProviderConfig, system_prompt: str, user_prompt: str) -> str:
        return await issue_completion(config, system_prompt, user_prompt,
                                      session=self.session, settings=self.settings)

    def _admit(self, key: str, tokens: int) -> RateLimitDecision:
        return self.rate_limiter.admit(
            key,
            tokens,
            self.rate_limit.max_requests_per_minute,
            self.rate_limit.max_tokens_per_minute,
            self.rate_limit.window_seconds,
        )

    async def select_move(self, request: TurnRequest, client_id: str = "local") -> TurnResult:
        """
        Select a move for the side to move.

        Args:
            request: Validated turn request
            client_id: Identity of the caller, used to key rate limiting

        Returns:
            TurnResult whose move is always one of request.legal_moves

        Raises:
            InvalidRequest: If there are no legal moves
            ProviderError: Under STRICT, if the provider call fails or credentials are missing
        """
        legal_moves = list(request.legal_moves)
        if not legal_moves:
            raise InvalidRequest("Missing turn or legalMoves")

        config = request.provider_config()
        state: TurnState = Attempting(attempt=1)

        if not (config.api_key or "").strip() or not config.model:
            state = on_provider_error(state, ProviderAuthMissing(), self.policy, legal_moves, self.engine)
            logger.warning(f"{request.turn}: {state.note}")
            return to_result(state)

        key = f"{client_id}:{config.model}"
        allowance = completion_allowance(config)

        while isinstance(state, Attempting):
            messages = build_messages(request.turn, request.board, legal_moves,
                                      request.history, state.previous)
            decision = self._admit(key, estimate_request_tokens(messages, allowance))
            if not decision.allowed:
                state = on_rate_limited(state, decision, legal_moves, self.engine)
                break

            try:
                raw_text = await self.completion_fn(config, messages[0]["content"], messages[1]["content"])
            except ProviderError as e:
                logger.warning(f"{request.turn} ({config.model}) attempt {state.attempt}: {e.message}")
                state = on_provider_error(state, e, self.policy, legal_moves, self.engine)
                break

            state = on_response(state, raw_text, legal_moves, self.engine, self.max_attempts)

        if isinstance(state, Fallback):
            logger.warning(f"{request.turn} ({config.model}): {state.note}")
        else:
            logger.info(f"{request.turn} ({config.model}) played {state.move} after {state.attempts} attempt(s)")
        return to_result(state)
