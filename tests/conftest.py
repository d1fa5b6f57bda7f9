"""Shared fixtures for the arena tests."""

import chess
import pytest

from game.board_adapter import board_to_state, legal_moves_for
from game.models import Move, TurnRequest
from llm.rate_limit import get_rate_limiter
from settings import get_settings



@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Keep tests away from the developer's config file and environment."""
    monkeypatch.setenv("LLM_ARENA_CONFIG", str(tmp_path / "missing.yaml"))
    for name in (
        "LLM_ARENA_RATE_LIMIT_PROFILE",
        "LLM_ARENA_MAX_RPM",
        "LLM_ARENA_MAX_TPM",
        "LLM_ARENA_HTTP_TIMEOUT",
        "OPENROUTER_API_KEY",
        "OPENROUTER_HTTP_REFERER",
        "OPENROUTER_APP_TITLE",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    get_rate_limiter().reset()
    yield
    get_settings.cache_clear()
    get_rate_limiter().reset()


@pytest.fixture
def start_board():
    return board_to_state(chess.Board())


@pytest.fixture
def pawn_moves():
    """The two e-pawn pushes from the starting position."""
    return [Move.of(6, 4, 5, 4), Move.of(6, 4, 4, 4)]


@pytest.fixture
def turn_request(start_board, pawn_moves):
    return TurnRequest(
        turn="white",
        legal_moves=pawn_moves,
        board=start_board,
        history=[],
        model="gpt-4o",
        api_key="sk-test",
        base_url="https://api.openai.com/v1",
    )


@pytest.fixture
def start_legal_moves():
    return legal_moves_for(chess.Board())
