# Game data models. Import the orchestrator and match runner from their modules.
from .models import (
    Move,
    Piece,
    BoardState,
    ProviderConfig,
    TurnRequest,
    TurnResult,
    ModelEntry,
    PlayerConfig,
    MatchResult,
)

__all__ = [
    "Move",
    "Piece",
    "BoardState",
    "ProviderConfig",
    "TurnRequest",
    "TurnResult",
    "ModelEntry",
    "PlayerConfig",
    "MatchResult",
]
