"""
Data models for the LLM chess arena.
"""

from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from llm.errors import InvalidRequest
from utils import resolve_model_alias

DEFAULT_BASE_URL = "https://api.openai.com/v1"

Coordinate = Annotated[int, Field(ge=0, le=7)]
Square = tuple[Coordinate, Coordinate]
Color = Literal["white", "black"]
PieceType = Literal["pawn", "rook", "knight", "bishop", "queen", "king"]


class Move(BaseModel):
    """A move between two board squares, each given as (row, col)."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_: Square = Field(alias="from")
    to: Square

    @classmethod
    def of(cls, from_row: int, from_col: int, to_row: int, to_col: int) -> "Move":
        return cls(from_=(from_row, from_col), to=(to_row, to_col))

    def to_json(self) -> dict:
        """Convert to the ``{"from":[r,c],"to":[r,c]}`` wire form."""
        return self.model_dump(mode="json", by_alias=True)

    def __str__(self) -> str:
        return f"{list(self.from_)}->{list(self.to)}"


class Piece(BaseModel):
    """A chess piece on the board grid."""
    model_config = ConfigDict(frozen=True)

    type: PieceType
    color: Color


# Row 0 is black's back rank, row 7 is white's back rank.
BoardState = list[list[Optional[Piece]]]


def normalize_base_url(raw: Optional[str]) -> str:
    """Trim a base URL and drop one trailing slash; empty means the default."""
    if not raw:
        return DEFAULT_BASE_URL
    trimmed = raw.strip()
    if trimmed.endswith("/"):
        trimmed = trimmed[:-1]
    return trimmed or DEFAULT_BASE_URL


class ProviderConfig(BaseModel):
    """Credentials and routing for one text-generation backend."""
    model: str
    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    provider: Optional[Literal["chat", "gemini"]] = None  # Forces the request shape

    @field_validator("model", mode="before")
    @classmethod
    def _resolve_model(cls, value):
        return resolve_model_alias(value) if isinstance(value, str) else value

    @field_validator("base_url", mode="before")
    @classmethod
    def _normalize_base_url(cls, value):
        return normalize_base_url(value)


class TurnRequest(BaseModel):
    """One side's request for a move, as sent by the caller."""
    model_config = ConfigDict(populate_by_name=True)

    turn: Color
    legal_moves: list[Move] = Field(alias="legalMoves", min_length=1)
    board: BoardState
    history: list[str] = Field(default_factory=list)
    model: str = ""
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    base_url: Optional[str] = Field(default=None, alias="baseUrl")

    @field_validator("history", mode="before")
    @classmethod
    def _null_history(cls, value):
        return [] if value is None else value

    @field_validator("model", mode="before")
    @classmethod
    def _null_model(cls, value):
        return "" if value is None else value

    @field_validator("board")
    @classmethod
    def _check_board_shape(cls, board: BoardState) -> BoardState:
        if len(board) != 8 or any(len(row) != 8 for row in board):
            raise ValueError("board must be an 8x8 grid")
        return board

    @classmethod
    def from_payload(cls, payload) -> "TurnRequest":
        """
        Validate a decoded JSON payload.

        Raises:
            InvalidRequest: If the turn, legal moves or board are missing or malformed
        """
        if not isinstance(payload, dict):
            raise InvalidRequest("Invalid JSON payload")

        legal_moves = payload.get("legalMoves", payload.get("legal_moves"))
        if not payload.get("turn") or not isinstance(legal_moves, list) or not legal_moves:
            raise InvalidRequest("Missing turn or legalMoves")
        if not payload.get("board"):
            raise InvalidRequest("Missing board state")

        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()[:5]
            )
            raise InvalidRequest(f"Malformed turn request: {problems}") from e

    def provider_config(self) -> ProviderConfig:
        return ProviderConfig(model=self.model or "", api_key=self.api_key, base_url=self.base_url)


class TurnResult(BaseModel):
    """Outcome of one turn. Always carries a legal move."""
    move: Move
    attempts_used: int
    fallback: bool = False
    rate_limited: bool = False
    retry_after_ms: Optional[int] = None
    reason: Optional[str] = None   # requests, tokens, exhausted, provider_error, auth_missing
    note: Optional[str] = None

    def to_json(self) -> dict:
        """Convert to the camelCase response payload."""
        data = {"move": self.move.to_json(), "attemptsUsed": self.attempts_used}
        if self.fallback:
            data["fallback"] = True
            if self.rate_limited:
                data["rateLimited"] = True
                data["retryAfterMs"] = self.retry_after_ms
            data["note"] = self.note or ""
        return data


class ModelEntry(BaseModel):
    """A model offered by a provider's listing endpoint."""
    id: str
    label: Optional[str] = None
    provider: Optional[str] = None

    def to_json(self) -> dict:
        return self.model_dump(exclude_none=True)


class PlayerConfig(BaseModel):
    """Configuration for one side of a match."""
    player_id: str              # e.g. "gpt-4o", "gemini-2.5-flash"
    model_name: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    def provider_config(self) -> ProviderConfig:
        return ProviderConfig(model=self.model_name, api_key=self.api_key, base_url=self.base_url)


class MatchResult(BaseModel):
    """Result of a single match between two models."""
    game_id: str
    white_id: str
    black_id: str
    winner: str                 # "white", "black", "draw", "none"
    termination: str            # "checkmate", "stalemate", "max_moves", "provider_error", ...
    moves: int                  # Total half-moves (plies)
    fallback_moves_white: int
    fallback_moves_black: int
    attempts_white: int         # Provider attempts used by white across all turns
    attempts_black: int
    error: Optional[str] = None
    created_at: str             # ISO timestamp

    def to_json(self) -> dict:
        """Convert to JSON-serializable dict."""
        return self.model_dump()

    @classmethod
    def from_json(cls, data: dict) -> "MatchResult":
        """Create from JSON dict."""
        return cls(**data)
