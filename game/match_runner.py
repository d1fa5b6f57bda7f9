"""
Match runner that plays a chess game between two LLM backends.

Handles:
- Turn-based play through the turn orchestrator
- Stopping the match when a strict turn fails
- Game termination conditions
- PGN generation
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple

import chess
import chess.pgn

from llm.errors import ProviderError
from .board_adapter import (
    board_to_state,
    describe_move,
    legal_moves_for,
    side_to_move,
    to_chess_move,
)
from .models import MatchResult, PlayerConfig, TurnRequest
from .turn_orchestrator import TurnOrchestrator

logger = logging.getLogger(__name__)


class MatchRunner:
    """
    Runs a single chess game between two models.

    Under a STRICT orchestrator a provider failure ends the match
    (termination "provider_error"). Under DEGRADE it never stops early.
    """

    def __init__(
        self,
        white: PlayerConfig,
        black: PlayerConfig,
        orchestrator: TurnOrchestrator,
        max_moves: int = 200,
        verbose: bool = False,
        client_id: str = "match",
    ):
        """
        Initialize the match runner.

        Args:
            white: Player with white pieces
            black: Player with black pieces
            orchestrator: Turn orchestrator shared by both sides
            max_moves: Maximum number of half-moves (plies) before draw
            verbose: Print moves as they happen
            client_id: Identity used to key rate limiting
        """
        self.white = white
        self.black = black
        self.orchestrator = orchestrator
        self.max_moves = max_moves
        self.verbose = verbose
        self.client_id = client_id

    async def play_game(self, board: Optional[chess.Board] = None) -> Tuple[MatchResult, str]:
        """
        Play a complete game.

        Args:
            board: Optional starting position (defaults to the standard start)

        Returns:
            Tuple of (MatchResult, PGN string)
        """
        game_id = str(uuid.uuid4())
        board = board.copy() if board is not None else chess.Board()

        # Set up PGN
        pgn_game = chess.pgn.Game()
        pgn_game.headers["Event"] = "LLM Chess Arena"
        pgn_game.headers["Site"] = "Local"
        pgn_game.headers["Date"] = datetime.now(timezone.utc).strftime("%Y.%m.%d")
        pgn_game.headers["Round"] = "1"
        pgn_game.headers["White"] = self.white.player_id
        pgn_game.headers["Black"] = self.black.player_id
        if board.fen() != chess.STARTING_FEN:
            pgn_game.setup(board)

        node = pgn_game
        history: list[str] = []
        fallbacks = {chess.WHITE: 0, chess.BLACK: 0}
        attempts = {chess.WHITE: 0, chess.BLACK: 0}

        winner = "draw"
        termination = "normal"
        error_message = None
        moves_played = 0

        while not board.is_game_over() and moves_played < self.max_moves:
            side = board.turn
            player = self.white if side == chess.WHITE else self.black
            request = TurnRequest(
                turn=side_to_move(board),
                legal_moves=legal_moves_for(board),
                board=board_to_state(board),
                history=list(history),
                model=player.model_name,
                api_key=player.api_key,
                base_url=player.base_url,
            )

            try:
                result = await self.orchestrator.select_move(request, client_id=self.client_id)
            except ProviderError as e:
                side_name = "White" if side == chess.WHITE else "Black"
                error_message = f"{side_name} LLM error: {e.message}"
                logger.error(error_message)
                winner = "none"
                termination = "provider_error"
                break

            attempts[side] += result.attempts_used
            if result.fallback:
                fallbacks[side] += 1
                if self.verbose:
                    print(f"  [fallback] {result.note}")

            chess_move = to_chess_move(board, result.move)
            history.append(describe_move(board, chess_move))
            board.push(chess_move)
            node = node.add_variation(chess_move)
            moves_played += 1

            if self.verbose:
                print(f"  {moves_played}. {history[-1]} ({chess_move.uci()})")

        # Determine final result if game ended naturally
        if board.is_game_over() and termination == "normal":
            outcome = board.outcome()
            if outcome.winner == chess.WHITE:
                winner = "white"
            elif outcome.winner == chess.BLACK:
                winner = "black"
            else:
                winner = "draw"
            termination = outcome.termination.name.lower()
        elif moves_played >= self.max_moves and termination == "normal":
            winner = "draw"
            termination = "max_moves"

        # Set PGN result
        pgn_result_map = {"white": "1-0", "black": "0-1", "draw": "1/2-1/2"}
        pgn_game.headers["Result"] = pgn_result_map.get(winner, "*")
        pgn_game.headers["Termination"] = termination
        pgn_str = str(pgn_game)

        match_result = MatchResult(
            game_id=game_id,
            white_id=self.white.player_id,
            black_id=self.black.player_id,
            winner=winner,
            termination=termination,
            moves=moves_played,
            fallback_moves_white=fallbacks[chess.WHITE],
            fallback_moves_black=fallbacks[chess.BLACK],
            attempts_white=attempts[chess.WHITE],
            attempts_black=attempts[chess.BLACK],
            error=error_message,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        return match_result, pgn_str
