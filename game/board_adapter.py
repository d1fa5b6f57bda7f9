"""
Bridge between python-chess and the row/column move model.

python-chess acts as the rules engine for matches: it supplies the board
grid and legal moves for the side to move, and applies chosen moves.
Row 0 is rank 8 (black's back rank), column 0 is file a.
"""

from typing import Optional

import chess

from .models import BoardState, Move, Piece

PIECE_NAMES = {
    chess.PAWN: "pawn",
    chess.KNIGHT: "knight",
    chess.BISHOP: "bishop",
    chess.ROOK: "rook",
    chess.QUEEN: "queen",
    chess.KING: "king",
}


def side_to_move(board: chess.Board) -> str:
    return "white" if board.turn == chess.WHITE else "black"


def square_to_coords(square: chess.Square) -> tuple[int, int]:
    return 7 - chess.square_rank(square), chess.square_file(square)


def coords_to_square(row: int, col: int) -> chess.Square:
    return chess.square(col, 7 - row)


def board_to_state(board: chess.Board) -> BoardState:
    """Convert a python-chess board to the 8x8 grid."""
    grid: BoardState = [[None] * 8 for _ in range(8)]
    for square, piece in board.piece_map().items():
        row, col = square_to_coords(square)
        color = "white" if piece.color == chess.WHITE else "black"
        grid[row][col] = Piece(type=PIECE_NAMES[piece.piece_type], color=color)
    return grid


def move_from_chess(move: chess.Move) -> Move:
    from_row, from_col = square_to_coords(move.from_square)
    to_row, to_col = square_to_coords(move.to_square)
    return Move.of(from_row, from_col, to_row, to_col)


def legal_moves_for(board: chess.Board) -> list[Move]:
    """
    Legal moves for the side to move.

    Promotions to different pieces share a from/to pair and collapse to one
    entry, so the list holds no duplicates.
    """
    seen = set()
    moves = []
    for chess_move in board.legal_moves:
        move = move_from_chess(chess_move)
        if move not in seen:
            seen.add(move)
            moves.append(move)
    return moves


def to_chess_move(board: chess.Board, move: Move) -> chess.Move:
    """
    Find the legal python-chess move for a from/to pair (promotions become queens).

    Raises:
        ValueError: If no legal move matches
    """
    from_square = coords_to_square(*move.from_)
    to_square = coords_to_square(*move.to)
    match: Optional[chess.Move] = None
    for candidate in board.legal_moves:
        if candidate.from_square != from_square or candidate.to_square != to_square:
            continue
        if candidate.promotion in (None, chess.QUEEN):
            return candidate
        match = match or candidate
    if match is None:
        raise ValueError(f"Move {move} is not legal in position {board.fen()}")
    return match


def describe_move(board: chess.Board, chess_move: chess.Move) -> str:
    """
    History entry for a move about to be played, e.g. "White Knight F3" or
    "Black Pawn D4 × Pawn".
    """
    piece = board.piece_at(chess_move.from_square)
    color = "White" if board.turn == chess.WHITE else "Black"
    name = PIECE_NAMES[piece.piece_type].capitalize() if piece else "Piece"
    entry = f"{color} {name} {chess.square_name(chess_move.to_square).upper()}"

    if board.is_capture(chess_move):
        if board.is_en_passant(chess_move):
            captured_name = "Pawn"
        else:
            captured = board.piece_at(chess_move.to_square)
            captured_name = PIECE_NAMES[captured.piece_type].capitalize() if captured else "Piece"
        entry += f" × {captured_name}"
    return entry
