"""
Prompt templates for LLM chess players.
"""

import json
from dataclasses import dataclass
from typing import Optional, Sequence

from game.models import BoardState, Move

MAX_HISTORY_ENTRIES = 10
MAX_FEEDBACK_CHARS = 500

PIECE_SYMBOLS = {
    "pawn": "p",
    "rook": "r",
    "knight": "n",
    "bishop": "b",
    "queen": "q",
    "king": "k",
}


@dataclass(frozen=True)
class AttemptRecord:
    """A failed attempt within one turn, fed back to the model on retry."""
    attempt_number: int
    raw_response: str
    problem: str            # "unparseable" or "illegal"


def board_to_ascii(board: BoardState) -> str:
    """
    Convert a board grid to ASCII representation.

    White pieces are upper case, black pieces lower case, empty squares ".".
    Rows and columns are labelled with the 0-based indices moves use.

    Args:
        board: 8x8 grid, row 0 = black's back rank

    Returns:
        ASCII string representation of the board
    """
    rows = ["    " + " ".join(str(col) for col in range(8))]
    for index, row in enumerate(board):
        cells = []
        for square in row:
            if square is None:
                cells.append(".")
                continue
            symbol = PIECE_SYMBOLS[square.type]
            cells.append(symbol.upper() if square.color == "white" else symbol)
        rows.append(f"{index} | " + " ".join(cells))
    return "\n".join(rows)


def format_legal_moves(legal_moves: Sequence[Move]) -> str:
    return json.dumps([m.to_json() for m in legal_moves], separators=(",", ":"))


def format_recent_history(history: Sequence[str]) -> str:
    """Keep only the last few entries of the move history."""
    recent = list(history)[-MAX_HISTORY_ENTRIES:]
    return " | ".join(recent) if recent else "(Game just started - no moves yet)"


SYSTEM_PROMPT_TEMPLATE = """You are a precise chess engine. You must choose exactly one legal move for {turn}.

CRITICAL RULES:
1. Respond with ONLY a JSON object - nothing else
2. Use this exact format: {{"from":[row,col],"to":[row,col]}}
3. row and col are numbers between 0 and 7 (0-indexed coordinates)
4. Do NOT include explanations, comments, markdown, code blocks, or any other text
5. Do NOT use backticks or formatting
6. Start your response with {{ and end with }}

Example of correct response: {{"from":[6,4],"to":[4,4]}}"""


USER_PROMPT_TEMPLATE = """Board (0=Black back, 7=White back):
{ascii_board}

Legal moves: {legal_moves}

Recent moves: {recent_history}

Playing as {turn}. Return ONLY: {{"from":[r,c],"to":[r,c]}}"""


RETRY_SECTION_TEMPLATE = """

Your previous reply (attempt {attempt_number}) was:
{raw_response}

{problem_text}
Choose a move that appears EXACTLY in the legal moves list above and return ONLY: {{"from":[r,c],"to":[r,c]}}"""

PROBLEM_TEXT = {
    "unparseable": "That reply could not be read as a move.",
    "illegal": "That move is ILLEGAL - it is not in the list of legal moves.",
}


def build_system_prompt(turn: str) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(turn=turn)


def build_user_prompt(
    turn: str,
    board: BoardState,
    legal_moves: Sequence[Move],
    history: Sequence[str],
    previous_attempt: Optional[AttemptRecord] = None,
) -> str:
    """
    Build the user prompt for one attempt.

    Args:
        turn: "white" or "black"
        board: Current board grid
        legal_moves: Moves the side to move may play
        history: Move history entries, oldest first
        previous_attempt: The last failed attempt this turn, if retrying

    Returns:
        The formatted prompt string
    """
    prompt = USER_PROMPT_TEMPLATE.format(
        ascii_board=board_to_ascii(board),
        legal_moves=format_legal_moves(legal_moves),
        recent_history=format_recent_history(history),
        turn=turn,
    )
    if previous_attempt is not None:
        raw = previous_attempt.raw_response.strip() or "(empty reply)"
        prompt += RETRY_SECTION_TEMPLATE.format(
            attempt_number=previous_attempt.attempt_number,
            raw_response=raw[:MAX_FEEDBACK_CHARS],
            problem_text=PROBLEM_TEXT.get(previous_attempt.problem, PROBLEM_TEXT["unparseable"]),
        )
    return prompt


def build_messages(
    turn: str,
    board: BoardState,
    legal_moves: Sequence[Move],
    history: Sequence[str],
    previous_attempt: Optional[AttemptRecord] = None,
) -> list[dict]:
    """Build the system/user chat message pair for one attempt."""
    return [
        {"role": "system", "content": build_system_prompt(turn)},
        {"role": "user", "content": build_user_prompt(turn, board, legal_moves, history, previous_attempt)},
    ]
