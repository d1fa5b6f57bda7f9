"""
Best-effort extraction of a board move from an LLM's free-form reply.

Models are asked for ``{"from":[row,col],"to":[row,col]}`` but wrap it in
prose or markdown, use other field layouts, or get cut off mid-array by the
output token cap. ``parse_move`` degrades through progressively looser
strategies and returns None only when nothing usable is left.
"""

import bisect
import itertools
import json
import re
from typing import Iterator, Optional

from game.models import Move

_FENCE_OPEN_RE = re.compile(r"^```[\w+-]*")

_OPEN_TO_ARRAY_RE = re.compile(r'"to"\s*:\s*\[\s*(\d+)\s*,?\s*(\d*)')

_FROM_PAIR_RE = re.compile(r'"from"\s*:\s*\[\s*(\d+)\s*,\s*(\d+)\s*\]')
_TO_PREFIX_RE = re.compile(r'"to"\s*:\s*\[\s*(\d+)\s*,?\s*(\d*)\s*')
_INTEGER_RE = re.compile(r"\d+")

# Objects longer than this are never a move and are not handed to json.loads
MAX_OBJECT_CHARS = 8192


def strip_code_fence(text: str) -> str:
    """Remove one leading/trailing ``` fence (with or without a language tag)."""
    text = text.strip()
    if text.startswith("```"):
        text = _FENCE_OPEN_RE.sub("", text, count=1)
        if text.endswith("```"):
            text = text[:-3]
    return text.strip()


def move_to_text(move: Move) -> str:
    """Serialize a move to the compact JSON form models are asked to produce."""
    return json.dumps(move.to_json(), separators=(",", ":"))


def _small_int(digits: str) -> Optional[int]:
    """Value of a digit run, or None when it cannot be a board coordinate."""
    stripped = digits.lstrip("0") or "0"
    return int(stripped) if len(stripped) <= 2 else None


def _in_range(*values: Optional[int]) -> bool:
    return all(v is not None and 0 <= v <= 7 for v in values)


def _balanced_spans(text: str) -> list[tuple[int, int]]:
    """
    (start, end) of every balanced {...} substring, ordered by start position.

    One pass with a stack of open braces. Quotes are only tracked inside an
    object, so stray quotes in surrounding prose are ignored.
    """
    spans = []
    open_at: list[int] = []
    in_string = False
    escaped = False
    for index, c in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
        elif c == '"':
            in_string = bool(open_at)
        elif c == "{":
            open_at.append(index)
        elif c == "}" and open_at:
            spans.append((open_at.pop(), index + 1))
    spans.sort()
    return spans


def _contains(positions: list[int], start: int, end: int, width: int) -> bool:
    """Whether a token starting at one of ``positions`` lies inside [start, end)."""
    i = bisect.bisect_left(positions, start)
    return i < len(positions) and positions[i] + width <= end


def _coordinate(value) -> Optional[int]:
    """Coerce a JSON value to an integer coordinate, or None if non-numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        match = re.fullmatch(r"\s*(-?)(\d+)\s*", value)
        if match:
            number = _small_int(match.group(2))
            if number is not None and match.group(1):
                return -number
            return number
    return None


def _square(value) -> Optional[tuple]:
    """Read a (row, col) pair from a list or a {row, col} / {"0", "1"} object."""
    if isinstance(value, list):
        if len(value) < 2:
            return None
        return _coordinate(value[0]), _coordinate(value[1])
    if isinstance(value, dict):
        row = value.get("row", value.get("0"))
        col = value.get("col", value.get("1"))
        return _coordinate(row), _coordinate(col)
    return None


def _layout_coordinates(obj: dict) -> Optional[tuple]:
    """
    Pull the four raw coordinates out of a parsed object.

    Returns None if the object matches none of the known layouts.
    """
    if "from" in obj and "to" in obj:
        src, dst = _square(obj["from"]), _square(obj["to"])
        if src is None or dst is None:
            return None
        return src + dst
    if all(k in obj for k in ("row", "col", "toRow", "toCol")):
        return tuple(_coordinate(obj[k]) for k in ("row", "col", "toRow", "toCol"))
    return None


def _load_object(candidate: str) -> Optional[dict]:
    try:
        parsed = json.loads(candidate)
    except (ValueError, RecursionError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _repair_truncated(text: str) -> Optional[str]:
    """Close a move object cut off inside its "to" array; a missing column becomes 0."""
    start = text.rfind("{")
    if start < 0:
        return None
    fragment = text[start:]
    from_at = fragment.find('"from"')
    if "}" in fragment or from_at < 0 or fragment.find('"to"', from_at) < 0:
        return None
    to_match = _OPEN_TO_ARRAY_RE.search(fragment)
    if not to_match:
        return None
    row, col = to_match.group(1), to_match.group(2) or "0"
    return f'{fragment[:to_match.start()]}"to":[{row},{col}]}}'


def _candidates(text: str) -> Iterator[str]:
    """Balanced objects holding both "from" and "to" first, then the rest."""
    spans = _balanced_spans(text)
    if not spans:
        repaired = _repair_truncated(text)
        if repaired:
            yield repaired
        return

    from_at = [m.start() for m in re.finditer('"from"', text)]
    to_at = [m.start() for m in re.finditer('"to"', text)]
    preferred = [
        (start, end) for start, end in spans
        if _contains(from_at, start, end, 6) and _contains(to_at, start, end, 4)
    ]
    skip = set(preferred)
    rest = (span for span in spans if span not in skip)
    for start, end in itertools.chain(preferred, rest):
        if end - start <= MAX_OBJECT_CHARS:
            yield text[start:end]


def _from_json(text: str) -> tuple[bool, Optional[Move]]:
    """
    Try the JSON strategies.

    Returns:
        (decided, move). ``decided`` is True when a parsed object matched a
        known layout, in which case ``move`` is the final answer (None when a
        coordinate was non-numeric or off the board).
    """
    for candidate in _candidates(text):
        obj = _load_object(candidate)
        if obj is None:
            continue
        coords = _layout_coordinates(obj)
        if coords is None:
            continue
        if not _in_range(*coords):
            return True, None
        return True, Move.of(*coords)
    return False, None


def _from_key_patterns(text: str) -> Optional[Move]:
    """Regex salvage of "from":[r,c] and "to":[r,...] when JSON parsing failed."""
    from_match = _FROM_PAIR_RE.search(text)
    to_match = _TO_PREFIX_RE.search(text)
    if not from_match or not to_match:
        return None

    from_row, from_col = _small_int(from_match.group(1)), _small_int(from_match.group(2))
    to_row = _small_int(to_match.group(1))
    if not _in_range(from_row, from_col, to_row):
        return None

    if not to_match.group(2):
        # Column missing: take the next integer after the partial array
        next_num = _INTEGER_RE.search(text, to_match.end())
        to_col = _small_int(next_num.group(0)) if next_num else None
    else:
        to_col = _small_int(to_match.group(2))
    if _in_range(to_col):
        return Move.of(from_row, from_col, to_row, to_col)
    return None


def _from_bare_integers(text: str) -> Optional[Move]:
    """Last resort: first in-range integers in the text, missing fourth as 0."""
    nums = []
    for match in _INTEGER_RE.finditer(text):
        number = _small_int(match.group(0))
        if _in_range(number):
            nums.append(number)
            if len(nums) == 4:
                break
    if len(nums) < 3:
        return None
    return Move.of(nums[0], nums[1], nums[2], nums[3] if len(nums) >= 4 else 0)


def parse_move(raw_text: str) -> Optional[Move]:
    """
    Parse a move from an LLM reply.

    Pure and total: malformed input gives None, never an exception.

    Args:
        raw_text: Raw response text from the provider

    Returns:
        Move with every coordinate in [0, 7], or None if nothing usable was found
    """
    if not isinstance(raw_text, str) or not raw_text.strip():
        return None

    text = strip_code_fence(raw_text)

    decided, move = _from_json(text)
    if decided:
        return move

    return _from_key_patterns(text) or _from_bare_integers(text)
