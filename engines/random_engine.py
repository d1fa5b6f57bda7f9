"""
Random move engine - plays a random legal move each turn.
"""

import random
from typing import Optional, Sequence

from game.models import Move


class RandomEngine:
    """
    Engine that plays uniformly random legal moves.

    Used as the fallback when a model fails to produce a usable move.
    """

    def __init__(self, seed: Optional[int] = None, rng: Optional[random.Random] = None):
        """
        Initialize random engine.

        Args:
            seed: Optional random seed for reproducibility
            rng: Optional random generator to draw from (takes precedence over seed)
        """
        self._rng = rng or random.Random(seed)

    def select_move(self, legal_moves: Sequence[Move]) -> Move:
        """Select a random legal move."""
        if not legal_moves:
            raise ValueError("Cannot select a move from an empty legal move list")
        return self._rng.choice(list(legal_moves))
