# Fallback move engines
from .random_engine import RandomEngine

__all__ = ["RandomEngine"]
