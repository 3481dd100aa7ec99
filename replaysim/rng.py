"""
Seeded random source.

Every stochastic choice in a run (default execution latency and slippage,
or anything a strategy draws through the context) comes from one
``SeededRandom`` owned by the engine and re-created per run, so identical
inputs and seed give identical outputs.
"""

from __future__ import annotations

import numpy as np

_SEED_MODULUS = 2 ** 64


class SeededRandom:
    """
    Deterministic random source backed by a numpy ``Generator``.

    Args:
        seed: Integer seed; negative seeds are reduced modulo 2**64
    """

    def __init__(self, seed: int = 1) -> None:
        if isinstance(seed, bool) or not isinstance(seed, (int, np.integer)):
            raise TypeError(f"seed must be an integer, got {type(seed).__name__}")
        self._seed = int(seed)
        self._generator = np.random.default_rng(self._seed % _SEED_MODULUS)

    @property
    def seed(self) -> int:
        return self._seed

    def random(self) -> float:
        """Uniform float in [0, 1)."""
        return float(self._generator.random())

    def uniform(self, low: float = 0.0, high: float = 1.0) -> float:
        """Uniform float in [low, high)."""
        return float(self._generator.uniform(low, high))

    def integers(self, low: int, high: int) -> int:
        """Uniform integer in [low, high)."""
        return int(self._generator.integers(low, high))

    def __repr__(self) -> str:
        return f"SeededRandom(seed={self._seed})"
