from __future__ import annotations

import hashlib
from typing import Union

import numpy as np


Label = Union[int, str]


def derive_seed(base_seed: int, *labels: Label) -> int:
    """Stable 32-bit seed for the substream named by `labels` under `base_seed`.

    Independent of PYTHONHASHSEED and platform: labels are hashed as text with blake2b.
    """
    key = "|".join(str(x) for x in (int(base_seed), *labels)).encode("utf-8")
    digest = hashlib.blake2b(key, digest_size=8).digest()
    return int.from_bytes(digest, "big") % (2**32 - 1)


class Prng:
    """Explicit, reproducible scalar stream.

    Every consumer of randomness receives its own instance. `spawn` hands out
    independent substreams keyed by labels, so concurrent consumers never share a
    cursor, and spawning never advances the parent.
    """

    def __init__(self, seed: int):
        self.seed = int(seed)
        self._gen = np.random.default_rng(self.seed)

    def next(self) -> float:
        """Next float in [0, 1)."""
        return float(self._gen.random())

    def between(self, low: float, high: float) -> float:
        """One draw on [low, high)."""
        return float(low) + (float(high) - float(low)) * self.next()

    def uniform(self, size: int, low: float = 0.0, high: float = 1.0) -> np.ndarray:
        """`size` consecutive draws mapped onto [low, high)."""
        u = self._gen.random(int(size))
        return low + (high - low) * u

    def permutation(self, n: int) -> np.ndarray:
        return self._gen.permutation(int(n))

    def spawn(self, *labels: Label) -> "Prng":
        return Prng(derive_seed(self.seed, *labels))

    def __repr__(self) -> str:
        return f"Prng(seed={self.seed})"
