"""
Deterministic random streams keyed on the simulated calendar.

Every stochastic draw in the engine comes from a `random.Random` whose seed is a
pure function of (engine seed, simulated day, salt). Replaying the same tick
sequence therefore reproduces the same price path bit for bit.
"""
from __future__ import annotations

import random
import zlib
from datetime import date, datetime
from typing import Protocol

_MASK64 = (1 << 64) - 1


def _splitmix64(value: int) -> int:
    """One SplitMix64 finalization round."""
    z = (value + 0x9E3779B97F4A7C15) & _MASK64
    z = ((z ^ (z >> 30)) * 0xBF58476D1CE4E5B9) & _MASK64
    z = ((z ^ (z >> 27)) * 0x94D049BB133111EB) & _MASK64
    return z ^ (z >> 31)


def mix_seed(*parts: int) -> int:
    """Fold integer parts into a single 64-bit seed."""
    state = 0
    for part in parts:
        state = _splitmix64(state ^ (part & _MASK64))
    return state


def day_number(moment: date | datetime) -> int:
    """Integer day count of the simulated date (wall-clock time is never used)."""
    return moment.toordinal()


def stable_salt(text: str) -> int:
    """Process-independent salt for a string such as a ticker symbol."""
    return zlib.crc32(text.encode("utf-8"))


class RandomStreams(Protocol):
    def stream(self, day: int, salt: int = 0) -> random.Random: ...


class DateSeededStreams:
    """Default stream factory: same (seed, day, salt) always gives the same stream."""

    def __init__(self, seed: int = 0):
        self.seed = seed

    def stream(self, day: int, salt: int = 0) -> random.Random:
        return random.Random(mix_seed(self.seed, day, salt))

    def __repr__(self) -> str:
        return f"DateSeededStreams(seed={self.seed})"
