"""
Portable seeded pseudo-random generator.

A 32-bit linear congruential generator whose output must match the Java and
JavaScript verifiers bit for bit. It drives table shuffles only and must never
be used for anything security relevant.
"""

from __future__ import annotations

MULTIPLIER = 1664525
INCREMENT = 1013904223
MODULUS = 2**32


class SeededRandom:
    """LCG with state = (a * state + c) mod 2**32."""

    def __init__(self, seed: int) -> None:
        # Same as JavaScript's `seed >>> 0`.
        self._state = seed % MODULUS

    @property
    def state(self) -> int:
        return self._state

    def next_double(self) -> float:
        """Advance and return a float in [0, 1)."""
        self._state = (MULTIPLIER * self._state + INCREMENT) % MODULUS
        return self._state / MODULUS

    def next_int(self, upper: int) -> int:
        """Return an int in [0, upper)."""
        # Non-negative, so int() floors.
        return int(self.next_double() * upper)


def shuffle(items: list[str], seed: int) -> list[str]:
    """Fisher-Yates shuffle driven by SeededRandom, returning a new list."""
    result = list(items)
    rng = SeededRandom(seed)
    for i in range(len(result) - 1, 0, -1):
        j = rng.next_int(i + 1)
        result[i], result[j] = result[j], result[i]
    return result
