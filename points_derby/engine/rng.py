from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple, TypeVar, Union

T = TypeVar("T")

MASK_32 = 0xFFFFFFFF
FNV_OFFSET = 2166136261
FNV_PRIME = 16777619
MULBERRY_INCREMENT = 0x6D2B79F5

SeedValue = Union[str, int]


def _imul(a: int, b: int) -> int:
    return (a * b) & MASK_32


def hash_seed(value: str) -> int:
    """32-bit FNV-1a over the UTF-16 code units of ``value``."""
    h = FNV_OFFSET
    encoded = value.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(encoded), 2):
        h ^= encoded[i] | (encoded[i + 1] << 8)
        h = _imul(h, FNV_PRIME)
    return h


def seed(value: SeedValue) -> int:
    """
    Turns a string or integer seed into a generator state.

    Strings are hashed; integers are reduced to 32 bits. Booleans are refused
    because they are almost always a caller bug.
    """
    if isinstance(value, bool):
        raise TypeError("Seed must be a string or an integer, not a bool.")
    if isinstance(value, str):
        return hash_seed(value)
    if isinstance(value, int):
        return value & MASK_32
    raise TypeError(f"Unsupported seed type: {type(value).__name__}")


def next_float(state: int) -> Tuple[float, int]:
    """
    One mulberry32 step. Returns ``(value in [0, 1), new_state)``.

    Pure: the same state always yields the same pair.
    """
    state = (state + MULBERRY_INCREMENT) & MASK_32
    t = _imul(state ^ (state >> 15), state | 1)
    t ^= (t + _imul(t ^ (t >> 7), t | 61)) & MASK_32
    t &= MASK_32
    return ((t ^ (t >> 14)) & MASK_32) / 4294967296, state


def index_from_hash(value: str, count: int) -> int:
    """Deterministic 1-based index in ``[1, count]`` derived from ``value``."""
    if count <= 0:
        raise ValueError("count must be positive")
    roll, _ = next_float(seed(value))
    return int(roll * count) + 1


@dataclass
class SeededRandom:
    """Stateful convenience wrapper over the pure generator functions."""

    state: int

    @classmethod
    def from_seed(cls, value: SeedValue) -> "SeededRandom":
        return cls(seed(value))

    def random(self) -> float:
        value, self.state = next_float(self.state)
        return value

    def uniform(self, lo: float, hi: float) -> float:
        return lo + (hi - lo) * self.random()

    def randint(self, a: int, b: int) -> int:
        return a + int(self.random() * (b - a + 1))

    def choice(self, seq: Sequence[T]) -> T:
        if not seq:
            raise IndexError("Cannot choose from an empty sequence")
        return seq[int(self.random() * len(seq))]

    def shuffle(self, items: List[T]) -> None:
        # Fisher-Yates from the tail
        for i in range(len(items) - 1, 0, -1):
            j = int(self.random() * (i + 1))
            items[i], items[j] = items[j], items[i]
