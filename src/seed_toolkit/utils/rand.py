from __future__ import annotations

import random
from typing import Optional

from seed_toolkit.utils.hashing import sha256_hex


def make_rng(seed: Optional[int]) -> random.Random:
    """Return a random number generator seeded for deterministic output."""
    return random.Random(seed)


def derive_seed(*parts: object) -> str:
    """Hash ``parts`` joined by ``:`` into a stable hex seed."""
    return sha256_hex(":".join(str(part) for part in parts))


def seed_to_int(hex_seed: str, digits: int = 8) -> int:
    return int(hex_seed[:digits], 16)


def uniform(rng: random.Random, low: float, high: float, digits: Optional[int] = None) -> float:
    """Draw from ``[low, high)`` and optionally round to ``digits`` places."""
    if high < low:
        raise ValueError("high must be >= low")
    value = low + rng.random() * (high - low)
    if digits is not None:
        return round(value, digits)
    return value


def chance(rng: random.Random, probability: float) -> bool:
    return rng.random() < probability


__all__ = ["chance", "derive_seed", "make_rng", "seed_to_int", "uniform"]
