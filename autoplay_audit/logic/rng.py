"""RNG sources for the simulated wheel."""
import hashlib
import random
import secrets
from abc import ABC, abstractmethod

from autoplay_audit.logic.models import SegmentDefinition, SegmentSet


class RNGBase(ABC):
    """Abstract RNG interface."""

    @abstractmethod
    def random(self) -> float:
        """Return random float in [0, 1)."""
        pass

    def pick_segment(self, segments: SegmentSet) -> SegmentDefinition:
        """Draw one segment according to the declared weights."""
        roll = self.random()
        cumulative = 0.0
        for segment in segments.segments:
            cumulative += segment.weight
            if roll < cumulative:
                return segment
        # Weights may sum to slightly under 1
        return segments.segments[-1]


class ProductionRNG(RNGBase):
    """
    Cryptographically secure source, no fixed seed.
    """

    def random(self) -> float:
        return secrets.randbelow(2**32) / (2**32)


class SeededRNG(RNGBase):
    """
    Test/Simulation RNG.

    Deterministic, fully controlled by seed.
    """

    def __init__(self, seed: int):
        self._rng = random.Random(seed)
        self.seed = seed

    def random(self) -> float:
        return self._rng.random()


def seed_to_int(seed_str: str) -> int:
    """Convert string seed to integer deterministically."""
    return int(hashlib.sha256(seed_str.encode()).hexdigest(), 16) % (2**31)
