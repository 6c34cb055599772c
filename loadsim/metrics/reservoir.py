"""
Bounded sample retention for Trend metrics.

Up to `capacity` samples are kept verbatim, so percentiles are exact for
runs with fewer observations than that.  Past the bound, Algorithm R keeps
a uniform random sample of everything seen: each of the n observations is
retained with probability capacity/n, and percentiles become estimates of
the population percentiles with the usual sampling error (for the default
capacity of 100 000, a p95 estimate is within about ±0.14 percentile points
of the true rank at 95% confidence).
"""
from __future__ import annotations

import math
import random


def percentile(sorted_values, p: float) -> float:
    """Linear-interpolated percentile of an ascending sequence (0 ≤ p ≤ 100)."""
    n = len(sorted_values)
    if n == 0:
        raise ValueError("percentile of empty sequence")
    if n == 1:
        return float(sorted_values[0])
    rank = (p / 100.0) * (n - 1)
    lo   = int(math.floor(rank))
    hi   = min(lo + 1, n - 1)
    frac = rank - lo
    return sorted_values[lo] + (sorted_values[hi] - sorted_values[lo]) * frac


class Reservoir:
    def __init__(self, capacity: int = 100_000, rng: "random.Random | None" = None):
        if capacity < 1:
            raise ValueError(f"Reservoir capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.seen     = 0
        self._samples: list[float] = []
        self._rng     = rng or random.Random()

    def add(self, value: float) -> None:
        self.seen += 1
        if len(self._samples) < self.capacity:
            self._samples.append(value)
            return
        j = self._rng.randrange(self.seen)
        if j < self.capacity:
            self._samples[j] = value

    def copy_samples(self) -> list[float]:
        return list(self._samples)

    def __len__(self):
        return len(self._samples)
