"""
Weighted scenario dispatch.

Each iteration a VU draws one uniform number in [0, 1) and runs exactly one
variant.  Weights are turned into cumulative upper bounds once, at
configuration time:

    weights   0.50  0.30  0.12  0.08
    bounds    0.50  0.80  0.92  1.00

and a draw d selects the first variant whose bound is greater than d.
"""
from __future__ import annotations

import bisect
import math

WEIGHT_TOLERANCE = 1e-6


class WeightedChoice:
    def __init__(self, options):
        """
        Args:
            options: iterable of (weight, variant) pairs.  Weights must be
                     non-negative and sum to 1.0.
        """
        options = list(options)
        if not options:
            raise ValueError("Weighted choice needs at least one option.")
        for weight, variant in options:
            if isinstance(weight, bool) or not isinstance(weight, (int, float)) \
                    or not math.isfinite(weight) or weight < 0:
                raise ValueError(f"Invalid weight {weight!r} for {variant!r}")
        total = math.fsum(w for w, _ in options)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"Scenario weights must sum to 1.0, got {total:g}")

        self.bounds:   list[float] = []
        self.variants: list        = []
        running = 0.0
        for weight, variant in options:
            if weight == 0:
                continue
            running += weight
            self.bounds.append(running)
            self.variants.append(variant)
        self.bounds[-1] = 1.0

    def pick(self, draw: float):
        if not 0.0 <= draw < 1.0:
            raise ValueError(f"Draw must be within [0, 1), got {draw!r}")
        return self.variants[bisect.bisect_right(self.bounds, draw)]

    def choose(self, rng):
        return self.pick(rng.random())

    def __iter__(self):
        return iter(self.variants)

    def __len__(self):
        return len(self.variants)


class ScenarioMix:
    """
    VU scenario callable over a WeightedChoice of variants.

    A variant is anything with a `name` and an `async run(vu)` method.  The
    chosen name is stored on the VU so the pool can tag its iteration.
    """

    def __init__(self, choice: WeightedChoice):
        self.choice = choice

    async def __call__(self, vu):
        variant = self.choice.choose(vu.rng)
        vu.scenario = variant.name
        return await variant.run(vu)

    @property
    def names(self) -> list:
        return [v.name for v in self.choice]
