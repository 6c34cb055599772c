"""
Stage scheduler.

A schedule is an ordered list of stages.  Each stage ramps the target VU
count linearly from the previous stage's target (0 for the first stage)
to its own target over its duration:

    stages:
      - duration: 30s     # 0 → 5
        target:   5
      - duration: 39m     # 5 → 8
        target:   8
      - duration: 30s     # 8 → 0
        target:   0

Durations are seconds, or strings such as "250ms", "30s", "39m", "1m30s".
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass

_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_PART  = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")


def parse_duration(value) -> float:
    """Return a duration in seconds.  Raises ValueError on anything unparseable."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0 or not math.isfinite(value):
            raise ValueError(f"Duration must be a finite non-negative number, got {value!r}")
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"Invalid duration: {value!r}")

    text = value.strip().lower()
    try:
        return parse_duration(float(text))
    except ValueError:
        pass

    pos, total = 0, 0.0
    for m in _PART.finditer(text):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _UNITS[m.group(2)]
        pos = m.end()
    if pos == 0 or pos != len(text):
        raise ValueError(
            f"Invalid duration {value!r}; expected e.g. '250ms', '30s', '39m', '1m30s'."
        )
    return total


@dataclass(frozen=True)
class Stage:
    duration: float
    target:   int

    def __post_init__(self):
        if isinstance(self.target, bool) or not isinstance(self.target, int):
            raise ValueError(f"Stage target must be an integer, got {self.target!r}")
        if self.target < 0:
            raise ValueError(f"Stage target must be non-negative, got {self.target}")
        if self.duration < 0:
            raise ValueError(f"Stage duration must be non-negative, got {self.duration}")

    @classmethod
    def from_dict(cls, raw: dict) -> "Stage":
        if not isinstance(raw, dict) or "duration" not in raw or "target" not in raw:
            raise ValueError(f"Stage needs 'duration' and 'target', got {raw!r}")
        return cls(duration=parse_duration(raw["duration"]), target=raw["target"])


class Schedule:
    """Piecewise-linear target VU count over elapsed run time."""

    def __init__(self, stages):
        stages = [s if isinstance(s, Stage) else Stage.from_dict(s) for s in stages]
        if not stages:
            raise ValueError("Schedule needs at least one stage.")
        self.stages = tuple(stages)

        # (start, end, from_target, to_target) per stage
        self._segments = []
        start, previous = 0.0, 0
        for stage in self.stages:
            end = start + stage.duration
            self._segments.append((start, end, previous, stage.target))
            start, previous = end, stage.target
        self.total_duration = start

    def interpolate(self, elapsed: float) -> float:
        if elapsed >= self.total_duration:
            return float(self.stages[-1].target)
        value = 0.0
        for start, end, lo, hi in self._segments:
            if elapsed < start:
                break
            if end == start:
                # zero-duration stage: jump straight to its target
                value = float(hi)
                continue
            if elapsed < end:
                return lo + (hi - lo) * (elapsed - start) / (end - start)
            value = float(hi)
        return value

    def target_at(self, elapsed: float) -> int:
        """Target VU count at `elapsed` seconds, rounded half-up."""
        return int(math.floor(self.interpolate(max(elapsed, 0.0)) + 0.5))

    def is_finished(self, elapsed: float) -> bool:
        return elapsed >= self.total_duration

    @property
    def max_target(self) -> int:
        return max(s.target for s in self.stages)

    def __repr__(self):
        return f"Schedule(stages={len(self.stages)}, total={self.total_duration:g}s)"
