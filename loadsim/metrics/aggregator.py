"""
Metrics aggregator.

Every VU records observations into one shared Aggregator instance that the
engine injects into the pool and the scenarios.  Recording is atomic per
call (a single lock guards all tables); `snapshot()` copies the aggregates
under the lock and does the expensive work (sorting Trend samples)
outside it.

Metric kinds and the values their snapshots report:

    counter   count, rate (per second)
    rate      rate, passes, fails           rate is 0.0 before any data
    trend     count, avg, min, med, max, p(N)...   only count while empty
    gauge     value, min, max               empty until first set

Sub-metrics are tag-filtered views of a metric, written
"http_req_duration{scenario:engine}".  They are fed by every observation
on the parent whose tags include the filter.
"""
from __future__ import annotations

import random
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from .reservoir import Reservoir, percentile


class MetricKind(str, Enum):
    COUNTER = "counter"
    RATE    = "rate"
    TREND   = "trend"
    GAUGE   = "gauge"


_KEY_RE = re.compile(r"^\s*([A-Za-z_][\w.\-]*)\s*(?:\{(.*)\})?\s*$")


def parse_metric_key(key: str) -> "tuple[str, dict]":
    """Split "name{tag:value,...}" into (name, {tag: value})."""
    m = _KEY_RE.match(key or "")
    if not m:
        raise ValueError(f"Invalid metric name {key!r}")
    name, raw_tags = m.group(1), m.group(2)
    tags = {}
    if raw_tags is not None:
        for part in raw_tags.split(","):
            if ":" not in part:
                raise ValueError(f"Invalid tag filter {part.strip()!r} in {key!r}; expected 'tag:value'")
            k, v = part.split(":", 1)
            if not k.strip():
                raise ValueError(f"Empty tag name in {key!r}")
            tags[k.strip()] = v.strip()
        if not tags:
            raise ValueError(f"Empty tag filter in {key!r}")
    return name, tags


def metric_key(name: str, tags: "Mapping[str, str] | None" = None) -> str:
    """Canonical key: tags sorted, no whitespace."""
    if not tags:
        return name
    inner = ",".join(f"{k}:{v}" for k, v in sorted(tags.items()))
    return f"{name}{{{inner}}}"


def percentile_label(p: float) -> str:
    return f"p({p:g})"


@dataclass(frozen=True)
class Observation:
    metric:    str
    value:     float
    tags:      Mapping[str, str] = field(default_factory=dict)
    timestamp: float             = field(default_factory=time.time)

    def __post_init__(self):
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))


@dataclass(frozen=True)
class MetricSnapshot:
    name:   str
    kind:   MetricKind
    values: Mapping[str, float]

    def get(self, key: str, default=None):
        return self.values.get(key, default)

    def to_dict(self) -> dict:
        return {"type": self.kind.value, "values": dict(self.values)}

    @classmethod
    def from_dict(cls, name: str, raw: dict) -> "MetricSnapshot":
        return cls(name, MetricKind(raw["type"]), MappingProxyType(dict(raw.get("values", {}))))


# ── Metric kinds ──────────────────────────────────────────────────────────────

class Counter:
    kind = MetricKind.COUNTER

    def __init__(self, name: str, **_):
        self.name  = name
        self.total = 0

    def add(self, value) -> None:
        self.total += value

    def state(self):
        return self.total

    @staticmethod
    def summarise(total, elapsed, percentiles) -> dict:
        return {
            "count": total,
            "rate":  total / elapsed if elapsed else 0.0,
        }


class Rate:
    kind = MetricKind.RATE

    def __init__(self, name: str, **_):
        self.name  = name
        self.trues = 0
        self.total = 0

    def add(self, value) -> None:
        self.total += 1
        if value:
            self.trues += 1

    def state(self):
        return self.trues, self.total

    @staticmethod
    def summarise(state, elapsed, percentiles) -> dict:
        trues, total = state
        return {
            "rate":   trues / total if total else 0.0,
            "passes": trues,
            "fails":  total - trues,
        }


class Trend:
    kind = MetricKind.TREND

    def __init__(self, name: str, max_samples: int = 100_000, rng=None):
        self.name      = name
        self.count     = 0
        self.sum       = 0.0
        self.min       = None
        self.max       = None
        self.reservoir = Reservoir(max_samples, rng)

    def add(self, value) -> None:
        value = float(value)
        self.count += 1
        self.sum   += value
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)
        self.reservoir.add(value)

    def state(self):
        return self.count, self.sum, self.min, self.max, self.reservoir.copy_samples()

    @staticmethod
    def summarise(state, elapsed, percentiles) -> dict:
        count, total, lo, hi, samples = state
        if not count:
            return {"count": 0}
        samples.sort()
        # float summation can push the mean a hair outside [min, max]
        avg = min(max(total / count, lo), hi)
        values = {
            "count": count,
            "avg":   avg,
            "min":   lo,
            "med":   percentile(samples, 50),
            "max":   hi,
        }
        for p in percentiles:
            values[percentile_label(p)] = min(max(percentile(samples, p), lo), hi)
        return values


class Gauge:
    kind = MetricKind.GAUGE

    def __init__(self, name: str, **_):
        self.name  = name
        self.value = None
        self.min   = None
        self.max   = None

    def add(self, value) -> None:
        self.value = value
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)

    def state(self):
        return self.value, self.min, self.max

    @staticmethod
    def summarise(state, elapsed, percentiles) -> dict:
        value, lo, hi = state
        if value is None:
            return {}
        return {"value": value, "min": lo, "max": hi}


_KINDS = {cls.kind: cls for cls in (Counter, Rate, Trend, Gauge)}


# ── Aggregator ────────────────────────────────────────────────────────────────

class Aggregator:
    DEFAULT_PERCENTILES = (90, 95, 99)

    def __init__(self, max_samples: int = 100_000, seed=None):
        self.max_samples  = max_samples
        self._lock        = threading.Lock()
        self._rng         = random.Random(seed)
        self._metrics:    dict = {}
        self._submetrics: dict = {}   # parent name → [(tag filter, metric)]
        self._percentiles = set(self.DEFAULT_PERCENTILES)

    def _new_metric(self, name: str, kind: MetricKind):
        cls = _KINDS[MetricKind(kind)]
        return cls(name, max_samples=self.max_samples, rng=random.Random(self._rng.random()))

    def declare(self, name: str, kind) -> None:
        """Register a metric.  Idempotent for the same kind."""
        kind = MetricKind(kind)
        if parse_metric_key(name)[1]:
            raise ValueError(f"Use declare_submetric() for tag-filtered metric {name!r}")
        with self._lock:
            existing = self._metrics.get(name)
            if existing is not None:
                if existing.kind is not kind:
                    raise ValueError(
                        f"Metric {name!r} already declared as {existing.kind.value}, "
                        f"cannot redeclare as {kind.value}"
                    )
                return
            self._metrics[name] = self._new_metric(name, kind)

    def declare_submetric(self, key: str) -> str:
        """Register a tag-filtered view; returns its canonical key."""
        name, tags = parse_metric_key(key)
        if not tags:
            raise ValueError(f"Sub-metric {key!r} needs a tag filter")
        canonical = metric_key(name, tags)
        with self._lock:
            parent = self._metrics.get(name)
            if parent is None:
                raise KeyError(f"Sub-metric {key!r} refers to undeclared metric {name!r}")
            subs = self._submetrics.setdefault(name, [])
            if not any(sub.name == canonical for _, sub in subs):
                subs.append((tags, self._new_metric(canonical, parent.kind)))
        return canonical

    def request_percentile(self, p: float) -> None:
        if not 0 <= p <= 100:
            raise ValueError(f"Percentile must be within 0..100, got {p}")
        with self._lock:
            self._percentiles.add(p)

    def kind_of(self, name: str) -> "MetricKind | None":
        metric = self._metrics.get(name)
        return metric.kind if metric is not None else None

    def __contains__(self, name: str) -> bool:
        return name in self._metrics

    def record(self, observation: Observation) -> None:
        with self._lock:
            metric = self._metrics.get(observation.metric)
            if metric is None:
                raise KeyError(f"Metric {observation.metric!r} has not been declared")
            metric.add(observation.value)
            for tags, sub in self._submetrics.get(observation.metric, ()):
                if all(observation.tags.get(k) == v for k, v in tags.items()):
                    sub.add(observation.value)

    def add(self, name: str, value=1, **tags) -> None:
        self.record(Observation(name, value, tags))

    def snapshot(self, elapsed: "float | None" = None) -> "Mapping[str, MetricSnapshot]":
        """Immutable view of every metric and sub-metric."""
        with self._lock:
            metrics = list(self._metrics.values())
            for subs in self._submetrics.values():
                metrics.extend(sub for _, sub in subs)
            states      = [(m.name, type(m), m.state()) for m in metrics]
            percentiles = sorted(self._percentiles)

        out = {}
        for name, cls, state in states:
            values = cls.summarise(state, elapsed, percentiles)
            out[name] = MetricSnapshot(name, cls.kind, MappingProxyType(values))
        return MappingProxyType(out)
