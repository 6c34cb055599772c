"""
Threshold engine: judges metric snapshots against thresholds using Z3.

Input:  thresholds        [Threshold]
        metric snapshot   {name: MetricSnapshot}
Output: [ThresholdResult] one per threshold, status PASS | FAIL | NO_DATA

For each threshold the observed aggregate is asserted as the value of a
named real variable, the threshold is added as a constraint over that
variable, and the solver decides: sat → PASS, unsat → FAIL.  Violation
labels therefore read "p(95) < 600" rather than "812.4 < 600".

Missing data
------------
Counters report count 0 and Rates report rate 0.0 before any observation,
so thresholds on them are judged against those zero values.  A selector
with no value at all (an empty Trend, a Gauge never set, a metric that was
never declared) yields NO_DATA.  NO_DATA is not a pass: it fails the
overall verdict, is rendered as "?" in the summary, and never triggers an
abort-on-fail stop.
"""
from __future__ import annotations

import math
import operator
import re
from dataclasses import dataclass
from enum import Enum
from fractions import Fraction

import z3

from .expression import Threshold

_OPS = {
    "<":   operator.lt,
    "<=":  operator.le,
    ">":   operator.gt,
    ">=":  operator.ge,
    "==":  operator.eq,
    "===": operator.eq,
    "!=":  operator.ne,
}


class ThresholdStatus(str, Enum):
    PASS    = "pass"
    FAIL    = "fail"
    NO_DATA = "no_data"


@dataclass(frozen=True)
class ThresholdResult:
    metric:        str
    source:        str
    status:        ThresholdStatus
    observed:      "float | None" = None
    abort_on_fail: bool           = False

    @property
    def passed(self) -> bool:
        return self.status is ThresholdStatus.PASS

    def to_dict(self) -> dict:
        return {
            "metric":        self.metric,
            "threshold":     self.source,
            "status":        self.status.value,
            "observed":      self.observed,
            "abort_on_fail": self.abort_on_fail,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "ThresholdResult":
        return cls(
            metric=raw["metric"],
            source=raw["threshold"],
            status=ThresholdStatus(raw["status"]),
            observed=raw.get("observed"),
            abort_on_fail=raw.get("abort_on_fail", False),
        )


def named(label: str, expr):
    """Attach a human-readable name to any Z3 expression."""
    expr._repr = label
    return expr


def _real(value: float):
    """Exact rational Z3 value; ±inf clamps to ±1e18, NaN has no value."""
    if math.isinf(value):
        value = math.copysign(1e18, value)
    frac = Fraction(value)
    return z3.Q(frac.numerator, frac.denominator)


def _var_name(selector: str) -> str:
    return re.sub(r"\W", "_", selector).strip("_") or "value"


def judge(threshold: Threshold, observed: float) -> bool:
    """True when `observed` satisfies the threshold."""
    var = z3.Real(_var_name(threshold.selector))
    solver = z3.Solver()
    solver.add(var == _real(observed))
    solver.add(named(
        f"{threshold.selector} {threshold.op} {threshold.value:g}",
        _OPS[threshold.op](var, _real(threshold.value)),
    ))
    return solver.check() == z3.sat


def evaluate_threshold(threshold: Threshold, snapshot) -> ThresholdResult:
    metric   = snapshot.get(threshold.metric)
    observed = metric.get(threshold.selector) if metric is not None else None

    if observed is None or (isinstance(observed, float) and math.isnan(observed)):
        status = ThresholdStatus.NO_DATA
        observed = None
    else:
        status = ThresholdStatus.PASS if judge(threshold, observed) else ThresholdStatus.FAIL

    return ThresholdResult(
        metric=threshold.metric,
        source=threshold.source,
        status=status,
        observed=observed,
        abort_on_fail=threshold.abort_on_fail,
    )


def evaluate(thresholds, snapshot) -> "list[ThresholdResult]":
    """Judge every threshold against one snapshot."""
    return [evaluate_threshold(t, snapshot) for t in thresholds]


def verdict(results) -> bool:
    """Overall pass: every threshold passed.  No thresholds → pass."""
    return all(r.passed for r in results)


def should_abort(thresholds, snapshot, elapsed: float) -> "ThresholdResult | None":
    """
    Live check for abort-on-fail thresholds.

    Returns the first failing abort-on-fail result whose delay has elapsed,
    or None.  NO_DATA never aborts.
    """
    for t in thresholds:
        if not t.abort_on_fail or elapsed < t.delay_abort_eval:
            continue
        result = evaluate_threshold(t, snapshot)
        if result.status is ThresholdStatus.FAIL:
            return result
    return None
