"""
Threshold expressions.

A threshold binds an expression to a metric (or tag-filtered sub-metric):

    thresholds:
      http_req_duration:                 ["p(95)<600", "avg<200"]
      errors:                            ["rate<0.15"]
      "http_req_duration{scenario:diag}": ["p(99)<1500"]
      checks:
        - threshold: "rate>0.9"
          abort_on_fail: true
          delay_abort_eval: 30s

Expression grammar:  <selector> <op> <number>

    selector   count | rate | value | avg | min | max | med | p(N)
    op         <  <=  >  >=  ==  ===  !=
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from loadsim.engine.schedule import parse_duration
from loadsim.metrics import metric_key, parse_metric_key, percentile_label

OPERATORS = ("<=", ">=", "===", "==", "!=", "<", ">")

_SELECTORS = {"count", "rate", "value", "avg", "min", "max", "med"}
_EXPR_RE = re.compile(
    r"^\s*(?P<sel>[a-z]+(?:\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\))?)"
    r"\s*(?P<op><=|>=|===|==|!=|<|>)"
    r"\s*(?P<val>[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?)\s*$"
)


@dataclass(frozen=True)
class Threshold:
    metric:           str     # canonical metric key, tags included
    source:           str     # expression as written
    selector:         str     # key into MetricSnapshot.values
    op:               str
    value:            float
    abort_on_fail:    bool  = False
    delay_abort_eval: float = 0.0
    tags:             dict  = field(default_factory=dict, compare=False, hash=False)

    @property
    def base_metric(self) -> str:
        return parse_metric_key(self.metric)[0]

    @property
    def percentile(self) -> "float | None":
        if self.selector.startswith("p("):
            return float(self.selector[2:-1])
        return None

    def __str__(self):
        return f"{self.metric}: {self.source}"


def parse_expression(metric: str, expr: str, *, abort_on_fail: bool = False,
                     delay_abort_eval=0) -> Threshold:
    """Parse one expression.  Raises ValueError with the offending text."""
    if not isinstance(expr, str):
        raise ValueError(f"Threshold for {metric!r} must be a string, got {expr!r}")
    name, tags = parse_metric_key(metric)
    m = _EXPR_RE.match(expr)
    if not m:
        raise ValueError(
            f"Unparseable threshold {expr!r} on {metric!r}; "
            f"expected '<selector><op><number>', e.g. 'p(95)<600' or 'rate<0.15'"
        )

    selector = m.group("sel").replace(" ", "")
    if m.group("pct") is not None:
        if not selector.startswith("p("):
            raise ValueError(f"Unknown aggregation {selector!r} in threshold {expr!r}")
        pct = float(m.group("pct"))
        if pct > 100:
            raise ValueError(f"Percentile out of range in threshold {expr!r}")
        selector = percentile_label(pct)
    elif selector not in _SELECTORS:
        raise ValueError(
            f"Unknown aggregation {selector!r} in threshold {expr!r}; "
            f"expected one of {', '.join(sorted(_SELECTORS))} or p(N)"
        )

    return Threshold(
        metric=metric_key(name, tags),
        source=expr.strip(),
        selector=selector,
        op=m.group("op"),
        value=float(m.group("val")),
        abort_on_fail=bool(abort_on_fail),
        delay_abort_eval=parse_duration(delay_abort_eval),
        tags=tags,
    )


def parse_thresholds(raw: "dict | None") -> "list[Threshold]":
    """
    Parse the `thresholds:` config block.

    Each metric maps to an expression, a list of expressions, or a list of
    {threshold, abort_on_fail, delay_abort_eval} objects.
    """
    if not raw:
        return []
    if not isinstance(raw, dict):
        raise ValueError("'thresholds' must be a mapping of metric name → expressions")

    out = []
    for metric, entries in raw.items():
        if isinstance(entries, (str, dict)):
            entries = [entries]
        if not isinstance(entries, list) or not entries:
            raise ValueError(f"Thresholds for {metric!r} must be a non-empty list")
        for entry in entries:
            if isinstance(entry, dict):
                if "threshold" not in entry:
                    raise ValueError(f"Threshold object for {metric!r} is missing 'threshold'")
                out.append(parse_expression(
                    metric, entry["threshold"],
                    abort_on_fail=entry.get("abort_on_fail", False),
                    delay_abort_eval=entry.get("delay_abort_eval", 0),
                ))
            else:
                out.append(parse_expression(metric, entry))
    return out
