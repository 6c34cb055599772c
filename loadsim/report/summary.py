"""
Text summary renderer.

Produces the end-of-run report printed to stdout:

     ✓ Vessel monitoring load test complete
     ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
       Checks:     1204 passed, 31 failed
       HTTP Reqs:  1235 total
       Duration:   2400s
       Scenarios:  engine 50.2%, navigation 29.7%, diagnostics 12.1%, alerts 8.0%
     ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
       Request Metrics:
         - Avg Duration: 48ms
         - P95 Duration: 131ms
         - P99 Duration: 402ms
       Custom Metrics:
         - errors: 2.51%
         - request_latency: avg 48ms, p95 131ms
         - sensor_errors: 12
     ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
       Thresholds:
         ✓ errors: rate<0.15 (0.0251)
         ✓ http_req_duration: p(95)<600 (131)
     ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

Pure: takes a RunResult, returns a string.  Metrics that are absent render
as zero or "n/a"; nothing here raises on a sparse result.
"""
from __future__ import annotations

from loadsim.metrics import (
    BUILTIN_METRICS,
    CHECKS,
    HTTP_REQ_DURATION,
    HTTP_REQS,
    ITERATIONS,
    MetricKind,
    parse_metric_key,
)
from loadsim.thresholds import ThresholdStatus

RULE = "━" * 40

_STATUS_SYMBOL = {
    ThresholdStatus.PASS:    "✓",
    ThresholdStatus.FAIL:    "✗",
    ThresholdStatus.NO_DATA: "?",
}


def _value(result, metric: str, key: str, default=None):
    m = result.metrics.get(metric)
    if m is None:
        return default
    v = m.values.get(key)
    return default if v is None else v


def _ms(value) -> str:
    return "n/a" if value is None else f"{round(value)}ms"


def _num(value) -> str:
    return f"{value:g}" if isinstance(value, float) else str(value)


def _scenario_shares(result) -> "str | None":
    counts = {}
    for key, m in result.metrics.items():
        name, tags = parse_metric_key(key)
        if name == ITERATIONS and set(tags) == {"scenario"}:
            counts[tags["scenario"]] = m.values.get("count", 0) or 0
    total = sum(counts.values())
    if not counts or not total:
        return None
    ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return ", ".join(f"{name} {count / total:.1%}" for name, count in ordered)


def _custom_line(name: str, metric) -> str:
    v = metric.values
    if metric.kind is MetricKind.RATE:
        return f"{name}: {v.get('rate', 0.0) * 100:.2f}%"
    if metric.kind is MetricKind.COUNTER:
        return f"{name}: {_num(v.get('count', 0))}"
    if metric.kind is MetricKind.TREND:
        return f"{name}: avg {_ms(v.get('avg'))}, p95 {_ms(v.get('p(95)'))}"
    value = v.get("value")
    return f"{name}: {'n/a' if value is None else _num(value)}"


def render(result, indent: str = " ", title: "str | None" = None) -> str:
    """Render a RunResult as the end-of-run text summary."""
    i  = indent
    ok = result.passed
    heading = title or (f"{result.name} load test complete" if result.name else "Load test complete")
    if result.aborted:
        heading += " (aborted)"

    checks_passed = _value(result, CHECKS, "passes", 0)
    checks_failed = _value(result, CHECKS, "fails", 0)

    lines = [
        "",
        f"{i}{'✓' if ok else '✗'} {heading}",
        f"{i}{RULE}",
        f"{i}  Checks:     {checks_passed} passed, {checks_failed} failed",
        f"{i}  HTTP Reqs:  {_num(_value(result, HTTP_REQS, 'count', 0))} total",
        f"{i}  Duration:   {round(result.duration or 0)}s",
    ]
    shares = _scenario_shares(result)
    if shares:
        lines.append(f"{i}  Scenarios:  {shares}")

    lines += [
        f"{i}{RULE}",
        f"{i}  Request Metrics:",
        f"{i}    - Avg Duration: {_ms(_value(result, HTTP_REQ_DURATION, 'avg'))}",
        f"{i}    - P95 Duration: {_ms(_value(result, HTTP_REQ_DURATION, 'p(95)'))}",
        f"{i}    - P99 Duration: {_ms(_value(result, HTTP_REQ_DURATION, 'p(99)'))}",
    ]

    custom = sorted(
        (name, m) for name, m in result.metrics.items()
        if name not in BUILTIN_METRICS and not parse_metric_key(name)[1]
    )
    if custom:
        lines.append(f"{i}  Custom Metrics:")
        for name, m in custom:
            lines.append(f"{i}    - {_custom_line(name, m)}")

    if result.thresholds:
        lines += [f"{i}{RULE}", f"{i}  Thresholds:"]
        for t in sorted(result.thresholds, key=lambda t: (t.metric, t.source)):
            observed = "no data" if t.observed is None else f"{t.observed:.4g}"
            lines.append(f"{i}    {_STATUS_SYMBOL[t.status]} {t.metric}: {t.source} ({observed})")
    if result.abort_reason:
        lines.append(f"{i}  Aborted by threshold {result.abort_reason}")

    lines += [f"{i}{RULE}", ""]
    return "\n".join(lines) + "\n"
