"""
loadsim.metrics: streaming aggregates for VU observations.

    from loadsim.metrics import Aggregator, MetricKind

    agg = Aggregator()
    agg.declare("errors", MetricKind.RATE)
    agg.add("errors", False, scenario="engine")
    agg.snapshot()["errors"].values["rate"]     # 0.0
"""

from loadsim.metrics.aggregator import (
    Aggregator,
    MetricKind,
    MetricSnapshot,
    Observation,
    metric_key,
    parse_metric_key,
    percentile_label,
)

__all__ = [
    "Aggregator", "MetricKind", "MetricSnapshot", "Observation",
    "metric_key", "parse_metric_key", "percentile_label",
]

# Built-in metrics declared by the engine and the HTTP scenario.
HTTP_REQS          = "http_reqs"
HTTP_REQ_DURATION  = "http_req_duration"
HTTP_REQ_FAILED    = "http_req_failed"
CHECKS             = "checks"
ITERATIONS         = "iterations"
ITERATION_DURATION = "iteration_duration"
ITERATION_ERRORS   = "iteration_errors"
VUS                = "vus"
VUS_MAX            = "vus_max"

BUILTIN_METRICS = {
    HTTP_REQS:          MetricKind.COUNTER,
    HTTP_REQ_DURATION:  MetricKind.TREND,
    HTTP_REQ_FAILED:    MetricKind.RATE,
    CHECKS:             MetricKind.RATE,
    ITERATIONS:         MetricKind.COUNTER,
    ITERATION_DURATION: MetricKind.TREND,
    ITERATION_ERRORS:   MetricKind.COUNTER,
    VUS:                MetricKind.GAUGE,
    VUS_MAX:            MetricKind.GAUGE,
}


def declare_builtins(aggregator: Aggregator) -> Aggregator:
    for name, kind in BUILTIN_METRICS.items():
        aggregator.declare(name, kind)
    return aggregator
