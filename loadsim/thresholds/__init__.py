"""
loadsim.thresholds: pass/fail rules over aggregated metrics.

    from loadsim.thresholds import parse_thresholds, evaluate, verdict

    thresholds = parse_thresholds({"http_req_duration": ["p(95)<600"]})
    results    = evaluate(thresholds, aggregator.snapshot())
    verdict(results)      # True when every threshold passed
"""

from loadsim.thresholds.expression import Threshold, parse_expression, parse_thresholds
from loadsim.thresholds.engine import (
    ThresholdResult,
    ThresholdStatus,
    evaluate,
    evaluate_threshold,
    should_abort,
    verdict,
)

__all__ = [
    "Threshold", "parse_expression", "parse_thresholds",
    "ThresholdResult", "ThresholdStatus",
    "evaluate", "evaluate_threshold", "should_abort", "verdict",
]
