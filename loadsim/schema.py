"""
JSON schema definitions and validators for the loadsim results document.

`loadsim run` writes one document per run:

  results.json  → final metric snapshot, threshold outcomes, run duration

    {
      "schema":     "loadsim.results.v1",
      "name":       "Vessel monitoring",
      "duration_s": 2400.3,
      "aborted":    false,
      "passed":     true,
      "metrics":    {"http_req_duration": {"type": "trend", "values": {...}}, ...},
      "thresholds": [{"metric": ..., "threshold": "p(95)<600", "status": "pass", ...}]
    }

The "schema" field lets `loadsim report` verify compatibility.
"""

RESULTS_SCHEMA = "loadsim.results.v1"

_METRIC_TYPES     = {"counter", "rate", "trend", "gauge"}
_THRESHOLD_STATES = {"pass", "fail", "no_data"}


def validate_results(doc: dict) -> None:
    """Raise ValueError if the results document is malformed."""
    if not isinstance(doc, dict) or doc.get("schema") != RESULTS_SCHEMA:
        got = doc.get("schema") if isinstance(doc, dict) else doc
        raise ValueError(f"Expected schema '{RESULTS_SCHEMA}', got {got!r}.")
    if not isinstance(doc.get("metrics"), dict):
        raise ValueError("results.json must contain a 'metrics' object.")
    for name, metric in doc["metrics"].items():
        if not isinstance(metric, dict) or metric.get("type") not in _METRIC_TYPES:
            raise ValueError(f"Metric {name!r} has no valid 'type'.")
        if not isinstance(metric.get("values", {}), dict):
            raise ValueError(f"Metric {name!r} 'values' must be an object.")
    if not isinstance(doc.get("thresholds", []), list):
        raise ValueError("'thresholds' must be a list.")
    for t in doc.get("thresholds", []):
        if not isinstance(t, dict) or t.get("status") not in _THRESHOLD_STATES:
            raise ValueError(f"Malformed threshold result: {t!r}")
        if "metric" not in t or "threshold" not in t:
            raise ValueError(f"Threshold result needs 'metric' and 'threshold': {t!r}")
    if not isinstance(doc.get("duration_s", 0), (int, float)):
        raise ValueError("'duration_s' must be a number.")
