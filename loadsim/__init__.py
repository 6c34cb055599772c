"""
loadsim: virtual-user HTTP load generator

Ramp simulated users up and down in stages, record latency and error
metrics, and judge the run against pass/fail thresholds.

Quick start
-----------
  pip install loadsim
  loadsim init
  # edit loadsim.yaml: stages, scenarios, thresholds
  loadsim run

Layers
------
  Schedule     stages            → target VU count over time
  Pool         virtual users     → observations
  Aggregator   observations      → counters, rates, trends
  Thresholds   aggregates        → pass / fail (Z3)
  Report       run result        → text summary, results.json
"""

__version__ = "0.1.0"

from loadsim.engine.runtime import Engine, RunResult
from loadsim.engine.schedule import Schedule, Stage
from loadsim.metrics import Aggregator, MetricKind, Observation

__all__ = [
    "Engine", "RunResult", "Schedule", "Stage",
    "Aggregator", "MetricKind", "Observation",
]
