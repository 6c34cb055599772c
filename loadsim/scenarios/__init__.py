"""
loadsim.scenarios: what a VU does each iteration.

    from loadsim.scenarios import HttpScenario, ScenarioMix, WeightedChoice

    mix = ScenarioMix(WeightedChoice([
        (0.7, HttpScenario("read",  "/items")),
        (0.3, HttpScenario("write", "/items/new")),
    ]))
"""

from loadsim.scenarios.dispatch import ScenarioMix, WeightedChoice
from loadsim.scenarios.http import CustomMetrics, HttpScenario

__all__ = ["ScenarioMix", "WeightedChoice", "CustomMetrics", "HttpScenario"]
