"""
Run orchestration.

The engine owns one periodic tick, independent of VU execution:

    elapsed → schedule.target_at → pool.reconcile
            → vus / vus_max gauges
            → live abort-on-fail thresholds (every threshold_interval)

The run ends when the schedule is exhausted, `stop()` is called, or an
abort-on-fail threshold fails.  The pool is then shut down gracefully, a
final snapshot is taken and every threshold is judged against it.
"""
from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from loadsim.engine.pool import ThinkTime, VirtualUserPool
from loadsim.engine.schedule import Schedule
from loadsim.metrics import VUS, VUS_MAX, Aggregator, MetricSnapshot, declare_builtins
from loadsim.schema import RESULTS_SCHEMA, validate_results
from loadsim.thresholds import ThresholdResult, evaluate, should_abort, verdict


@dataclass(frozen=True)
class RunResult:
    metrics:      Mapping[str, MetricSnapshot]
    thresholds:   tuple
    duration:     float
    aborted:      bool         = False
    name:         str          = ""
    abort_reason: "str | None" = None

    @property
    def passed(self) -> bool:
        return not self.aborted and verdict(self.thresholds)

    def to_dict(self) -> dict:
        return {
            "schema":       RESULTS_SCHEMA,
            "name":         self.name,
            "duration_s":   round(self.duration, 3),
            "aborted":      self.aborted,
            "abort_reason": self.abort_reason,
            "passed":       self.passed,
            "metrics":      {name: m.to_dict() for name, m in sorted(self.metrics.items())},
            "thresholds":   [t.to_dict() for t in self.thresholds],
        }

    @classmethod
    def from_dict(cls, doc: dict) -> "RunResult":
        validate_results(doc)
        metrics = {name: MetricSnapshot.from_dict(name, raw) for name, raw in doc["metrics"].items()}
        return cls(
            metrics=MappingProxyType(metrics),
            thresholds=tuple(ThresholdResult.from_dict(t) for t in doc.get("thresholds", [])),
            duration=float(doc.get("duration_s", 0.0)),
            aborted=bool(doc.get("aborted", False)),
            name=doc.get("name", ""),
            abort_reason=doc.get("abort_reason"),
        )


class Engine:
    def __init__(
        self,
        schedule: Schedule,
        scenario,
        aggregator: "Aggregator | None" = None,
        thresholds=(),
        think_time: "ThinkTime | None" = None,
        tick: float = 0.1,
        graceful_stop: float = 30.0,
        threshold_interval: float = 2.0,
        seed=None,
        name: str = "",
        verbose: bool = False,
    ):
        self.schedule           = schedule
        self.aggregator         = declare_builtins(aggregator or Aggregator(seed=seed))
        self.thresholds         = tuple(thresholds)
        self.tick               = tick
        self.graceful_stop      = graceful_stop
        self.threshold_interval = threshold_interval
        self.name               = name
        self.verbose            = verbose
        self.pool = VirtualUserPool(
            scenario, self.aggregator, think_time=think_time, seed=seed, verbose=verbose,
        )
        self._stopped: "asyncio.Event | None" = None

        for t in self.thresholds:
            if t.percentile is not None:
                self.aggregator.request_percentile(t.percentile)
            if t.tags and t.base_metric in self.aggregator:
                self.aggregator.declare_submetric(t.metric)

    def stop(self) -> None:
        """External stop signal; safe to call from a signal handler."""
        if self._stopped is not None:
            self._stopped.set()

    async def run(self) -> RunResult:
        loop = asyncio.get_running_loop()
        self._stopped = asyncio.Event()
        start = loop.time()
        next_threshold_check = start + self.threshold_interval
        watch_aborts = any(t.abort_on_fail for t in self.thresholds)
        abort = None

        self.aggregator.add(VUS_MAX, self.schedule.max_target)

        if self.verbose:
            print(f"[loadsim] starting {self.schedule!r}", file=sys.stderr)

        try:
            while not self._stopped.is_set():
                now = loop.time()
                elapsed = now - start
                if self.schedule.is_finished(elapsed):
                    break

                self.pool.reconcile(self.schedule.target_at(elapsed))
                self.aggregator.add(VUS, self.pool.running_count)

                if watch_aborts and now >= next_threshold_check:
                    next_threshold_check = now + self.threshold_interval
                    abort = should_abort(self.thresholds, self.aggregator.snapshot(elapsed), elapsed)
                    if abort is not None:
                        print(f"[loadsim] threshold {abort.metric}: {abort.source} failed "
                              f"(observed {abort.observed:g}), aborting run", file=sys.stderr)
                        break

                remaining = self.schedule.total_duration - elapsed
                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=min(self.tick, remaining))
                except asyncio.TimeoutError:
                    pass
        finally:
            cancelled = await self.pool.shutdown(self.graceful_stop)
            if self.verbose and cancelled:
                print(f"[loadsim] {cancelled} VU(s) interrupted by graceful stop", file=sys.stderr)

        duration = loop.time() - start
        self.aggregator.add(VUS, self.pool.running_count)
        snapshot = self.aggregator.snapshot(duration)
        results  = tuple(evaluate(self.thresholds, snapshot))

        if self.verbose:
            print(f"[loadsim] finished in {duration:.1f}s, "
                  f"{sum(1 for r in results if r.passed)}/{len(results)} thresholds passed",
                  file=sys.stderr)

        return RunResult(
            metrics=snapshot,
            thresholds=results,
            duration=duration,
            aborted=abort is not None,
            name=self.name,
            abort_reason=f"{abort.metric}: {abort.source}" if abort is not None else None,
        )
