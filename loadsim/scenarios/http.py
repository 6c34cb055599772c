"""
HTTP scenario variant.

One iteration issues one GET against a configured path and judges the
response by status code and wall-clock time.  The body is never read
beyond what httpx buffers.

    scenarios:
      - name: diagnostics
        weight: 0.12
        path: /api/analytics/diagnostics
        expect_status: [200]
        max_duration: 1500ms       # check: duration < 1500ms
        slow_threshold: 500ms      # slow-request counter above this
        think_time: 2-7s           # extra pause after this variant
        count_status:
          500: sensor_errors       # counter bumped on status 500

Transport errors (timeouts, refused connections) and malformed URLs are
recorded as status 0 and fail every check; they never escape the iteration.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field

import httpx

from loadsim.engine.pool import ThinkTime
from loadsim.metrics import CHECKS, HTTP_REQ_DURATION, HTTP_REQ_FAILED, HTTP_REQS, MetricKind


@dataclass(frozen=True)
class CustomMetrics:
    """Names of the per-run custom metrics every HTTP variant feeds."""
    errors:  "str | None" = "errors"            # Rate: iteration had a failed check
    latency: "str | None" = "request_latency"   # Trend: request duration (ms)
    slow:    "str | None" = "slow_requests"     # Counter: duration above slow_ms

    def declarations(self) -> dict:
        out = {}
        if self.errors:
            out[self.errors] = MetricKind.RATE
        if self.latency:
            out[self.latency] = MetricKind.TREND
        if self.slow:
            out[self.slow] = MetricKind.COUNTER
        return out


@dataclass
class HttpScenario:
    name:            str
    path:            str
    weight:          float                = 1.0
    expect_status:   tuple                = (200,)
    max_duration_ms: "float | None"       = None
    slow_ms:         "float | None"       = None
    count_status:    dict                 = field(default_factory=dict)
    think_time:      "ThinkTime | None"   = None
    client:          "httpx.AsyncClient | None" = field(default=None, repr=False)
    aggregator:      object               = field(default=None, repr=False)
    metrics:         CustomMetrics        = field(default_factory=CustomMetrics)

    def bind(self, client: httpx.AsyncClient, aggregator) -> "HttpScenario":
        self.client     = client
        self.aggregator = aggregator
        return self

    def checks(self, status: int, duration_ms: float) -> "list[tuple[str, bool]]":
        expected = " or ".join(str(s) for s in self.expect_status)
        out = [(f"{self.name} status is {expected}", status in self.expect_status)]
        if self.max_duration_ms is not None:
            out.append((f"{self.name} duration < {self.max_duration_ms:g}ms",
                        duration_ms < self.max_duration_ms))
        return out

    async def run(self, vu) -> "float | None":
        if self.client is None or self.aggregator is None:
            raise RuntimeError(f"Scenario {self.name!r} is not bound to a client and aggregator")

        started = time.perf_counter()
        try:
            response = await self.client.get(self.path)
            status = response.status_code
        except (httpx.HTTPError, httpx.InvalidURL):
            status = 0
        duration_ms = (time.perf_counter() - started) * 1000.0

        self.record(status, duration_ms)
        return self.think_time.draw(vu.rng) if self.think_time else None

    def record(self, status: int, duration_ms: float) -> bool:
        """Record one response; returns True when every check passed."""
        agg  = self.aggregator
        tags = {"scenario": self.name, "status": str(status)}

        agg.add(HTTP_REQS, 1, **tags)
        agg.add(HTTP_REQ_DURATION, duration_ms, **tags)
        agg.add(HTTP_REQ_FAILED, status == 0 or status >= 400, **tags)

        success = True
        for check, ok in self.checks(status, duration_ms):
            agg.add(CHECKS, ok, scenario=self.name, check=check)
            success = success and ok

        m = self.metrics
        if m.errors:
            agg.add(m.errors, not success, **tags)
        if m.latency:
            agg.add(m.latency, duration_ms, **tags)
        if m.slow and self.slow_ms is not None and duration_ms > self.slow_ms:
            agg.add(m.slow, 1, **tags)
        counter = self.count_status.get(status)
        if counter:
            agg.add(counter, 1, **tags)
        return success
