"""
Virtual user pool.

One asyncio task per active VU.  Each VU loops:

    run scenario → record iteration → think-time pause → repeat

until it is retired by `reconcile()` or the pool is shut down.  Retirement
is graceful: a retiring VU finishes its current iteration and its
think-time pause before it exits.  Shutdown ends think-time pauses at once
and gives in-flight iterations `graceful_stop` seconds before cancelling
them.
"""
from __future__ import annotations

import asyncio
import itertools
import random
import re
import sys
from dataclasses import dataclass, field
from enum import Enum

from loadsim.engine.schedule import parse_duration
from loadsim.metrics import ITERATION_DURATION, ITERATION_ERRORS, ITERATIONS


class VUState(str, Enum):
    IDLE     = "idle"
    RUNNING  = "running"
    STOPPING = "stopping"


@dataclass
class VirtualUser:
    id:         int
    rng:        random.Random = field(repr=False)
    state:      VUState       = VUState.IDLE
    iterations: int           = 0
    scenario:   "str | None"  = None


@dataclass(frozen=True)
class ThinkTime:
    """Pause between iterations: fixed when low == high, else uniform in [low, high]."""
    low:  float = 0.0
    high: float = 0.0

    def __post_init__(self):
        if self.low < 0 or self.high < self.low:
            raise ValueError(f"Invalid think time range {self.low:g}-{self.high:g}s")

    @classmethod
    def parse(cls, value) -> "ThinkTime":
        """Accepts 1.5, "2s", "0.5-2.5s", "500ms-1s" or {min, max}."""
        if value is None:
            return cls()
        if isinstance(value, ThinkTime):
            return value
        if isinstance(value, dict):
            low = parse_duration(value.get("min", 0))
            return cls(low, parse_duration(value.get("max", low)))
        if isinstance(value, str) and "-" in value:
            lo, hi = (part.strip() for part in value.split("-", 1))
            # "0.5-2.5s": a bare left-hand number takes the right-hand unit
            unit = re.search(r"(ms|s|m|h)$", hi)
            if unit and re.fullmatch(r"\d+(?:\.\d+)?", lo):
                lo += unit.group(1)
            return cls(parse_duration(lo), parse_duration(hi))
        d = parse_duration(value)
        return cls(d, d)

    def draw(self, rng) -> float:
        if self.high == self.low:
            return self.low
        return rng.uniform(self.low, self.high)


class VirtualUserPool:
    def __init__(
        self,
        scenario,
        aggregator,
        think_time: "ThinkTime | None" = None,
        seed=None,
        verbose: bool = False,
    ):
        """
        Args:
            scenario:    async callable(vu) → optional extra think time (s)
            aggregator:  shared Aggregator; iteration metrics must be declared
            think_time:  pause after every iteration
            seed:        makes each VU's rng deterministic (seed + vu id)
        """
        self.scenario    = scenario
        self.aggregator  = aggregator
        self.think_time  = think_time or ThinkTime()
        self.seed        = seed
        self.verbose     = verbose
        self._ids        = itertools.count(1)
        self._users: dict[int, VirtualUser]  = {}
        self._tasks: dict[int, asyncio.Task] = {}
        self._stop: "asyncio.Event | None"   = None
        self.spawned     = 0

    # ── Sizing ────────────────────────────────────────────────────────────────

    @property
    def active_count(self) -> int:
        """VUs not marked for retirement."""
        return sum(1 for vu in self._users.values() if vu.state is not VUState.STOPPING)

    @property
    def running_count(self) -> int:
        """VUs whose task is still alive, retiring ones included."""
        return len(self._tasks)

    @property
    def users(self) -> list:
        return list(self._users.values())

    def reconcile(self, target: int) -> None:
        """Spawn or retire VUs so that exactly `target` are active."""
        if target < 0:
            raise ValueError(f"VU target must be non-negative, got {target}")
        if self._stop is None:
            self._stop = asyncio.Event()
        if self._stop.is_set():
            return

        active = [vu for vu in self._users.values() if vu.state is not VUState.STOPPING]
        if target > len(active):
            for _ in range(target - len(active)):
                self._spawn()
        elif target < len(active):
            # newest first
            for vu in sorted(active, key=lambda v: v.id, reverse=True)[:len(active) - target]:
                vu.state = VUState.STOPPING
            if self.verbose:
                print(f"[loadsim] retiring {len(active) - target} VU(s), target {target}", file=sys.stderr)

    def _spawn(self) -> VirtualUser:
        vu_id = next(self._ids)
        rng = random.Random(self.seed + vu_id) if self.seed is not None else random.Random()
        vu = VirtualUser(id=vu_id, rng=rng)
        self._users[vu_id] = vu
        self._tasks[vu_id] = asyncio.create_task(self._run_vu(vu), name=f"vu-{vu_id}")
        self.spawned += 1
        return vu

    # ── VU loop ───────────────────────────────────────────────────────────────

    async def _run_vu(self, vu: VirtualUser) -> None:
        loop = asyncio.get_running_loop()
        try:
            while not self._stop.is_set() and vu.state is not VUState.STOPPING:
                vu.state = VUState.RUNNING
                started = loop.time()
                extra = None
                try:
                    extra = await self.scenario(vu)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self.aggregator.add(ITERATION_ERRORS, 1, **_tags(vu))
                    if self.verbose:
                        print(f"[loadsim] vu {vu.id} iteration error: {exc!r}", file=sys.stderr)

                vu.iterations += 1
                tags = _tags(vu)
                self.aggregator.add(ITERATIONS, 1, **tags)
                self.aggregator.add(ITERATION_DURATION, (loop.time() - started) * 1000.0, **tags)

                if vu.state is VUState.RUNNING:
                    vu.state = VUState.IDLE
                delay = self.think_time.draw(vu.rng) + (extra or 0.0)
                if delay > 0:
                    await self._pause(delay)
                else:
                    await asyncio.sleep(0)
        finally:
            self._users.pop(vu.id, None)
            self._tasks.pop(vu.id, None)

    async def _pause(self, delay: float) -> None:
        """Think-time sleep that ends early on pool shutdown."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    # ── Shutdown ──────────────────────────────────────────────────────────────

    async def shutdown(self, graceful_stop: float = 30.0) -> int:
        """
        Stop every VU.  Returns the number of VUs that had to be cancelled
        because their iteration outlived `graceful_stop`.
        """
        if self._stop is None:
            self._stop = asyncio.Event()
        self._stop.set()
        for vu in self._users.values():
            vu.state = VUState.STOPPING

        tasks = list(self._tasks.values())
        if not tasks:
            return 0
        _, pending = await asyncio.wait(tasks, timeout=graceful_stop)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            if self.verbose:
                print(f"[loadsim] cancelled {len(pending)} VU(s) after {graceful_stop:g}s graceful stop",
                      file=sys.stderr)
        return len(pending)


def _tags(vu: VirtualUser) -> dict:
    return {"scenario": vu.scenario} if vu.scenario else {}
