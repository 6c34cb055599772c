"""
Run runner.

Two modes:

1. Config-driven (recommended):
       loadsim run                       # reads loadsim.yaml
       loadsim run --config soak.yaml    # explicit config
   loadsim reads the config, validates all of it up front, runs the engine
   and prints the summary.

2. Programmatic (for library use or custom scenarios):
       Engine(Schedule(stages), scenario, aggregator, thresholds).run()

Config file schema (loadsim.yaml):

    version: 1
    name: Vessel monitoring
    base_url: http://localhost:8080      # BASE_URL env var overrides
    timeout: 60s
    headers: {Accept: application/json}
    stages:
      - {duration: 30s, target: 5}
      - {duration: 39m, target: 8}
      - {duration: 30s, target: 0}
    think_time: 0.5-2.5s
    graceful_stop: 30s
    thresholds:
      http_req_duration: ["p(95)<600"]
      errors: ["rate<0.15"]
    metrics:                             # custom metric names; null disables
      errors:  errors
      latency: request_latency
      slow:    slow_requests
    scenarios:
      - name: engine
        weight: 0.5
        path: /api/sensors/engine
        expect_status: [200]
        max_duration: 150ms
        slow_threshold: 200ms
    output:
      results: results.json
"""
from __future__ import annotations

import asyncio
import json
import os
import signal
import sys
from pathlib import Path

import httpx

from loadsim import __version__
from loadsim.engine.pool import ThinkTime
from loadsim.engine.runtime import Engine, RunResult
from loadsim.engine.schedule import Schedule, parse_duration
from loadsim.metrics import (
    BUILTIN_METRICS,
    ITERATIONS,
    Aggregator,
    MetricKind,
    declare_builtins,
    metric_key,
    parse_metric_key,
)
from loadsim.scenarios import CustomMetrics, HttpScenario, ScenarioMix, WeightedChoice
from loadsim.thresholds import parse_thresholds

CONFIG_NAMES     = ["loadsim.yaml", ".loadsim.yaml", "loadsim.yml"]
DEFAULT_BASE_URL = "http://localhost:8080"
BASE_URL_ENV     = "BASE_URL"


# ── Config loading ─────────────────────────────────────────────────────────────

def load_config(path: "str | Path | None" = None) -> dict:
    """
    Load and normalise a loadsim.yaml config file.

    Searches the current directory by default.  Raises FileNotFoundError
    if not found and ValueError if any part of it is malformed.
    """
    import yaml

    candidates = [path] if path else CONFIG_NAMES
    config_path = None
    for c in candidates:
        if Path(c).exists():
            config_path = Path(c)
            break

    if config_path is None:
        searched = ", ".join(str(c) for c in candidates)
        raise FileNotFoundError(
            f"No loadsim config found.  Searched: {searched}\n"
            f"Run `loadsim init` to create one."
        )

    with open(config_path) as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"{config_path} is not valid YAML: {e}") from e

    return _normalise_config(raw, config_path.parent)


def _normalise_config(raw: dict, base_dir: Path) -> dict:
    """Validate every field and build the run objects.  Never returns a partial config."""
    if not isinstance(raw, dict):
        raise ValueError("Config must be a mapping at the top level.")
    cfg = dict(raw)

    if cfg.get("version", 1) != 1:
        raise ValueError(f"Unsupported config version {cfg.get('version')!r}; expected 1.")
    if "stages" not in cfg:
        raise ValueError("Config is missing required key: 'stages'")
    if not isinstance(cfg["stages"], list):
        raise ValueError("'stages' must be a list of {duration, target} objects")

    cfg["_schedule"]      = Schedule(cfg["stages"])
    cfg["_thresholds"]    = parse_thresholds(cfg.get("thresholds"))
    cfg["_think_time"]    = ThinkTime.parse(cfg.get("think_time"))
    cfg["_graceful_stop"] = parse_duration(cfg.get("graceful_stop", "30s"))
    cfg["_timeout"]       = parse_duration(cfg.get("timeout", "60s"))
    max_samples = cfg.get("max_samples", 100_000)
    if isinstance(max_samples, bool) or not isinstance(max_samples, int) or max_samples < 1:
        raise ValueError(f"'max_samples' must be an integer >= 1, got {max_samples!r}")
    cfg["_max_samples"] = max_samples

    headers = cfg.get("headers") or {}
    if not isinstance(headers, dict):
        raise ValueError("'headers' must be a mapping")
    cfg["_headers"] = {str(k): str(v) for k, v in headers.items()}

    # Custom metric names fed by every HTTP scenario
    raw_metrics = cfg.get("metrics") or {}
    if not isinstance(raw_metrics, dict):
        raise ValueError("'metrics' must be a mapping")
    unknown = set(raw_metrics) - {"errors", "latency", "slow"}
    if unknown:
        raise ValueError(f"Unknown keys in 'metrics': {', '.join(sorted(unknown))}")
    custom = CustomMetrics(**{
        key: None if value is None else _metric_name(value, f"metrics.{key}")
        for key, value in raw_metrics.items()
    })
    cfg["_custom_metrics"] = custom

    scenarios = [_parse_scenario(s, custom, len(cfg.get("scenarios") or []))
                 for s in _scenario_list(cfg)]
    names = [s.name for s in scenarios]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Duplicate scenario names: {', '.join(duplicates)}")
    cfg["_scenarios"] = scenarios
    cfg["_choice"]    = WeightedChoice([(s.weight, s) for s in scenarios])

    # Every custom metric, with its kind, checked against the built-ins
    declared = dict(custom.declarations())
    for s in scenarios:
        for counter in s.count_status.values():
            if declared.get(counter, MetricKind.COUNTER) is not MetricKind.COUNTER:
                raise ValueError(f"Metric {counter!r} is used both as a counter and a {declared[counter].value}")
            declared[counter] = MetricKind.COUNTER
    clash = sorted(set(declared) & set(BUILTIN_METRICS))
    if clash:
        raise ValueError(f"Custom metric names clash with built-in metrics: {', '.join(clash)}")
    cfg["_declared_metrics"] = declared

    _check_thresholds(cfg["_thresholds"], {**BUILTIN_METRICS, **declared})

    cfg["_base_dir"] = base_dir
    return cfg


# Selectors each metric kind's snapshot can answer
_SELECTORS = {
    MetricKind.COUNTER: {"count", "rate"},
    MetricKind.RATE:    {"rate"},
    MetricKind.TREND:   {"count", "avg", "min", "max", "med"},
    MetricKind.GAUGE:   {"value", "min", "max"},
}


def _check_thresholds(thresholds, known: dict) -> None:
    """Reject thresholds on unknown metrics or with a selector their kind never reports."""
    for t in thresholds:
        kind = known.get(t.base_metric)
        if kind is None:
            raise ValueError(
                f"Threshold '{t}' refers to unknown metric {t.base_metric!r}; "
                f"known metrics: {', '.join(sorted(known))}"
            )
        if t.selector in _SELECTORS[kind]:
            continue
        if kind is MetricKind.TREND and t.percentile is not None:
            continue
        allowed = sorted(_SELECTORS[kind]) + (["p(N)"] if kind is MetricKind.TREND else [])
        raise ValueError(
            f"Threshold '{t}' uses {t.selector!r}, which a {kind.value} metric does not "
            f"report; use one of {', '.join(allowed)}"
        )


def _metric_name(value, where: str) -> str:
    """A plain (untagged) metric name, or ValueError naming the config field."""
    if not isinstance(value, str):
        raise ValueError(f"'{where}' must be a metric name, got {value!r}")
    try:
        name, tags = parse_metric_key(value)
    except ValueError as e:
        raise ValueError(f"'{where}': {e}") from None
    if tags:
        raise ValueError(f"'{where}' must be a plain metric name without tags, got {value!r}")
    return name


def _scenario_list(cfg: dict) -> list:
    raw = cfg.get("scenarios")
    if not raw or not isinstance(raw, list):
        raise ValueError("Config needs a non-empty 'scenarios' list.")
    return raw


def _parse_scenario(raw, metrics: CustomMetrics, count: int) -> HttpScenario:
    if not isinstance(raw, dict):
        raise ValueError(f"Scenario entries must be mappings, got {raw!r}")
    for key in ("name", "path"):
        if not raw.get(key):
            raise ValueError(f"Scenario {raw!r} is missing required key: '{key}'")
    name = str(raw["name"])

    # a lone scenario may omit its weight
    weight = raw.get("weight", 1.0 if count == 1 else None)
    if weight is None:
        raise ValueError(f"Scenario {name!r} needs a 'weight' when several scenarios are declared")

    expect = raw.get("expect_status", [200])
    if isinstance(expect, int):
        expect = [expect]
    if not isinstance(expect, list) or not expect or not all(
            isinstance(s, int) and 100 <= s <= 599 for s in expect):
        raise ValueError(f"Scenario {name!r}: 'expect_status' must list HTTP status codes")

    raw_counts = raw.get("count_status") or {}
    if not isinstance(raw_counts, dict):
        raise ValueError(f"Scenario {name!r}: 'count_status' must map status codes to counter names")
    count_status = {}
    for status, counter in raw_counts.items():
        try:
            code = int(status)
        except (TypeError, ValueError):
            raise ValueError(f"Scenario {name!r}: invalid status {status!r} in 'count_status'") from None
        count_status[code] = _metric_name(counter, f"{name}.count_status.{status}")

    def _ms(key):
        value = raw.get(key)
        return None if value is None else parse_duration(value) * 1000.0

    return HttpScenario(
        name=name,
        path=str(raw["path"]),
        weight=weight,
        expect_status=tuple(expect),
        max_duration_ms=_ms("max_duration"),
        slow_ms=_ms("slow_threshold"),
        count_status=count_status,
        think_time=ThinkTime.parse(raw["think_time"]) if raw.get("think_time") else None,
        metrics=metrics,
    )


def resolve_base_url(cfg: dict, override: "str | None" = None) -> str:
    """--base-url beats the BASE_URL env var, which beats the config file."""
    return override or os.environ.get(BASE_URL_ENV) or cfg.get("base_url") or DEFAULT_BASE_URL


# ── Config-driven run ─────────────────────────────────────────────────────────

def _resolve_output_path(path: "str | Path | None", base_dir: Path) -> "str | None":
    """Resolve an output path relative to the config's base directory."""
    if not path:
        return None
    p = Path(path)
    if p.is_absolute():
        return str(p)
    return str(base_dir / p)


def run_from_config(
    config: "dict | str | Path | None" = None,
    output_path: "str | Path | None" = None,
    base_url: "str | None" = None,
    seed=None,
    verbose: bool = False,
    transport: "httpx.AsyncBaseTransport | None" = None,
) -> RunResult:
    """
    Run a load test as declared in a loadsim.yaml config file.

    Args:
        config:      path to config file, or already-loaded dict, or None (auto-discover)
        output_path: write the results JSON here (overrides output.results)
        base_url:    target base URL (overrides BASE_URL env and config)
        seed:        seed for every random draw (dispatch, think time, reservoirs)
        verbose:     print progress to stderr
        transport:   httpx transport to use instead of the network (tests)
    """
    cfg = config if isinstance(config, dict) else load_config(config)
    url = resolve_base_url(cfg, base_url)

    if verbose:
        print(f"[loadsim] target {url}, {len(cfg['_scenarios'])} scenario(s), "
              f"{len(cfg['_thresholds'])} threshold(s)", file=sys.stderr)

    result = asyncio.run(_execute(cfg, url, seed=seed, verbose=verbose, transport=transport))

    out_cfg  = cfg.get("output") or {}
    out_path = _resolve_output_path(output_path or out_cfg.get("results"), cfg["_base_dir"])
    if out_path:
        write_results(result, out_path)
        if verbose:
            print(f"[loadsim] results: {out_path}", file=sys.stderr)
    return result


async def _execute(cfg: dict, base_url: str, seed=None, verbose=False, transport=None) -> RunResult:
    aggregator = declare_builtins(Aggregator(max_samples=cfg["_max_samples"], seed=seed))
    for name, kind in cfg["_declared_metrics"].items():
        aggregator.declare(name, kind)
    for s in cfg["_scenarios"]:
        aggregator.declare_submetric(metric_key(ITERATIONS, {"scenario": s.name}))

    schedule = cfg["_schedule"]
    limits   = httpx.Limits(max_connections=max(100, schedule.max_target))
    headers  = {"User-Agent": f"loadsim/{__version__}", **cfg["_headers"]}

    async with httpx.AsyncClient(base_url=base_url, timeout=cfg["_timeout"], limits=limits,
                                 headers=headers, transport=transport) as client:
        for s in cfg["_scenarios"]:
            s.bind(client, aggregator)

        engine = Engine(
            schedule,
            ScenarioMix(cfg["_choice"]),
            aggregator=aggregator,
            thresholds=cfg["_thresholds"],
            think_time=cfg["_think_time"],
            graceful_stop=cfg["_graceful_stop"],
            seed=seed,
            name=cfg.get("name", ""),
            verbose=verbose,
        )
        installed = _install_signal_handlers(engine)
        try:
            return await engine.run()
        finally:
            loop = asyncio.get_running_loop()
            for sig in installed:
                loop.remove_signal_handler(sig)


def _install_signal_handlers(engine: Engine) -> list:
    """Route SIGINT/SIGTERM to a graceful engine stop where the platform allows it."""
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, engine.stop)
        except (NotImplementedError, RuntimeError, ValueError):
            continue
        installed.append(sig)
    return installed


def write_results(result: RunResult, output_path) -> None:
    """Write the results document as JSON."""
    Path(output_path).write_text(json.dumps(result.to_dict(), indent=2))


def load_results(source) -> RunResult:
    """Load a results document from a file path or "-" (stdin)."""
    if source == "-" or source is None:
        doc = json.load(sys.stdin)
    else:
        with open(source) as f:
            doc = json.load(f)
    return RunResult.from_dict(doc)
