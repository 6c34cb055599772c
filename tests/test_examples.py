"""
Config and CLI tests: the bundled example config, config validation errors,
and the `loadsim` subcommands with their exit codes.

The example workload is validated through a real `python -m loadsim.cli`
subprocess; the other commands are driven in-process through `main()`.
"""
from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import pytest

from loadsim.cli      import EXIT_ERROR, EXIT_FAILED, EXIT_PASSED, main
from loadsim.metrics  import MetricKind
from loadsim.runner   import BASE_URL_ENV, DEFAULT_BASE_URL, load_config, resolve_base_url
from loadsim.scaffold import init_project

EXAMPLES_DIR = Path(__file__).parent.parent / "examples"
VESSEL_DIR   = EXAMPLES_DIR / "vessel-monitoring"


def _run_main(argv) -> int:
    with pytest.raises(SystemExit) as exc:
        main(argv)
    return exc.value.code


def _write(path: Path, text: str) -> Path:
    path.write_text(text)
    return path


_MINIMAL = """\
version: 1
stages:
  - {duration: 1s, target: 2}
scenarios:
  - name: home
    path: /
"""


# ── Bundled example ───────────────────────────────────────────────────────────

class TestVesselMonitoringExample:
    @pytest.fixture(scope="class")
    def cfg(self):
        return load_config(VESSEL_DIR / "loadsim.yaml")

    @pytest.fixture(scope="class")
    def validate_result(self):
        return subprocess.run(
            [sys.executable, "-m", "loadsim.cli", "validate",
             "--config", str(VESSEL_DIR / "loadsim.yaml")],
            capture_output=True, text=True,
        )

    def test_validates_cleanly(self, validate_result):
        assert validate_result.returncode == 0, validate_result.stderr
        assert "4 scenario(s)" in validate_result.stderr
        assert "peak 8 VUs" in validate_result.stderr

    def test_forty_minute_schedule(self, cfg):
        schedule = cfg["_schedule"]
        assert schedule.total_duration == 40 * 60
        assert schedule.target_at(30) == 5
        assert schedule.target_at(30 + 39 * 60) == 8
        assert schedule.target_at(40 * 60) == 0

    def test_scenario_mix(self, cfg):
        weights = {s.name: s.weight for s in cfg["_scenarios"]}
        assert weights == {"engine": 0.50, "navigation": 0.30, "diagnostics": 0.12, "alerts": 0.08}

    def test_scenario_settings(self, cfg):
        by_name = {s.name: s for s in cfg["_scenarios"]}
        assert by_name["engine"].max_duration_ms == 150
        assert by_name["diagnostics"].slow_ms == 500
        assert by_name["diagnostics"].think_time.low == 2.0
        assert by_name["alerts"].expect_status == (200, 500)
        assert by_name["alerts"].count_status == {500: "sensor_errors"}

    def test_custom_metrics(self, cfg):
        declared = cfg["_declared_metrics"]
        assert declared["errors"] is MetricKind.RATE
        assert declared["request_latency"] is MetricKind.TREND
        assert declared["slow_diagnostics"] is MetricKind.COUNTER
        assert declared["sensor_errors"] is MetricKind.COUNTER

    def test_thresholds(self, cfg):
        assert sorted(str(t) for t in cfg["_thresholds"]) == [
            "errors: rate<0.15",
            "http_req_duration: p(95)<600",
        ]


# ── Config validation ─────────────────────────────────────────────────────────

class TestConfigValidation:
    def test_minimal(self, tmp_path):
        cfg = load_config(_write(tmp_path / "loadsim.yaml", _MINIMAL))
        assert [s.weight for s in cfg["_scenarios"]] == [1.0]
        assert cfg["_thresholds"] == []
        assert cfg["_graceful_stop"] == 30.0

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="loadsim init"):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ValueError, match="not valid YAML"):
            load_config(_write(tmp_path / "loadsim.yaml", "stages: [\n"))

    @pytest.mark.parametrize("text,message", [
        ("version: 2\n" + _MINIMAL.split("\n", 1)[1], "Unsupported config version"),
        ("scenarios: [{name: a, path: /}]\n", "stages"),
        ("stages: [{duration: 1s, target: 1}]\n", "scenarios"),
        ("stages: [{duration: 1s, target: -1}]\nscenarios: [{name: a, path: /}]\n", "non-negative"),
        ("stages: [{duration: soon, target: 1}]\nscenarios: [{name: a, path: /}]\n", "Invalid duration"),
        ("stages: [{duration: 1s, target: 1}]\n"
         "scenarios: [{name: a, path: /, weight: 0.5}, {name: b, path: /b, weight: 0.4}]\n",
         "sum to 1.0"),
        ("stages: [{duration: 1s, target: 1}]\n"
         "scenarios: [{name: a, path: /, weight: 0.5}, {name: a, path: /b, weight: 0.5}]\n",
         "Duplicate"),
        ("stages: [{duration: 1s, target: 1}]\n"
         "scenarios: [{name: a, path: /}, {name: b, path: /b}]\n", "needs a 'weight'"),
        ("stages: [{duration: 1s, target: 1}]\n"
         "scenarios: [{name: a, path: /, expect_status: [700]}]\n", "expect_status"),
        ("stages: [{duration: 1s, target: 1}]\nthresholds: {errors: [p95<1]}\n"
         "scenarios: [{name: a, path: /}]\n", "Unparseable threshold"),
        ("stages: [{duration: 1s, target: 1}]\nmetrics: {errors: http_reqs}\n"
         "scenarios: [{name: a, path: /}]\n", "built-in"),
        ("stages: [{duration: 1s, target: 1}]\nmetrics: {bogus: x}\n"
         "scenarios: [{name: a, path: /}]\n", "Unknown keys"),
        ("stages: [{duration: 1s, target: 1}]\n"
         "scenarios: [{name: a, path: /, count_status: {500: errors}}]\n", "counter"),
        ("stages: [{duration: 1s, target: 1}]\nthresholds: {errors: ['p(95)<1']}\n"
         "scenarios: [{name: a, path: /}]\n", "rate metric does not report"),
        ("stages: [{duration: 1s, target: 1}]\nthresholds: {http_reqs: ['avg<5']}\n"
         "scenarios: [{name: a, path: /}]\n", "counter metric does not report"),
        ("stages: [{duration: 1s, target: 1}]\nthresholds: {vus: ['p(99)<5']}\n"
         "scenarios: [{name: a, path: /}]\n", "gauge metric does not report"),
        ("stages: [{duration: 1s, target: 1}]\nthresholds: {erorrs: ['rate<0.15']}\n"
         "scenarios: [{name: a, path: /}]\n", "unknown metric 'erorrs'"),
        ("stages: [{duration: 1s, target: 1}]\n"
         "thresholds: {'http_req_duraton{scenario:a}': ['p(95)<600']}\n"
         "scenarios: [{name: a, path: /}]\n", "unknown metric 'http_req_duraton'"),
        ("stages: [{duration: 1s, target: 1}]\nthresholds: {slow_requests: ['rate<1']}\n"
         "metrics: {slow: null}\nscenarios: [{name: a, path: /}]\n", "unknown metric 'slow_requests'"),
        ("stages: [{duration: 1s, target: 1}]\nmax_samples: null\n"
         "scenarios: [{name: a, path: /}]\n", "max_samples"),
        ("stages: [{duration: 1s, target: 1}]\nmax_samples: 0\n"
         "scenarios: [{name: a, path: /}]\n", "max_samples"),
        ("stages: [{duration: 1s, target: 1}]\n"
         "scenarios: [{name: a, path: /, count_status: [500]}]\n", "count_status"),
        ("stages: [{duration: 1s, target: 1}]\n"
         "scenarios: [{name: a, path: /, count_status: {500: 'bad name'}}]\n", "count_status"),
        ("stages: [{duration: 1s, target: 1}]\nmetrics: {errors: 5}\n"
         "scenarios: [{name: a, path: /}]\n", "metrics.errors"),
        ("stages: [{duration: 1s, target: 1}]\nmetrics: {latency: 'lat{scenario:a}'}\n"
         "scenarios: [{name: a, path: /}]\n", "metrics.latency"),
    ])
    def test_rejected(self, tmp_path, text, message):
        with pytest.raises(ValueError, match=message):
            load_config(_write(tmp_path / "loadsim.yaml", text))

    @pytest.mark.parametrize("thresholds", [
        {"http_reqs": ["count>0", "rate>1"]},
        {"errors": ["rate<0.15"], "checks": ["rate>0.9"]},
        {"http_req_duration": ["avg<200", "med<150", "min>0", "max<5000", "count>1", "p(99.9)<900"]},
        {"vus": ["value<=8", "max<10"]},
        {"iteration_duration{scenario:home}": ["p(95)<1000"]},
        {"slow_requests": ["count<5"], "request_latency": ["p(90)<300"]},
    ])
    def test_accepted_thresholds(self, tmp_path, thresholds):
        text = _MINIMAL + "thresholds: " + json.dumps(thresholds) + "\n"
        cfg = load_config(_write(tmp_path / "loadsim.yaml", text))
        assert len(cfg["_thresholds"]) == sum(len(v) for v in thresholds.values())

    def test_disabled_custom_metric(self, tmp_path):
        text = _MINIMAL + "metrics: {slow: null}\n"
        cfg = load_config(_write(tmp_path / "loadsim.yaml", text))
        assert "slow_requests" not in cfg["_declared_metrics"]
        assert "errors" in cfg["_declared_metrics"]


class TestBaseUrl:
    def test_precedence(self, monkeypatch):
        cfg = {"base_url": "http://from-config"}
        monkeypatch.delenv(BASE_URL_ENV, raising=False)
        assert resolve_base_url({}) == DEFAULT_BASE_URL
        assert resolve_base_url(cfg) == "http://from-config"
        monkeypatch.setenv(BASE_URL_ENV, "http://from-env")
        assert resolve_base_url(cfg) == "http://from-env"
        assert resolve_base_url(cfg, "http://from-flag") == "http://from-flag"


# ── CLI ───────────────────────────────────────────────────────────────────────

def _results_doc(status: str) -> dict:
    return {
        "schema": "loadsim.results.v1",
        "name": "Saved",
        "duration_s": 12.5,
        "aborted": False,
        "metrics": {
            "http_reqs": {"type": "counter", "values": {"count": 40, "rate": 3.2}},
            "checks":    {"type": "rate", "values": {"rate": 1.0, "passes": 40, "fails": 0}},
            "errors":    {"type": "rate", "values": {"rate": 0.0, "passes": 0, "fails": 40}},
        },
        "thresholds": [
            {"metric": "errors", "threshold": "rate<0.15", "status": status, "observed": 0.0},
        ],
    }


class TestCli:
    def test_validate_ok(self, tmp_path, capsys):
        path = _write(tmp_path / "loadsim.yaml", _MINIMAL)
        assert _run_main(["validate", "--config", str(path)]) == EXIT_PASSED
        assert "1 scenario(s)" in capsys.readouterr().err

    def test_validate_error(self, tmp_path, capsys):
        path = _write(tmp_path / "loadsim.yaml", "stages: []\nscenarios: [{name: a, path: /}]\n")
        assert _run_main(["validate", "--config", str(path)]) == EXIT_ERROR
        assert "error:" in capsys.readouterr().err

    @pytest.mark.parametrize("extra", [
        "max_samples: null\n",
        "thresholds: {erorrs: ['rate<0.15']}\n",
    ])
    def test_bad_values_reported_not_raised(self, tmp_path, capsys, extra):
        path = _write(tmp_path / "loadsim.yaml", _MINIMAL + extra)
        assert _run_main(["validate", "--config", str(path)]) == EXIT_ERROR
        assert _run_main(["run", "--config", str(path)]) == EXIT_ERROR
        assert capsys.readouterr().err.count("error:") == 2

    def test_run_missing_config(self, tmp_path, capsys):
        assert _run_main(["run", "--config", str(tmp_path / "missing.yaml")]) == EXIT_ERROR
        assert "loadsim init" in capsys.readouterr().err

    @pytest.mark.parametrize("status,code", [("pass", EXIT_PASSED), ("fail", EXIT_FAILED),
                                             ("no_data", EXIT_FAILED)])
    def test_report_exit_codes(self, tmp_path, capsys, status, code):
        path = tmp_path / "results.json"
        path.write_text(json.dumps(_results_doc(status)))
        assert _run_main(["report", "--results", str(path)]) == code
        out = capsys.readouterr().out
        assert "Saved load test complete" in out
        assert "HTTP Reqs:  40 total" in out

    def test_report_rejects_foreign_document(self, tmp_path, capsys):
        path = tmp_path / "results.json"
        path.write_text(json.dumps({"schema": "other.results.v1"}))
        assert _run_main(["report", "--results", str(path)]) == EXIT_ERROR
        assert "invalid results document" in capsys.readouterr().err

    def test_report_missing_file(self, tmp_path):
        assert _run_main(["report", "--results", str(tmp_path / "none.json")]) == EXIT_ERROR

    def test_init_scaffolds_valid_config(self, tmp_path, capsys):
        assert _run_main(["init", str(tmp_path / "proj")]) == EXIT_PASSED
        cfg = load_config(tmp_path / "proj" / "loadsim.yaml")
        assert [s.name for s in cfg["_scenarios"]] == ["home", "health"]
        assert (tmp_path / "proj" / ".gitignore").exists()
        assert "created  loadsim.yaml" in capsys.readouterr().out

    def test_init_keeps_existing_files(self, tmp_path, capsys):
        _write(tmp_path / "loadsim.yaml", _MINIMAL)
        init_project(tmp_path)
        assert (tmp_path / "loadsim.yaml").read_text() == _MINIMAL
        assert "skipped  loadsim.yaml" in capsys.readouterr().out
