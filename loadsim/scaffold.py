"""
Scaffold a new loadsim project with the minimal file set.
Called by `loadsim init [DIR]`.
"""
from pathlib import Path

_CONFIG_YAML = '''\
# loadsim.yaml: load test configuration
#
# Run it with: loadsim run
# Exit status is 0 when every threshold passes and 2 when any fails,
# so `loadsim run` can gate a CI pipeline directly.
version: 1
name: My service

# Target.  The BASE_URL environment variable and --base-url override this.
base_url: http://localhost:8080
timeout: 60s

# Target VU count ramps linearly from one stage's target to the next.
stages:
  - duration: 30s
    target: 5
  - duration: 2m
    target: 5
  - duration: 30s
    target: 0

# Pause after every iteration: fixed ("1s") or a range ("0.5-2.5s").
think_time: 0.5-2.5s

# Pass/fail rules.  Durations are in milliseconds.
thresholds:
  http_req_duration: ["p(95)<500"]
  errors: ["rate<0.05"]

# Weighted scenarios: one is drawn per iteration; weights must sum to 1.
scenarios:
  - name: home
    weight: 0.8
    path: /
    expect_status: [200]
    max_duration: 300ms
  - name: health
    weight: 0.2
    path: /health
    expect_status: [200]

# Optional: where to save the results document.
output:
  results: results.json
'''

_GITIGNORE = '''\
results.json
__pycache__/
*.pyc
'''


def init_project(target: Path) -> None:
    target = target.resolve()
    target.mkdir(parents=True, exist_ok=True)

    files = {
        target / "loadsim.yaml": _CONFIG_YAML,
        target / ".gitignore":   _GITIGNORE,
    }

    created = []
    skipped = []
    for path, content in files.items():
        if path.exists():
            skipped.append(path.relative_to(target))
        else:
            path.write_text(content)
            created.append(path.relative_to(target))

    print(f"\n✓ loadsim project initialised in {target}\n")
    for f in created:
        print(f"  created  {f}")
    for f in skipped:
        print(f"  skipped  {f}  (already exists)")

    print("""
Next steps:

  1. Edit  loadsim.yaml: point base_url at your service and list the
     paths to exercise under scenarios:, with weights summing to 1.

  2. Set thresholds: for the latency and error rate you can accept.

  3. Check it:  loadsim validate
     Run it:    loadsim run

  Add `loadsim run` to your Makefile or CI pipeline.
""")
