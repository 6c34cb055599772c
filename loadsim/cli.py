"""
loadsim CLI

Primary usage, driven by loadsim.yaml config file:

    loadsim run                          # run, print summary to stdout
    loadsim run --config path/to/loadsim.yaml
    loadsim run --base-url http://staging:8080
    loadsim run --out results.json       # also save the results document

Exit status: 0 when every threshold passed, 2 when any failed (or the run
was aborted by a threshold), 1 on configuration or runtime errors.

Other subcommands:

    loadsim validate                     # check the config, run nothing
    loadsim report --results results.json   # re-print a saved summary
    loadsim init [DIR]                   # scaffold a new loadsim.yaml
"""

import argparse
import sys
from pathlib import Path

EXIT_PASSED = 0
EXIT_ERROR  = 1
EXIT_FAILED = 2


def cmd_run(args):
    """
    Run the load test declared in loadsim.yaml.

    Validates the whole config first, runs the engine, prints the summary
    to stdout and maps the verdict to the exit status.
    """
    from loadsim.report.summary import render
    from loadsim.runner import run_from_config

    try:
        result = run_from_config(
            config=args.config,
            output_path=args.out,
            base_url=args.base_url,
            seed=args.seed,
            verbose=args.verbose,
        )
    except FileNotFoundError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except (ValueError, RuntimeError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    if not args.quiet:
        sys.stdout.write(render(result))

    return EXIT_PASSED if result.passed else EXIT_FAILED


def cmd_validate(args):
    """Load and validate loadsim.yaml without running anything."""
    from loadsim.runner import load_config

    try:
        cfg = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    schedule = cfg["_schedule"]
    print(f"  ✓ {len(schedule.stages)} stage(s), {schedule.total_duration:g}s total, "
          f"peak {schedule.max_target} VUs", file=sys.stderr)
    print(f"  ✓ {len(cfg['_scenarios'])} scenario(s): "
          + ", ".join(f"{s.name} {s.weight:.0%}" for s in cfg["_scenarios"]), file=sys.stderr)
    print(f"  ✓ {len(cfg['_thresholds'])} threshold(s)", file=sys.stderr)
    return EXIT_PASSED


def cmd_report(args):
    """Re-render the summary of a saved results document (file or stdin)."""
    from loadsim.report.summary import render
    from loadsim.runner import load_results

    try:
        result = load_results(args.results)
    except FileNotFoundError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except (ValueError, KeyError) as e:
        print(f"error: invalid results document: {e}", file=sys.stderr)
        return EXIT_ERROR

    sys.stdout.write(render(result))
    return EXIT_PASSED if result.passed else EXIT_FAILED


def cmd_init(args):
    """Scaffold a new loadsim project."""
    from loadsim.scaffold import init_project
    target = Path(args.dir or ".")
    init_project(target)
    return EXIT_PASSED


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="loadsim",
        description=(
            "Virtual-user HTTP load generator with staged ramps and pass/fail thresholds.\n\n"
            "Quickstart:\n"
            "  loadsim init        scaffold loadsim.yaml\n"
            "  loadsim run         run the load test (reads loadsim.yaml)"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # ── run ───────────────────────────────────────────────────────────────────
    p_run = sub.add_parser(
        "run",
        help="Run the load test (reads loadsim.yaml)",
        description=(
            "Ramp virtual users through the configured stages, record metrics,\n"
            "judge thresholds and print a summary.  Exit 0 on pass, 2 on fail."
        ),
    )
    p_run.add_argument(
        "--config", metavar="FILE",
        help="Config file (default: loadsim.yaml in current directory)",
    )
    p_run.add_argument(
        "--out", metavar="FILE",
        help="Save results JSON here (overrides output.results in config)",
    )
    p_run.add_argument(
        "--base-url", metavar="URL",
        help="Target base URL (overrides BASE_URL env var and config)",
    )
    p_run.add_argument("--seed", type=int, metavar="N", help="Seed all random draws")
    p_run.add_argument("--quiet",   action="store_true", help="Suppress the summary")
    p_run.add_argument("--verbose", action="store_true", help="Print progress to stderr")
    p_run.set_defaults(func=cmd_run)

    # ── validate ──────────────────────────────────────────────────────────────
    p_val = sub.add_parser("validate", help="Validate loadsim.yaml without running")
    p_val.add_argument("--config", metavar="FILE", help="Config file (default: loadsim.yaml)")
    p_val.set_defaults(func=cmd_validate)

    # ── report ────────────────────────────────────────────────────────────────
    p_report = sub.add_parser(
        "report",
        help="Print the summary of a saved results JSON",
    )
    p_report.add_argument(
        "--results", metavar="FILE", default="-",
        help="Results JSON file; omit or use '-' to read from stdin",
    )
    p_report.set_defaults(func=cmd_report)

    # ── init ──────────────────────────────────────────────────────────────────
    p_init = sub.add_parser("init", help="Scaffold loadsim.yaml in DIR (default: cwd)")
    p_init.add_argument("dir", nargs="?", metavar="DIR")
    p_init.set_defaults(func=cmd_init)

    args = parser.parse_args(argv)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
