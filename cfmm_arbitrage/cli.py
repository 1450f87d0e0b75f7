"""
Command line interface.

    cfmm-arb scan CONFIG [--start TOKEN] [--formulation linear|conic]
                         [--budget X] [--debug]
    cfmm-arb cycles CONFIG [--start TOKEN] [--max-length N]
    cfmm-arb validate CONFIG
"""

import argparse
import json
import sys
from typing import List, Optional

from tabulate import tabulate

from . import logging_config
from .config_loader import build_registry, load_config
from .exceptions import ConfigurationError
from .graph import TokenGraph
from .search import ArbitrageSearch, SearchReport
from .utils import format_profit, short_token
from .version import get_version

EXIT_OK = 0
EXIT_CONFIG_ERROR = 2


def _print_report(report: SearchReport, as_json: bool = False):
    if as_json:
        print(json.dumps(_report_dict(report), indent=2, default=str))
        return

    print(f"\n=== Cycle search from {report.start} ===")
    print(f"Cycles considered: {report.cycles_considered}")
    print(f"Solved: {len(report.results)}")
    print(f"Profitable: {len(report.profitable)}")
    print(f"Elapsed: {report.elapsed:.3f}s")

    if report.profitable:
        rows = [
            [
                " -> ".join(short_token(t) for t in r.cycle.tokens),
                f"{r.amount_in:.6g}",
                f"{r.amount_out:.6g}",
                f"{r.profit:.6g}",
                format_profit(r.profit_pct),
                f"{r.simulated_profit:.6g}",
            ]
            for r in report.profitable
        ]
        print(
            tabulate(
                rows,
                headers=["Cycle", "In", "Out", "Profit", "Profit %", "Simulated"],
                tablefmt="grid",
            )
        )

    if report.failure_counts:
        print("\nFailures:")
        print(
            tabulate(
                sorted(report.failure_counts.items()),
                headers=["Error", "Count"],
                tablefmt="grid",
            )
        )

    selection = report.selection
    if selection and selection.selected:
        print(
            f"\nSelected ({selection.strategy}, budget {selection.budget:.6g}, "
            f"profit {selection.total_profit:.6g}):"
        )
        rows = []
        for result in selection.selected:
            for trade in result.trades:
                rows.append(
                    [
                        trade.pool_id,
                        short_token(trade.token_in),
                        f"{trade.amount_in:.6g}",
                        short_token(trade.token_out),
                        f"{trade.amount_out:.6g}",
                    ]
                )
        print(
            tabulate(
                rows,
                headers=["Pool", "Token in", "Amount in", "Token out", "Amount out"],
                tablefmt="grid",
            )
        )


def _report_dict(report: SearchReport):
    data = report.summary()
    data["results"] = [r.to_dict() for r in report.profitable]
    if report.selection:
        data["selection"] = [r.to_dict() for r in report.selection.selected]
    return data


def cmd_scan(args) -> int:
    if args.debug:
        logging_config.setup_debug()
    else:
        logging_config.setup()

    config = load_config(args.config)
    updates = {}
    if args.formulation:
        updates["formulation"] = args.formulation
    if args.budget is not None:
        if args.budget <= 0:
            raise ConfigurationError(f"--budget must be positive, got {args.budget}")
        updates["budget"] = args.budget
    if updates:
        config = config.model_copy(
            update={"search": config.search.model_copy(update=updates)}
        )

    registry = build_registry(config)
    report = ArbitrageSearch(registry, config).run(args.start)
    _print_report(report, as_json=args.json)
    return EXIT_OK


def cmd_cycles(args) -> int:
    logging_config.setup_minimal()
    config = load_config(args.config)
    graph = TokenGraph.from_registry(build_registry(config))
    start = args.start or config.search.start_token
    max_length = args.max_length or config.search.max_cycle_length

    cycles = graph.enumerate_cycles(
        start, max_length=max_length, max_cycles=config.search.max_cycles
    )
    rows = [
        [i + 1, str(cycle), ", ".join(cycle.pool_ids)]
        for i, cycle in enumerate(cycles)
    ]
    print(tabulate(rows, headers=["#", "Cycle", "Pools"], tablefmt="grid"))
    print(f"\n{len(cycles)} cycles from {start} (max length {max_length})")
    return EXIT_OK


def cmd_validate(args) -> int:
    logging_config.setup_minimal()
    config = load_config(args.config)
    build_registry(config)
    print(f"✓ VALID: {args.config}")
    print(f"  - Pools: {len(config.pools)}")
    print(f"  - Start token: {config.search.start_token}")
    print(f"  - Formulation: {config.search.formulation}")
    print(f"  - Selection: {config.search.selection}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cfmm-arb",
        description="Find profitable trading cycles across AMM liquidity pools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Search for cycles with the settings in a config file
  cfmm-arb scan examples/config.yaml

  # Use the exact conic formulation and a smaller budget
  cfmm-arb scan examples/config.yaml --formulation conic --budget 5

  # List the cycles through a token
  cfmm-arb cycles examples/config.yaml --start WETH --max-length 3
        """,
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {get_version()}"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Run a cycle search")
    scan.add_argument("config", help="YAML configuration file")
    scan.add_argument("--start", help="Start token (overrides the config)")
    scan.add_argument(
        "--formulation",
        choices=["linear", "conic"],
        help="Invariant formulation (overrides the config)",
    )
    scan.add_argument("--budget", type=float, help="Start-token budget")
    scan.add_argument("--json", action="store_true", help="Output results as JSON")
    scan.add_argument("--debug", action="store_true", help="Verbose logging")
    scan.set_defaults(handler=cmd_scan)

    cycles = subparsers.add_parser("cycles", help="List enumerated cycles")
    cycles.add_argument("config", help="YAML configuration file")
    cycles.add_argument("--start", help="Start token (overrides the config)")
    cycles.add_argument("--max-length", type=int, help="Maximum hops per cycle")
    cycles.set_defaults(handler=cmd_cycles)

    validate = subparsers.add_parser("validate", help="Validate a configuration")
    validate.add_argument("config", help="YAML configuration file")
    validate.set_defaults(handler=cmd_validate)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.handler(args)
    except ConfigurationError as e:
        print(f"✗ Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
