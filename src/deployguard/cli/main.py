"""deployguard command line entry point."""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from deployguard.config.settings import get_settings
from deployguard.core.errors import main_with_error_handling
from deployguard.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="deployguard", description="Deployment verdicts and gates")
    parser.add_argument("--log-level", help="Log level (default from DEPLOYGUARD_LOG_LEVEL)")
    subparsers = parser.add_subparsers(dest="command")

    verdict_parser = subparsers.add_parser("verdict", help="Classify failure signals into a verdict")
    verdict_parser.add_argument("signals_file", help="YAML or JSON file of failure signals")
    verdict_parser.add_argument("--policy", help="Policy snapshot YAML file")
    verdict_parser.add_argument("--execution-id", help="Execution id recorded on the verdict")
    verdict_parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")

    gate_parser = subparsers.add_parser(
        "gate", help="Check whether a deployment may proceed (exit 0 allowed, 2 blocked)"
    )
    gate_parser.add_argument("target", help="Verdict name (e.g. GREEN, REJECTED) or signals file")
    gate_parser.add_argument("--policy", help="Policy snapshot YAML file")

    audit_parser = subparsers.add_parser("audit", help="Consistency metrics and policy audit for verdicts")
    audit_parser.add_argument("verdicts_file", help="YAML or JSON file of stored verdicts")
    audit_parser.add_argument("--policy", help="Policy snapshot YAML file")

    return parser


@main_with_error_handling()
def run(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level or get_settings().log_level)

    if args.command == "verdict":
        from deployguard.cli.verdict import verdict_command

        return verdict_command(
            args.signals_file,
            policy_file=args.policy,
            execution_id=args.execution_id,
            output_format=args.output,
        )

    if args.command == "gate":
        from deployguard.cli.gate import gate_command

        return gate_command(args.target, policy_file=args.policy)

    if args.command == "audit":
        from deployguard.cli.audit import audit_command

        return audit_command(args.verdicts_file, policy_file=args.policy)

    parser.print_help()
    return 1


def main(argv: Sequence[str] | None = None) -> None:
    sys.exit(run(argv))


if __name__ == "__main__":
    main()
