#!/usr/bin/env python3
"""
Zone Change Orchestrator - Command Line Interface

Main entry point for the zone-change CLI.
"""

import argparse
import logging
import signal
import sys
from pathlib import Path

from ..core.change_manager import ZoneChangeManager
from ..core.models import Outcome
from ..core.mutations import Mutation, Operation
from ..errors import OrchestrationError
from ..parsers.csv import CSVParser
from ..utils.cancellation import CancellationToken
from ..utils.config import config_logger, load_config

logger = logging.getLogger(__name__)

EXIT_CODES = {
    Outcome.SUCCEEDED: 0,
    Outcome.FAILED: 1,
    Outcome.ROLLED_BACK: 2,
    Outcome.ROLLBACK_FAILED: 3,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zone-change",
        description="Zone Change Orchestrator - Staged, verified and reversible zone changes",
    )

    parser.add_argument(
        "--config",
        "-c",
        default="configs/config.yaml",
        help="Configuration file path (default: configs/config.yaml)",
    )

    parser.add_argument("--zone", "-z", required=True, help="DNS zone to change")

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--csv", "-f", help="CSV file with desired records (name,type,ttl,rdata)")
    source.add_argument("--name", "-n", help="Record name for a single change")

    parser.add_argument("--type", "-t", default="A", help="Record type (default: A)")
    parser.add_argument("--ttl", type=int, default=300, help="Record TTL (default: 300)")
    parser.add_argument(
        "--rdata",
        "-r",
        action="append",
        default=[],
        help="Record value; repeat for multiple values",
    )
    parser.add_argument(
        "--op",
        choices=[operation.value for operation in Operation],
        default=Operation.ADD.value,
        help="Operation for a single change (default: ADD)",
    )

    parser.add_argument("--comment", "-m", default="", help="Changelist submission comment")

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be changed without making changes",
    )

    parser.add_argument(
        "--validate",
        action="store_true",
        help="Have the control plane validate the changes without applying them",
    )

    parser.add_argument(
        "--output-file",
        "-o",
        help="File to save dry run diff output (only used with --dry-run)",
    )

    parser.add_argument(
        "--prune",
        action="store_true",
        help="Delete live records that are missing from the CSV file",
    )

    parser.add_argument(
        "--no-verify",
        action="store_true",
        help="Skip checking public resolution after activation",
    )

    parser.add_argument(
        "--deadline",
        type=float,
        help="Overall deadline for the run in seconds",
    )

    parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="Fail immediately if another run holds the zone",
    )

    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )

    return parser


def single_mutation(args) -> Mutation:
    """Build the mutation described by --name/--type/--ttl/--rdata/--op."""
    operation = Operation(args.op)
    if operation == Operation.DELETE:
        return Mutation.delete(args.name, args.type)
    if operation == Operation.REPLACE:
        return Mutation.replace(args.name, args.type, args.rdata, args.ttl)
    return Mutation.add(args.name, args.type, args.rdata, args.ttl)


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.output_file and not args.dry_run:
        print("Error: --output-file can only be used with --dry-run")
        sys.exit(1)

    if args.csv and not Path(args.csv).exists():
        print(f"Error: CSV file '{args.csv}' not found")
        sys.exit(1)

    if args.prune and not args.csv:
        print("Error: --prune can only be used with --csv")
        sys.exit(1)

    config = load_config(args.config)
    if args.verbose:
        config.setdefault("logging", {})["level"] = "DEBUG"
    config_logger(config)

    token = CancellationToken(timeout=args.deadline)
    previous_handler = signal.signal(
        signal.SIGINT, lambda signum, frame: token.cancel("interrupted")
    )

    try:
        manager = ZoneChangeManager(config)
        verify = False if args.no_verify else None

        if args.csv:
            records = CSVParser(args.csv).parse()
            if not records:
                print("Error: No valid records found in CSV file")
                sys.exit(1)

            if args.validate:
                current = manager.record_manager.fetch_current(args.zone)
                changes = manager.record_manager.plan_changes(
                    current, records, args.zone, prune=args.prune
                )
                validate(manager, args.zone, changes["mutations"])
                sys.exit(0)

            outcome = manager.process_records(
                records,
                args.zone,
                dry_run=args.dry_run,
                output_file=args.output_file if args.dry_run else None,
                comment=args.comment,
                prune=args.prune,
                verify=verify,
                fail_fast=args.fail_fast,
                token=token,
            )
        else:
            mutation = single_mutation(args)
            if args.validate:
                validate(manager, args.zone, [mutation])
                sys.exit(0)

            if args.dry_run:
                print(f"DRY RUN: {mutation.describe()}")
                sys.exit(0)

            outcome = manager.apply_mutations(
                args.zone,
                [mutation],
                comment=args.comment,
                verify=verify,
                fail_fast=args.fail_fast,
                token=token,
            ).outcome

        print(f"Zone change finished: {outcome.value}")
        sys.exit(EXIT_CODES[outcome])

    except (OrchestrationError, ValueError, OSError) as e:
        print(f"Error: {e}")
        if args.verbose:
            import traceback

            traceback.print_exc()
        sys.exit(1)
    finally:
        signal.signal(signal.SIGINT, previous_handler)


def validate(manager: ZoneChangeManager, zone: str, mutations) -> None:
    if not mutations:
        print("No changes to validate")
        return
    warnings = manager.orchestrator.validate(zone, mutations)
    print(f"Validation passed for {zone} ({len(warnings)} warnings)")


if __name__ == "__main__":
    main()
