"""Entry point for the ``stackpilot`` command."""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from stackpilot import __version__
from stackpilot.config import get_settings
from stackpilot.logging import configure_from_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackpilot", description="Declarative deployment orchestration"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    plan_parser = subparsers.add_parser("plan", help="Show what apply would change")
    plan_parser.add_argument("manifest", help="Path to manifest YAML file")
    plan_parser.add_argument("--env", help="Environment overlay (dev, staging, prod)")
    plan_parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")
    plan_parser.add_argument(
        "--reapply", nargs="+", metavar="NAME", help="Update these resources even if unchanged"
    )

    apply_parser = subparsers.add_parser("apply", help="Create and update declared resources")
    apply_parser.add_argument("manifest", help="Path to manifest YAML file")
    apply_parser.add_argument("--env", help="Environment overlay (dev, staging, prod)")
    apply_parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")
    apply_parser.add_argument(
        "--reapply", nargs="+", metavar="NAME", help="Update these resources even if unchanged"
    )
    apply_parser.add_argument("--max-workers", type=int, help="Steps allowed to run at once")
    apply_parser.add_argument("--timeout", type=float, help="Overall run timeout in seconds")

    migrate_parser = subparsers.add_parser("migrate", help="Apply versioned SQL migrations")
    migrate_parser.add_argument("location", help="Migration directory or s3://bucket/prefix")
    migrate_parser.add_argument("--database-url", required=True, help="SQLAlchemy database URL")
    migrate_parser.add_argument("--info", action="store_true", help="Show migration states only")
    migrate_parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")

    state_parser = subparsers.add_parser("state", help="Inspect recorded state")
    state_sub = state_parser.add_subparsers(dest="state_command")
    list_parser = state_sub.add_parser("list", help="List recorded resources")
    list_parser.add_argument("--output", choices=["text", "json"], default="text")
    show_parser = state_sub.add_parser("show", help="Show one recorded resource")
    show_parser.add_argument("name")
    show_parser.add_argument("--output", choices=["text", "json"], default="text")
    forget_parser = state_sub.add_parser("forget", help="Remove a record, leaving the resource")
    forget_parser.add_argument("name")

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_from_settings(get_settings())

    if args.command == "plan":
        from stackpilot.cli.plan import plan_command

        sys.exit(
            plan_command(
                args.manifest, env=args.env, output_format=args.output, reapply=args.reapply
            )
        )

    if args.command == "apply":
        from stackpilot.cli.apply import apply_command

        sys.exit(
            apply_command(
                args.manifest,
                env=args.env,
                output_format=args.output,
                reapply=args.reapply,
                max_workers=args.max_workers,
                timeout=args.timeout,
            )
        )

    if args.command == "migrate":
        from stackpilot.cli.migrate import migrate_command

        sys.exit(
            migrate_command(
                args.location,
                args.database_url,
                show_info=args.info,
                output_format=args.output,
            )
        )

    if args.command == "state":
        from stackpilot.cli import state

        if args.state_command == "list":
            sys.exit(state.state_list_command(output_format=args.output))
        if args.state_command == "show":
            sys.exit(state.state_show_command(args.name, output_format=args.output))
        if args.state_command == "forget":
            sys.exit(state.state_forget_command(args.name))

    parser.print_help()
    sys.exit(1)


if __name__ == "__main__":
    main()
