#!/usr/bin/env python3
"""fleetcraft command-line interface.

Usage:
    fleetcraft plan STATE_FILE DESIRED [--var KEY=VALUE ...] [--refresh] [--json]
    fleetcraft apply STATE_FILE DESIRED [--parallelism N] [--on-failure halt|continue] [--destroy]
    fleetcraft run INVENTORY PLAYBOOK [--forks N] [--limit PATTERN]
    fleetcraft inventory STATE_FILE RESOURCE_TYPE [--address-attribute NAME] [--group NAME ...]

Exit codes:
    plan: 0 no changes, 2 changes pending, 1 error
    apply/run: 0 success, 1 failure or error, 130 cancelled
"""
import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any, Optional

import yaml

from . import __version__
from .converge import ConvergenceEngine, Outcome
from .errors import FleetcraftError
from .executors import create_executor
from .inventory import HostInventory, hosts_from_snapshot
from .reconcile import ChangeAction, ChangeStatus, Plan, ReconciliationEngine
from .settings import FleetcraftSettings
from .state import StateStore
from .utils.audit_log import setup_audit_logging
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CHANGES = 2
EXIT_CANCELLED = 130

_SYMBOLS = {
    ChangeAction.CREATE: "+",
    ChangeAction.UPDATE: "~",
    ChangeAction.DELETE: "-",
}


def parse_vars(pairs: Optional[list[str]]) -> dict[str, Any]:
    """``key=value`` pairs to a mapping; values are read as YAML scalars."""
    variables: dict[str, Any] = {}
    for pair in pairs or []:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"--var expects KEY=VALUE, got '{pair}'")
        try:
            variables[key.strip()] = yaml.safe_load(raw) if raw else ""
        except yaml.YAMLError:
            variables[key.strip()] = raw
    return variables


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Settings file (default: search for fleetcraft.yaml)")
    common.add_argument("--var", action="append", metavar="KEY=VALUE",
                        help="Variable value, may be repeated")
    common.add_argument("--timeout", type=float, help="Seconds per provider/executor call")
    common.add_argument("--retries", type=int, help="Retries after a timed-out call")
    common.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Console log level")

    parser = argparse.ArgumentParser(
        prog="fleetcraft",
        description="Reconcile resources and converge hosts",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command", required=True)

    plan = commands.add_parser("plan", parents=[common], help="Show the changes apply would make")
    plan.add_argument("state_file")
    plan.add_argument("desired")
    plan.add_argument("--refresh", action="store_true", help="Re-read recorded resources first")
    plan.add_argument("--json", action="store_true", help="Print the plan as JSON")

    apply = commands.add_parser("apply", parents=[common], help="Plan and apply changes")
    apply.add_argument("state_file")
    apply.add_argument("desired", nargs="?")
    apply.add_argument("--refresh", action="store_true", help="Re-read recorded resources first")
    apply.add_argument("--parallelism", type=int, help="Changes applied concurrently")
    apply.add_argument("--on-failure", choices=["halt", "continue"], help="Failure policy")
    apply.add_argument("--destroy", action="store_true", help="Delete every recorded resource")
    apply.add_argument("--json", action="store_true", help="Print the result as JSON")

    run = commands.add_parser("run", parents=[common], help="Run a playbook against an inventory")
    run.add_argument("inventory")
    run.add_argument("playbook")
    run.add_argument("--forks", type=int, help="Hosts worked on at once")
    run.add_argument("--limit", help="Further restrict hosts with a pattern")
    run.add_argument("--json", action="store_true", help="Print the result as JSON")

    inventory = commands.add_parser("inventory", parents=[common],
                                    help="Print an inventory built from recorded resources")
    inventory.add_argument("state_file")
    inventory.add_argument("resource_type")
    inventory.add_argument("--address-attribute", default="address")
    inventory.add_argument("--alias-attribute")
    inventory.add_argument("--group", action="append", default=[])

    return parser


def load_settings(args: argparse.Namespace) -> FleetcraftSettings:
    overrides = {
        "call_timeout": args.timeout,
        "retries": args.retries,
        "log_level": args.log_level,
        "forks": getattr(args, "forks", None),
        "parallelism": getattr(args, "parallelism", None),
        "on_failure": getattr(args, "on_failure", None),
    }
    return FleetcraftSettings.load(args.config, overrides=overrides)


def print_plan(plan: Plan) -> None:
    for change in plan.changes:
        symbol = "-/+" if change.replace and change.action == ChangeAction.CREATE else _SYMBOLS[change.action]
        label = "(deposed) " if change.deposed else ""
        reason = f"  # {change.reason}" if change.reason else ""
        print(f"  {symbol} {label}{change.ref}{reason}")
    for warning in plan.warnings:
        print(f"Warning: {warning}")
    print(plan.summary_line())


async def cmd_plan(args: argparse.Namespace, settings: FleetcraftSettings) -> int:
    engine = ReconciliationEngine(settings.provider_registry(), StateStore(args.state_file))
    try:
        desired = engine.load(args.desired, parse_vars(args.var))
        plan = await engine.plan(desired, refresh=args.refresh)
    finally:
        await engine.close()

    if args.json:
        print(json.dumps(plan.to_dict(), indent=2, default=str))
    else:
        print_plan(plan)
    return EXIT_CHANGES if plan.has_changes else EXIT_OK


async def cmd_apply(args: argparse.Namespace, settings: FleetcraftSettings,
                    cancel_event: asyncio.Event) -> int:
    engine = ReconciliationEngine(settings.provider_registry(), StateStore(args.state_file))
    try:
        if args.destroy:
            plan = engine.destroy_plan()
        else:
            if not args.desired:
                print("apply needs a desired state file unless --destroy is given", file=sys.stderr)
                return EXIT_FAILED
            desired = engine.load(args.desired, parse_vars(args.var))
            plan = await engine.plan(desired, refresh=args.refresh)
        if not args.json:
            print_plan(plan)
        result = await engine.apply(plan, options=settings.apply_options(), cancel_event=cancel_event)
    finally:
        await engine.close()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        for outcome in result.outcomes:
            line = f"  {outcome.change.key}: {outcome.status.value}"
            if outcome.status == ChangeStatus.FAILED:
                line += f" ({outcome.error})"
            print(line)
        for name, value in result.outputs.items():
            print(f"{name} = {json.dumps(value, default=str)}")
        counts = {s.value: len(result.by_status(s)) for s in ChangeStatus}
        print(f"Apply: {counts['applied']} applied, {counts['failed']} failed, "
              f"{counts['skipped']} skipped, {counts['cancelled']} cancelled")

    if result.cancelled:
        return EXIT_CANCELLED
    return EXIT_OK if result.success else EXIT_FAILED


async def cmd_run(args: argparse.Namespace, settings: FleetcraftSettings,
                  cancel_event: asyncio.Event) -> int:
    inventory = HostInventory.from_file(args.inventory).limit(args.limit)
    extra_vars = parse_vars(args.var)

    engine = ConvergenceEngine(
        create_executor(
            timeout=settings.call_timeout or 30,
            retries=settings.retries + 1,
            retry_delay=settings.retry_delay,
        ),
        forks=settings.forks,
        timeout=settings.call_timeout,
        retry=settings.retry_policy(),
    )
    try:
        playbook = engine.load(args.playbook)
        for play in playbook.plays:
            play.variables.update(extra_vars)
        result = await engine.run(playbook, inventory, cancel_event)
    finally:
        await engine.close()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        for alias, host in result.hosts.items():
            for action in host.results:
                if action.outcome == Outcome.FAILED:
                    print(f"  {alias}: '{action.action}' failed: {action.error}")
        print("RECAP")
        for alias, recap in result.recap().items():
            print(f"  {alias:24s} ok={recap['ok']} changed={recap['changed']} "
                  f"unreachable={recap['unreachable']} failed={recap['failed']} "
                  f"skipped={recap['skipped']}")

    if result.cancelled:
        return EXIT_CANCELLED
    return EXIT_OK if result.success else EXIT_FAILED


def cmd_inventory(args: argparse.Namespace) -> int:
    snapshot = StateStore(args.state_file).load()
    mapping = hosts_from_snapshot(
        snapshot,
        args.resource_type,
        address_attribute=args.address_attribute,
        groups=args.group,
        alias_attribute=args.alias_attribute,
    )
    print(yaml.safe_dump(mapping, sort_keys=False), end="")
    return EXIT_OK


async def _dispatch(args: argparse.Namespace, settings: FleetcraftSettings) -> int:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        logger.debug("Signal handlers unavailable, Ctrl-C will abort immediately")

    try:
        if args.command == "plan":
            return await cmd_plan(args, settings)
        if args.command == "apply":
            return await cmd_apply(args, settings, cancel_event)
        return await cmd_run(args, settings, cancel_event)
    finally:
        if cancel_event.is_set():
            logger.warning("Interrupted: no new changes or actions were started")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the fleetcraft CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args)
        setup_logging(settings.log_level)
        setup_audit_logging(settings.audit_dir)

        if args.command == "inventory":
            return cmd_inventory(args)
        return asyncio.run(_dispatch(args, settings))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return EXIT_CANCELLED
    except argparse.ArgumentTypeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED
    except FleetcraftError as e:
        print(f"Error: {e}", file=sys.stderr)
        errors = getattr(e, "errors", [])
        if len(errors) > 1:
            for detail in errors:
                print(f"  - {detail}", file=sys.stderr)
        return EXIT_FAILED
    except (OSError, ValueError) as e:
        logger.debug("Unexpected error", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
