"""Command line entry point.

Usage:
    dbconnector [--config FILE] [--sign-in] check
    dbconnector [--config FILE] read COLLECTION [--where FIELD OP VALUE]
    dbconnector [--config FILE] write COLLECTION ID JSON
    dbconnector [--config FILE] delete COLLECTION ID
    dbconnector [--config FILE] watch COLLECTION [--where FIELD OP VALUE] [--limit N]
    dbconnector example [--output FILE] [--format yaml|json]

Without ``--config`` the configuration comes from ``DBCONNECTOR_CONFIG_FILE``,
``./config/dbconnector.yaml`` or the ``FIREBASE_*``/``SUPABASE_*``/``AZURE_COSMOS_*``
environment variables.
"""

import argparse
import asyncio
import json
import sys
from typing import Any, List, Optional

import yaml

from .config.loader import ConfigLoader, ConfigurationError
from .config.schema import AZURE_CONFIG_EXAMPLE
from .connector import Facade, connector_from_file
from .core.errors import ConnectorError
from .utils.logging import setup_logging, get_logger

logger = get_logger("main")


def parse_value(raw: str) -> Any:
    """Interpret a command line value as JSON, falling back to the plain string."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _maybe_sign_in(facade: Facade, sign_in: bool) -> None:
    if sign_in:
        session = await facade.auth.sign_in()
        logger.info("Signed in", user_id=(session.get("user") or {}).get("id"))


async def _current_user(facade: Facade):
    user = facade.auth.current_user()
    if asyncio.iscoroutine(user):
        user = await user
    return user


async def run_check(facade: Facade, args: argparse.Namespace) -> int:
    """Connect (already done by the caller) and optionally sign in."""
    await _maybe_sign_in(facade, args.sign_in)
    _print_json({"connected": True, "user": await _current_user(facade)})
    return 0


async def run_read(facade: Facade, args: argparse.Namespace) -> int:
    await _maybe_sign_in(facade, args.sign_in)
    records = await facade.db.read(args.collection, args.where)
    _print_json(records)
    return 0


async def run_write(facade: Facade, args: argparse.Namespace) -> int:
    await _maybe_sign_in(facade, args.sign_in)
    data = parse_value(args.data)
    if not isinstance(data, dict):
        raise SystemExit("write expects a JSON object")

    if args.merge:
        record = await facade.db.update(args.collection, args.id, data)
    else:
        record = await facade.db.write(args.collection, args.id, data)
    _print_json(record)
    return 0


async def run_delete(facade: Facade, args: argparse.Namespace) -> int:
    await _maybe_sign_in(facade, args.sign_in)
    _print_json(await facade.db.delete(args.collection, args.id))
    return 0


async def run_watch(facade: Facade, args: argparse.Namespace) -> int:
    """Print every snapshot until interrupted or ``--limit`` snapshots were seen."""
    await _maybe_sign_in(facade, args.sign_in)
    seen = 0
    failures = 0

    async with facade.db.snapshots(args.collection, args.where) as stream:
        async for result in stream:
            seen += 1
            if result.ok:
                _print_json({"snapshot": seen, "count": len(result.data), "data": result.data})
            else:
                failures += 1
                _print_json({"snapshot": seen, "error": result.error.to_dict()})

            if args.limit and seen >= args.limit:
                break

    return 1 if failures and failures == seen else 0


COMMANDS = {
    "check": run_check,
    "read": run_read,
    "write": run_write,
    "delete": run_delete,
    "watch": run_watch,
}


def _where(values: Optional[List[str]]):
    if not values:
        return None
    field, operator, raw = values
    return (field, operator, parse_value(raw))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dbconnector",
        description="Talk to Firebase, Supabase or Azure Cosmos DB through one interface",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --sign-in check
  %(prog)s --config config/azure.yaml read companies --where risk_level == '"high"'
  %(prog)s write companies acme '{"name": "Acme", "risk": 3}'
  %(prog)s write companies acme '{"risk": 4}' --merge
  %(prog)s watch companies --limit 3
        """
    )
    parser.add_argument("--config", help="YAML or JSON connector configuration file")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    parser.add_argument(
        "--log-format",
        choices=["console", "json"],
        help="Override LOG_FORMAT"
    )
    parser.add_argument(
        "--sign-in",
        action="store_true",
        help="Sign in before running the command"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("check", help="Connect and report the current user")
    example = subparsers.add_parser("example", help="Print or save an example configuration file")
    example.add_argument("--output", help="Write the example to this file instead of stdout")
    example.add_argument("--format", choices=["yaml", "json"], default="yaml")

    read = subparsers.add_parser("read", help="Read every record of a collection")
    read.add_argument("collection")
    read.add_argument("--where", nargs=3, metavar=("FIELD", "OP", "VALUE"))

    write = subparsers.add_parser("write", help="Upsert a record")
    write.add_argument("collection")
    write.add_argument("id")
    write.add_argument("data", help="JSON object with the record fields")
    write.add_argument("--merge", action="store_true", help="Partial update instead of upsert")

    delete = subparsers.add_parser("delete", help="Delete a record")
    delete.add_argument("collection")
    delete.add_argument("id")

    watch = subparsers.add_parser("watch", help="Stream snapshots of a collection")
    watch.add_argument("collection")
    watch.add_argument("--where", nargs=3, metavar=("FIELD", "OP", "VALUE"))
    watch.add_argument("--limit", type=int, default=0, help="Stop after N snapshots")

    return parser


def run_example(args: argparse.Namespace) -> int:
    """Print the example configuration, or save it with ``--output``."""
    if not args.output:
        if args.format == "json":
            _print_json(AZURE_CONFIG_EXAMPLE.to_mapping())
        else:
            print(yaml.safe_dump(AZURE_CONFIG_EXAMPLE.to_mapping(), default_flow_style=False), end="")
        return 0

    try:
        ConfigLoader().save_to_file(AZURE_CONFIG_EXAMPLE, args.output, format=args.format)
    except (ConfigurationError, OSError) as e:
        logger.error("Could not write example configuration", file=args.output, error=str(e))
        return 1

    _print_json({"saved": args.output})
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    """Run one command against the configured provider and return the exit code."""
    args = build_parser().parse_args(argv)
    if hasattr(args, "where"):
        args.where = _where(args.where)

    setup_logging(log_level=args.log_level, log_format=args.log_format)

    if args.command == "example":
        return run_example(args)

    try:
        connector = connector_from_file(args.config)
        async with connector as facade:
            return await COMMANDS[args.command](facade, args)
    except ConnectorError as e:
        logger.error("Command failed", command=args.command, code=e.code, error=e.message)
        _print_json({"error": e.to_dict()})
        return 1


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)


if __name__ == "__main__":
    cli()
