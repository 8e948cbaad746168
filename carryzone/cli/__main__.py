"""
carryzone CLI - Command-line interface for offline-first carry-zone pins.

Usage:
    carryzone pin add NAME LAT LNG [--status S] [--notes N] [--tag T] [--screening] [--signage]
    carryzone pin list [--json]
    carryzone pin cycle PIN_ID
    carryzone pin delete PIN_ID
    carryzone sync run [--json]
    carryzone sync status [--json]
    carryzone sync pending [--json]
    carryzone sync clear
"""

import argparse
import logging
import sys

from carryzone import CarryZone
from carryzone.cli.commands import cmd_pin, cmd_sync
from carryzone.config import get_settings
from carryzone.errors import CarryZoneError
from carryzone.types import PinStatus, RestrictionTag

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="carryzone",
        description="Offline-first sync for crowd-sourced carry-zone pins",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # pin
    p_pin = subparsers.add_parser("pin", help="Pin operations")
    pin_sub = p_pin.add_subparsers(dest="pin_action", required=True)

    pin_add = pin_sub.add_parser("add", help="Add a pin")
    pin_add.add_argument("name", help="Place name")
    pin_add.add_argument("latitude", type=float, help="Latitude (-90 to 90)")
    pin_add.add_argument("longitude", type=float, help="Longitude (-180 to 180)")
    pin_add.add_argument("--status", "-s", choices=[s.value for s in PinStatus],
                         default=PinStatus.ALLOWED.value)
    pin_add.add_argument("--notes", "-n", help="Free-form notes")
    pin_add.add_argument("--tag", "-t", help="Restriction tag",
                         metavar="{" + ",".join(t.value for t in RestrictionTag) + "}")
    pin_add.add_argument("--screening", action="store_true", help="Security screening present")
    pin_add.add_argument("--signage", action="store_true", help="No-carry signage posted")

    pin_list = pin_sub.add_parser("list", help="List local pins")
    pin_list.add_argument("--json", "-j", action="store_true")

    pin_cycle = pin_sub.add_parser("cycle", help="Advance a pin to its next status")
    pin_cycle.add_argument("pin_id", help="Pin ID")

    pin_delete = pin_sub.add_parser("delete", help="Delete a pin")
    pin_delete.add_argument("pin_id", help="Pin ID")

    # sync
    p_sync = subparsers.add_parser("sync", help="Sync with the remote backend")
    sync_sub = p_sync.add_subparsers(dest="sync_action", required=True)

    sync_run = sync_sub.add_parser("run", help="Run one sync pass")
    sync_run.add_argument("--json", "-j", action="store_true")

    sync_status = sync_sub.add_parser("status", help="Show sync status")
    sync_status.add_argument("--json", "-j", action="store_true")

    sync_pending = sync_sub.add_parser("pending", help="List queued operations")
    sync_pending.add_argument("--json", "-j", action="store_true")

    sync_sub.add_parser("clear", help="Drop every queued operation")

    return parser


def configure_logging(verbose: bool) -> None:
    if verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, get_settings().log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level)


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        cz = CarryZone()
    except (ValueError, TypeError, CarryZoneError) as e:
        logger.error(f"Failed to initialize carryzone: {e}")
        sys.exit(1)

    try:
        if args.command == "pin":
            cmd_pin(args, cz)
        elif args.command == "sync":
            cmd_sync(args, cz)
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
