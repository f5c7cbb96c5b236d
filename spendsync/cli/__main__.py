"""
spendsync CLI - Command-line interface for finance data sync.

Usage:
    spendsync sync [--force] [--json]
    spendsync status [--json]
    spendsync push [--json]
"""

import argparse
import logging
import sys

from spendsync.cli.commands.sync import cmd_push, cmd_status, cmd_sync
from spendsync.config import load_settings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spendsync",
        description="Sync personal finance data between this device and the cloud",
    )
    parser.add_argument("--home", help="Data directory (default: ~/.spendsync)", default=None)
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_sync = subparsers.add_parser("sync", help="Pull, merge and push everything")
    p_sync.add_argument("--force", "-f", action="store_true",
                        help="Reset the initial-sync flag and refresh from the cloud")
    p_sync.add_argument("--json", "-j", action="store_true")

    p_status = subparsers.add_parser("status", help="Show pending changes and last sync")
    p_status.add_argument("--json", "-j", action="store_true")

    p_push = subparsers.add_parser("push", help="Upload local changes only")
    p_push.add_argument("--json", "-j", action="store_true")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        settings = load_settings(home=args.home)
        if args.command == "sync":
            cmd_sync(args, settings)
        elif args.command == "status":
            cmd_status(args, settings)
        elif args.command == "push":
            cmd_push(args, settings)
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
