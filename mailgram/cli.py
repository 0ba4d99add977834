"""CLI entry point for mailgram."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .config import ConfigError, load_config
from .daemon import run_scan, run_watcher, send_test_message

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("mailgram")


def add_common_args(parser: argparse.ArgumentParser, *, subcommand: bool = False) -> None:
    """Add common arguments to a parser.

    Subcommand parsers suppress their defaults so options given before the
    subcommand name are not overwritten.
    """
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=argparse.SUPPRESS if subcommand else Path("config.toml"),
        help="Path to configuration file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=argparse.SUPPRESS if subcommand else False,
        help="Enable debug logging",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        description="Forward IMAP mail for selected recipients to a Telegram channel",
    )
    add_common_args(parser)
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # watch - Run the IDLE watcher (default)
    watch_parser = subparsers.add_parser("watch", help="Watch the mailbox and forward new mail")
    add_common_args(watch_parser, subcommand=True)

    # scan - Forward current unread mail and exit
    scan_parser = subparsers.add_parser("scan", help="Forward unread mail once and exit")
    add_common_args(scan_parser, subcommand=True)

    # test-notify - Send a test message
    test_parser = subparsers.add_parser("test-notify", help="Send a test message to the channel")
    add_common_args(test_parser, subcommand=True)
    test_parser.add_argument(
        "text",
        nargs="?",
        default="If you can read this, mailgram can reach the channel.",
        help="Message text",
    )

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or "watch"

    if args.verbose:
        logging.getLogger("mailgram").setLevel(logging.DEBUG)

    if not args.config.exists():
        logger.error(f"Configuration file not found: {args.config}")
        sys.exit(1)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)

    if command == "watch":
        asyncio.run(run_watcher(config))
    elif command == "scan":
        try:
            asyncio.run(run_scan(config))
        except Exception as e:
            logger.error(f"Scan failed: {e}")
            sys.exit(1)
    elif command == "test-notify":
        try:
            asyncio.run(send_test_message(config, args.text))
        except Exception as e:
            logger.error(f"Test message failed: {e}")
            sys.exit(1)
        logger.info("Test message sent")


if __name__ == "__main__":
    main()
