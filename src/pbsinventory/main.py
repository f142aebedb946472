#!/usr/bin/env python3

# ruff: noqa: T201

from __future__ import annotations

import argparse
import logging
import sys
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from pbsinventory.app import sync_datastores
from pbsinventory.config import ConfigurationError, configure_logging, get_sync_config

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inventory backup datastores")
    parser.add_argument(
        "mountpoints",
        nargs="+",
        metavar="MOUNTPOINT",
        help="Datastore mountpoint to scan",
    )
    parser.add_argument(
        "--host-id",
        type=int,
        help="Id of the host owning the datastores (default: $PBSINVENTORY_HOST_ID)",
    )
    parser.add_argument(
        "--chunks",
        action="store_true",
        help="Also list the chunk store and link archives to their chunks",
    )
    parser.add_argument(
        "--skip-indices",
        action="store_true",
        help="Do not read index files; only their paths are inventoried",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(list(argv))


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    parsed_args: argparse.Namespace
    try:
        parsed_args = _parse_args(argv if argv is not None else sys.argv[1:])
        host_id = parsed_args.host_id
        if host_id is None:
            host_id = get_sync_config().host_id
        if host_id is None:
            raise ValueError("No host id given; pass --host-id or set PBSINVENTORY_HOST_ID")
    except (ValueError, ConfigurationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)

    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        report = sync_datastores(
            parsed_args.mountpoints,
            host_id=host_id,
            include_chunks=parsed_args.chunks,
            read_indices=not parsed_args.skip_indices,
        )
    except Exception as e:  # noqa: BLE001
        print(f"Error: {e}", file=sys.stderr)
        for note in getattr(e, "__notes__", ()):
            print(f"  {note}", file=sys.stderr)
        sys.exit(1)

    for level, count in sorted(report.levels.items()):
        print(f"{level:>14}: {count}")


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    print("\nClosed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
