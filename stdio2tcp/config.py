"""Configuration and command-line argument parsing for the stdio-to-TCP bridge."""

import argparse

from stdio2tcp import __version__
from stdio2tcp.bridge import DEFAULT_LINE_LIMIT
from stdio2tcp.protocol import split_address


DEFAULT_ADDR = "127.0.0.1:0"


def parse_args(argv=None):
    """Parse command-line arguments and return a validated namespace."""
    parser = argparse.ArgumentParser(
        prog="stdio2tcp",
        description="Expose a TCP listener to a parent process over stdin/stdout.",
    )
    parser.add_argument(
        "--addr",
        default=DEFAULT_ADDR,
        help=f"TCP address to listen on, port 0 picks a free port (default: {DEFAULT_ADDR})",
    )
    parser.add_argument(
        "--strict-connections",
        action="store_true",
        help="End the whole session when reading from any peer fails",
    )
    parser.add_argument(
        "--line-limit",
        type=int,
        default=DEFAULT_LINE_LIMIT,
        help=f"Longest accepted line in bytes (default: {DEFAULT_LINE_LIMIT})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose logging on stderr (-vv for per-line traffic)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=__version__,
        help="Show version and exit",
    )
    args = parser.parse_args(argv)
    _validate(args)
    return args


def _validate(args):
    """Validate parsed arguments; raise ValueError on invalid values."""
    split_address(args.addr)
    if args.line_limit <= 0:
        raise ValueError("Line limit (--line-limit) must be positive")
