"""Entry point: parse config and run the stdio-to-TCP bridge until stdin closes."""

import logging
import sys

from stdio2tcp.bridge import BridgeError, logger, run_bridge
from stdio2tcp.config import parse_args


def setup_logging(verbose: int):
    """Log to stderr; stdout carries the protocol."""
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def main(argv=None) -> int:
    try:
        args = parse_args(argv)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    setup_logging(args.verbose)
    try:
        run_bridge(
            addr=args.addr,
            strict_connections=args.strict_connections,
            line_limit=args.line_limit,
            log=logger,
        )
    except BridgeError as e:
        logger.error("error: %s", e)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
