"""Tagged line protocol spoken on the stdio channel."""

from typing import Tuple

DELIM = ":"
NEWLINE = "\n"

TAG_ADDRESS = "a"
TAG_CONNECT = "c"
TAG_DISCONNECT = "d"
TAG_RECEIVE = "r"

# Raw socket and pipe bytes map 1:1 onto str and back with this pair.
ENCODING = "utf-8"
ERRORS = "surrogateescape"


class ProtocolError(ValueError):
    """Raised when a line does not follow the tagged line syntax."""


def encode(tag: str, *fields: str) -> str:
    """Join tag and fields with the delimiter and terminate with a newline."""
    parts = [tag, *fields]
    for part in parts:
        if NEWLINE in part:
            raise ProtocolError(f"field must not contain a newline: {part!r}")
    return DELIM.join(parts) + NEWLINE


def decode(line: str) -> Tuple[str, str]:
    """Split a line on the first delimiter only.

    The remainder is returned untouched, so relayed payloads may contain
    further delimiters.
    """
    head, sep, rest = line.partition(DELIM)
    if not sep:
        raise ProtocolError(f"no {DELIM!r} delimiter in line: {line!r}")
    return head, rest


def strip_eol(line: str) -> str:
    """Remove a trailing ``\\n`` or ``\\r\\n``."""
    if line.endswith("\r\n"):
        return line[:-2]
    if line.endswith("\n"):
        return line[:-1]
    return line


def format_address(host: str, port: int) -> str:
    """Render ``host:port``, bracketing IPv6 hosts."""
    if DELIM in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def split_address(addr: str) -> Tuple[str, int]:
    """Parse a ``host:port`` bind address; ``[v6]:port`` and ``:port`` are accepted."""
    host, sep, port = addr.rpartition(DELIM)
    if not sep:
        raise ValueError(f"missing port in address {addr!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif DELIM in host:
        raise ValueError(f"IPv6 host must be bracketed in address {addr!r}")
    try:
        port_num = int(port)
    except ValueError:
        raise ValueError(f"invalid port {port!r} in address {addr!r}") from None
    if not (0 <= port_num <= 65535):
        raise ValueError(f"port out of range in address {addr!r}")
    return host, port_num
