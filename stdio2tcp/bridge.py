"""Asyncio-based bridge between a TCP listener and a parent process on stdio."""

import asyncio
import errno
import logging
import socket
from typing import Optional, Set

from stdio2tcp import protocol
from stdio2tcp.registry import ConnectionRegistry
from stdio2tcp.stdio import open_stdio

logger = logging.getLogger("stdio2tcp")

DEFAULT_LINE_LIMIT = 1024 * 1024
ACCEPT_BACKOFF_MIN = 0.005
ACCEPT_BACKOFF_MAX = 1.0

TRANSIENT_ACCEPT_ERRNOS = frozenset(
    code
    for code in (
        getattr(errno, name, None)
        for name in (
            "ECONNABORTED",
            "EAGAIN",
            "EWOULDBLOCK",
            "EINTR",
            "EMFILE",
            "ENFILE",
            "ENOBUFS",
            "ENOMEM",
            "EPROTO",
        )
    )
    if code is not None
)

STATE_STARTING = "starting"
STATE_RUNNING = "running"
STATE_TERMINATED = "terminated"


class BridgeError(Exception):
    """Session-fatal failure of the bridge."""


def is_transient_accept_error(exc: OSError) -> bool:
    """True for accept() failures worth retrying (aborted handshakes, fd exhaustion)."""
    if isinstance(exc, (BlockingIOError, InterruptedError, ConnectionAbortedError)):
        return True
    return exc.errno in TRANSIENT_ACCEPT_ERRNOS


class EventWriter:
    """Single write path for event lines onto the upstream output stream.

    Each event is written and drained under one lock, so lines from
    concurrent handlers never interleave.
    """

    def __init__(self, out):
        self._out = out
        self._lock = asyncio.Lock()

    async def emit(self, tag: str, *fields: str) -> None:
        data = protocol.encode(tag, *fields).encode(protocol.ENCODING, protocol.ERRORS)
        async with self._lock:
            try:
                self._out.write(data)
                await self._out.drain()
            except (OSError, RuntimeError) as exc:
                raise BridgeError(f"failed to write {tag!r} event: {exc}") from exc


class Bridge:
    """One bridge session: a TCP listener multiplexed onto two upstream streams.

    ``reader`` is an ``asyncio.StreamReader`` carrying ``id:expr`` commands;
    ``writer`` is anything with ``write(bytes)`` and ``async drain()``,
    normally an ``asyncio.StreamWriter`` over stdout.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer,
        *,
        log: Optional[logging.Logger] = None,
        strict_connections: bool = False,
        line_limit: int = DEFAULT_LINE_LIMIT,
    ):
        self._in = reader
        self._events = EventWriter(writer)
        self._log = log or logger
        self._strict = strict_connections
        self._line_limit = line_limit
        self.registry: ConnectionRegistry[asyncio.StreamWriter] = ConnectionRegistry()
        self.state = STATE_STARTING
        self.address: Optional[str] = None
        self._started = False
        self._listener: Optional[socket.socket] = None
        self._accept_task: Optional[asyncio.Task] = None
        self._egress_tasks: Set[asyncio.Task] = set()

    async def start(self, addr: str) -> None:
        """Bind ``addr``, announce it, and run until upstream input closes.

        Raises BridgeError (or the first fatal error of any loop) on failure.
        """
        if self._started:
            raise BridgeError("a bridge session cannot be restarted")
        self._started = True
        try:
            self._listener = self._listen(addr)
            host, port = self._listener.getsockname()[:2]
            self.address = protocol.format_address(host, port)
            await self._events.emit(protocol.TAG_ADDRESS, self.address)
            self._log.info("TCP server listening on %s", self.address)
            self.state = STATE_RUNNING
            try:
                async with asyncio.TaskGroup() as group:
                    group.create_task(self._run_incoming(), name="stdio2tcp-ingress")
                    self._accept_task = group.create_task(
                        self._handle_accept(group), name="stdio2tcp-accept"
                    )
            except ExceptionGroup as eg:
                raise eg.exceptions[0]
        finally:
            self.state = STATE_TERMINATED
            self._close()

    def _listen(self, addr: str) -> socket.socket:
        """Bind a non-blocking listener; an empty host means every interface."""
        try:
            host, port = protocol.split_address(addr)
        except ValueError as exc:
            raise BridgeError(f"failed to listen TCP on {addr}: {exc}") from exc
        try:
            if not host and socket.has_dualstack_ipv6():
                sock = socket.create_server(
                    (host, port), family=socket.AF_INET6, dualstack_ipv6=True
                )
            elif ":" in host:
                sock = socket.create_server((host, port), family=socket.AF_INET6)
            else:
                sock = socket.create_server((host, port))
        except OSError as exc:
            raise BridgeError(f"failed to listen TCP on {addr}: {exc}") from exc
        sock.setblocking(False)
        return sock

    def _close(self):
        """Close the listener and any connection whose egress task never started."""
        if self._listener is not None:
            self._listener.close()
        # A task cancelled before its first step never wrote ``c``, so no ``d`` is owed.
        for conn_id in self.registry.ids():
            writer = self.registry.remove(conn_id)
            if writer is not None:
                writer.close()

    def _shutdown(self):
        """Wind down the acceptor and every connection after a clean ingress end."""
        if self._accept_task is not None:
            self._accept_task.cancel()
        for task in list(self._egress_tasks):
            task.cancel()

    async def _run_incoming(self):
        """Run the ingress loop, then wind the session down on a clean end."""
        await self._handle_incoming()
        self._log.info("Upstream input closed, shutting down")
        self._shutdown()

    async def _handle_incoming(self):
        """Forward ``id:expr`` command lines to their connections until EOF."""
        while True:
            try:
                data = await self._in.readline()
            except (ConnectionResetError, BrokenPipeError):
                return
            except ValueError as exc:
                # readline() has already discarded the overlong line.
                self._log.warning("Dropping incoming line over the length limit: %s", exc)
                continue
            except OSError as exc:
                raise BridgeError(f"failed to read incoming data: {exc}") from exc
            if not data:
                return
            text = protocol.strip_eol(data.decode(protocol.ENCODING, protocol.ERRORS))
            try:
                conn_id, expr = protocol.decode(text)
            except protocol.ProtocolError:
                self._log.warning(
                    "Incoming data does not follow the syntax (id:expr): %r", text
                )
                continue
            conn_id = conn_id.strip()
            writer = self.registry.get(conn_id)
            if writer is None:
                self._log.warning("No connection exists for %s", conn_id)
                continue
            try:
                writer.write(expr.encode(protocol.ENCODING, protocol.ERRORS))
                await writer.drain()
            except (OSError, RuntimeError) as exc:
                self._log.warning("Failed to write data %r to %s: %s", expr, conn_id, exc)
                continue
            self._log.debug("Wrote %d chars to %s", len(expr), conn_id)

    async def _handle_accept(self, group: asyncio.TaskGroup):
        """Accept connections forever, retrying transient errors with backoff."""
        loop = asyncio.get_running_loop()
        delay = 0.0
        while True:
            try:
                conn, peer = await loop.sock_accept(self._listener)
            except OSError as exc:
                if not is_transient_accept_error(exc):
                    raise BridgeError(
                        f"failed to accept connection by non-temporary error: {exc}"
                    ) from exc
                delay = min(delay * 2, ACCEPT_BACKOFF_MAX) if delay else ACCEPT_BACKOFF_MIN
                self._log.warning("Accept error: %s; retrying in %.3fs", exc, delay)
                await asyncio.sleep(delay)
                continue
            delay = 0.0
            await self._register(group, conn, peer)

    async def _register(self, group: asyncio.TaskGroup, conn: socket.socket, peer):
        """Wrap an accepted socket in streams, register it and hand it to an egress task."""
        try:
            reader, writer = await asyncio.open_connection(
                sock=conn, limit=self._line_limit
            )
        except OSError as exc:
            self._log.warning("Failed to set up connection from %s: %s", peer, exc)
            conn.close()
            return
        except BaseException:
            conn.close()
            raise
        conn_id = self.registry.put_unique(str(peer[1]), writer)
        task = group.create_task(
            self._handle_outgoing(conn_id, reader, writer),
            name=f"stdio2tcp-egress-{conn_id}",
        )
        self._egress_tasks.add(task)
        task.add_done_callback(self._egress_tasks.discard)
        self._log.info("TCP client connected: %s as %s", peer[0], conn_id)

    async def _handle_outgoing(
        self, conn_id: str, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ):
        """Announce one peer, relay its lines upstream, and always pair ``c`` with ``d``."""
        try:
            await self._events.emit(protocol.TAG_CONNECT, conn_id)
            await self._relay_outgoing(conn_id, reader)
        finally:
            self.registry.remove(conn_id)
            try:
                await self._events.emit(protocol.TAG_DISCONNECT, conn_id)
            except BridgeError as exc:
                self._log.warning("Failed to write disconnection of %s: %s", conn_id, exc)
            finally:
                writer.close()
                self._log.info("TCP client disconnected: %s", conn_id)

    async def _relay_outgoing(self, conn_id: str, reader: asyncio.StreamReader):
        """Emit one ``r`` event per peer line until the peer closes."""
        while True:
            try:
                data = await reader.readline()
            except (ConnectionResetError, BrokenPipeError):
                return
            except (OSError, ValueError) as exc:
                if self._strict:
                    raise BridgeError(
                        f"failed to read outgoing data from {conn_id}: {exc}"
                    ) from exc
                self._log.warning("Dropping connection %s after read error: %s", conn_id, exc)
                return
            if not data:
                return
            line = protocol.strip_eol(data.decode(protocol.ENCODING, protocol.ERRORS))
            await self._events.emit(protocol.TAG_RECEIVE, conn_id, line)


async def run_bridge_async(
    addr: str,
    strict_connections: bool = False,
    line_limit: int = DEFAULT_LINE_LIMIT,
    log: Optional[logging.Logger] = None,
):
    """Wire the process stdio to a bridge session and run it to completion."""
    try:
        reader, writer = await open_stdio(limit=line_limit)
    except (OSError, ValueError) as exc:
        raise BridgeError(f"failed to attach stdio: {exc}") from exc
    bridge = Bridge(
        reader,
        writer,
        log=log,
        strict_connections=strict_connections,
        line_limit=line_limit,
    )
    await bridge.start(addr)


def run_bridge(
    addr: str,
    strict_connections: bool = False,
    line_limit: int = DEFAULT_LINE_LIMIT,
    log: Optional[logging.Logger] = None,
):
    """Synchronous entry: run the asyncio bridge until upstream input closes."""
    asyncio.run(
        run_bridge_async(
            addr, strict_connections=strict_connections, line_limit=line_limit, log=log
        )
    )
