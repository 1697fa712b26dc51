"""Attach the process stdin/stdout to asyncio streams."""

import asyncio
import os
import stat
import sys
from typing import Set, Tuple

READ_CHUNK = 65536

_background: Set[asyncio.Task] = set()


def _is_pipe_like(f) -> bool:
    """True when asyncio pipe transports accept ``f`` (pipes, sockets, ttys)."""
    try:
        mode = os.fstat(f.fileno()).st_mode
    except (AttributeError, OSError, ValueError):
        return False
    return stat.S_ISFIFO(mode) or stat.S_ISSOCK(mode) or stat.S_ISCHR(mode)


class FileWriter:
    """StreamWriter stand-in for regular files: drain() writes in a worker thread."""

    def __init__(self, f):
        self._fd = f.fileno()
        self._buf = bytearray()

    def write(self, data: bytes):
        self._buf += data

    async def drain(self):
        if not self._buf:
            return
        data = bytes(self._buf)
        self._buf.clear()
        await asyncio.to_thread(self._write_all, data)

    def _write_all(self, data: bytes):
        view = memoryview(data)
        while view:
            n = os.write(self._fd, view)
            view = view[n:]

    def close(self):
        self._buf.clear()


async def _feed_from_file(fd: int, reader: asyncio.StreamReader):
    """Copy a regular file into ``reader`` from a worker thread until EOF."""
    try:
        while True:
            data = await asyncio.to_thread(os.read, fd, READ_CHUNK)
            if not data:
                break
            reader.feed_data(data)
    except OSError as exc:
        reader.set_exception(exc)
        return
    reader.feed_eof()


async def open_stdio(
    stdin=None, stdout=None, limit: int = 2**16
) -> Tuple[asyncio.StreamReader, object]:
    """Return a (reader, writer) pair over the given files (default: process stdio).

    Pipes, sockets and ttys use asyncio pipe transports; regular files
    (shell redirection) are read and written from worker threads.
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=limit)
    if _is_pipe_like(stdin):
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, stdin)
    else:
        task = loop.create_task(_feed_from_file(stdin.fileno(), reader))
        _background.add(task)
        task.add_done_callback(_background.discard)
    if _is_pipe_like(stdout):
        w_transport, w_protocol = await loop.connect_write_pipe(
            asyncio.streams.FlowControlMixin, stdout
        )
        writer = asyncio.StreamWriter(w_transport, w_protocol, reader, loop)
    else:
        writer = FileWriter(stdout)
    return reader, writer
