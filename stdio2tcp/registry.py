"""Thread-safe mapping from connection identifier to live connection."""

import threading
from typing import Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class ConnectionRegistry(Generic[T]):
    """Identifier -> connection map shared by the acceptor, ingress and egress loops.

    An identifier is present exactly while its connection is open and owned
    by a running egress handler.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._conns: Dict[str, T] = {}

    def put(self, conn_id: str, conn: T) -> None:
        """Register a connection; raise KeyError if the id is still live."""
        with self._lock:
            if conn_id in self._conns:
                raise KeyError(f"connection {conn_id} is already registered")
            self._conns[conn_id] = conn

    def put_unique(self, base_id: str, conn: T) -> str:
        """Register under ``base_id``, or ``base_id-N`` while that id is still live.

        Returns the identifier the connection was registered under.
        """
        with self._lock:
            conn_id = base_id
            n = 1
            while conn_id in self._conns:
                conn_id = f"{base_id}-{n}"
                n += 1
            self._conns[conn_id] = conn
            return conn_id

    def get(self, conn_id: str) -> Optional[T]:
        """Return the live connection for ``conn_id``, or None."""
        with self._lock:
            return self._conns.get(conn_id)

    def remove(self, conn_id: str) -> Optional[T]:
        """Drop ``conn_id`` and return its connection, or None if absent."""
        with self._lock:
            return self._conns.pop(conn_id, None)

    def ids(self) -> List[str]:
        """Snapshot of the live identifiers."""
        with self._lock:
            return list(self._conns)

    def __contains__(self, conn_id: object) -> bool:
        with self._lock:
            return conn_id in self._conns

    def __len__(self) -> int:
        with self._lock:
            return len(self._conns)
