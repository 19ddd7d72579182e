"""A generic threaded TCP server with per-operation read and write timeouts."""

from __future__ import annotations

import socket
import ssl
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional


def _close_socket(sock: Any) -> None:
    """Shut down and close ``sock`` so that blocked calls on it return."""
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except (OSError, AttributeError):
        pass
    try:
        sock.close()
    except OSError:
        pass


class TimeoutConnection:
    """A connection that applies a timeout to every read and every write.

    A timeout of zero or less disables it for that direction.
    """

    def __init__(self, sock: Any, read_timeout: float = 0.0, write_timeout: float = 0.0) -> None:
        self.sock = sock
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout

    def recv(self, size: int) -> bytes:
        if self.read_timeout > 0:
            self.sock.settimeout(self.read_timeout)
        return self.sock.recv(size)

    def sendall(self, data: bytes) -> None:
        if self.write_timeout > 0:
            self.sock.settimeout(self.write_timeout)
        self.sock.sendall(data)

    def close(self) -> None:
        _close_socket(self.sock)

    def getsockname(self) -> Any:
        return self.sock.getsockname()

    def getpeername(self) -> Any:
        return self.sock.getpeername()

    def __enter__(self) -> "TimeoutConnection":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


Handler = Callable[[TimeoutConnection], Any]


def _dispatch(handler: Any, conn: TimeoutConnection) -> None:
    serve_tcp = getattr(handler, "serve_tcp", None)
    if serve_tcp is not None:
        serve_tcp(conn)
    else:
        handler(conn)


@dataclass
class TCPServer:
    """Serves TCP connections by passing each one to ``handler`` in its own thread.

    ``handler`` is a callable taking the connection, or an object with a
    ``serve_tcp`` method.
    """

    address: str = ""
    handler: Any = None
    read_timeout: float = 0.0
    write_timeout: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _listeners: list = field(default_factory=list, init=False, repr=False)
    _conns: set = field(default_factory=set, init=False, repr=False)

    def _bind(self) -> socket.socket:
        host, _, port = self.address.rpartition(":")
        host = host.strip("[]")
        return socket.create_server((host, int(port or 0)))

    def listen_and_serve(self) -> None:
        """Listen on ``address`` and serve until the listener is closed."""
        listener = self._bind()
        try:
            self.serve(listener)
        finally:
            listener.close()

    def listen_and_serve_tls(self, cert_file: str, key_file: str) -> None:
        """Like listen_and_serve but terminating TLS with the given key pair."""
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(cert_file, key_file)
        raw = self._bind()
        listener = context.wrap_socket(raw, server_side=True, do_handshake_on_connect=False)
        try:
            self.serve(listener)
        finally:
            listener.close()

    def serve(self, listener: Any) -> None:
        """Accept connections from ``listener`` until accepting fails.

        The error from ``accept`` is raised; the listener is closed on return.
        """
        with self._lock:
            self._listeners.append(listener)
        try:
            while True:
                raw, _ = listener.accept()
                conn = TimeoutConnection(raw, self.read_timeout, self.write_timeout)
                with self._lock:
                    self._conns.add(conn)
                threading.Thread(target=self._handle, args=(conn,), daemon=True).start()
        finally:
            _close_socket(listener)

    def _handle(self, conn: TimeoutConnection) -> None:
        try:
            _dispatch(self.handler, conn)
        except Exception:
            pass
        finally:
            conn.close()
            with self._lock:
                self._conns.discard(conn)

    def _close_listeners(self) -> None:
        with self._lock:
            listeners, self._listeners = self._listeners, []
        for listener in listeners:
            _close_socket(listener)

    def _close_conns(self) -> None:
        with self._lock:
            conns, self._conns = self._conns, set()
        for conn in conns:
            conn.close()

    def close(self) -> None:
        """Close all listeners and all open connections immediately."""
        self._close_listeners()
        self._close_conns()

    def shutdown(self, timeout: Optional[float]) -> None:
        """Stop accepting, wait ``timeout`` seconds, then close open connections."""
        self._close_listeners()
        if timeout is not None and timeout > 0:
            time.sleep(timeout)
        self._close_conns()