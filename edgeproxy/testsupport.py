"""Helpers for exercising TCP servers: retrying dialers and a local test server."""

from __future__ import annotations

import socket
import ssl
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from edgeproxy.listen import ListenConfig, TCPListener, listen_tcp
from edgeproxy.tcp_server import TCPServer

DEFAULT_TIMEOUT = 1.0
DEFAULT_SLEEP = 0.1
TEST_PROXY_HEADER = b"PROXY TCP4 1.2.3.4 5.6.7.8 12345 54321\r\n"


def retry(dial: Callable[[], Any], timeout: float = 0.0, sleep: float = 0.0) -> Any:
    """Call ``dial`` until it succeeds or ``timeout`` seconds have passed.

    Zero values select a one second timeout and a 100ms pause between tries.
    The last error is raised when the deadline passes.
    """
    sleep = sleep or DEFAULT_SLEEP
    timeout = timeout or DEFAULT_TIMEOUT
    deadline = time.monotonic() + timeout
    while True:
        try:
            return dial()
        except OSError:
            if time.monotonic() >= deadline:
                raise
            time.sleep(sleep)


def _split(address: str) -> tuple[str, int]:
    host, _, port = address.rpartition(":")
    return host.strip("[]"), int(port)


@dataclass
class RetryDialer:
    """Dials a TCP address, retrying until it answers."""

    timeout: float = 0.0
    sleep: float = 0.0
    proxy_proto: bool = False

    def dial(self, address: str) -> socket.socket:
        def attempt() -> socket.socket:
            conn = socket.create_connection(_split(address))
            if self.proxy_proto:
                conn.sendall(TEST_PROXY_HEADER)
            return conn

        return retry(attempt, self.timeout, self.sleep)


@dataclass
class TLSRetryDialer:
    """Dials a TLS address, retrying until it answers."""

    ssl_context: ssl.SSLContext
    server_hostname: Optional[str] = None
    timeout: float = 0.0
    sleep: float = 0.0
    proxy_proto: bool = False

    def dial(self, address: str) -> ssl.SSLSocket:
        def attempt() -> ssl.SSLSocket:
            conn = socket.create_connection(_split(address))
            if self.proxy_proto:
                conn.sendall(TEST_PROXY_HEADER)
            hostname = self.server_hostname or _split(address)[0]
            return self.ssl_context.wrap_socket(conn, server_hostname=hostname)

        return retry(attempt, self.timeout, self.sleep)


def _local_listener(proxy_proto: bool) -> TCPListener:
    config = ListenConfig(proxy_proto=proxy_proto, proxy_header_timeout=0.1 if proxy_proto else 0.0)
    for address in ("127.0.0.1:0", "[::1]:0"):
        config.address = address
        try:
            return listen_tcp(config)
        except OSError as exc:
            last = exc
    raise OSError(f"failed to listen on a port: {last}")


@dataclass
class TestServer:
    """A TCP server on a random local port for tests."""

    __test__ = False

    handler: Any
    listener: TCPListener = field(default_factory=lambda: _local_listener(False))
    config: TCPServer = field(default_factory=TCPServer)
    address: str = ""
    _server: Optional[TCPServer] = field(default=None, init=False, repr=False)

    def _launch(self) -> None:
        if self.address:
            raise RuntimeError("Server already started")
        self.address = self.listener.address()
        self._server = TCPServer(
            address=self.config.address,
            handler=self.config.handler if self.config.handler is not None else self.handler,
            read_timeout=self.config.read_timeout,
            write_timeout=self.config.write_timeout,
        )
        threading.Thread(target=self._run, daemon=True).start()

    def _run(self) -> None:
        try:
            self._server.serve(self.listener)
        except OSError:
            pass

    def start(self) -> None:
        self._launch()

    def start_tls(self, ssl_context: ssl.SSLContext) -> None:
        """Start serving, terminating TLS with ``ssl_context``."""
        if self.address:
            raise RuntimeError("Server already started")
        self.listener.ssl_context = ssl_context
        self._launch()

    def close(self) -> None:
        if not self.address or self._server is None:
            raise RuntimeError("Server not started")
        self._server.close()


def new_server(handler: Any) -> TestServer:
    server = TestServer(handler=handler)
    server.start()
    return server


def new_server_with_proxy_proto(handler: Any) -> TestServer:
    server = TestServer(handler=handler, listener=_local_listener(True))
    server.start()
    return server