"""TCP listeners with keep-alive, optional PROXY protocol and optional TLS."""

from __future__ import annotations

import ipaddress
import socket
import ssl
import time
from dataclasses import dataclass
from typing import Any, Optional

KEEPALIVE_PERIOD = 180
_MAX_PROXY_HEADER = 107
_PROXY_SIGNATURE = b"PROXY"


class ProxyProtocolError(ValueError):
    """Raised for a malformed PROXY protocol header."""


@dataclass
class ListenConfig:
    """Settings for a listening socket."""

    address: str = ""
    proxy_proto: bool = False
    proxy_header_timeout: float = 0.0
    read_timeout: float = 0.0
    write_timeout: float = 0.0
    idle_timeout: float = 0.0


def _format_address(host: str, port: int) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _parse_port(text: bytes) -> int:
    if not text.isdigit():
        raise ProxyProtocolError(f"invalid port {text!r}")
    port = int(text)
    if port > 65535:
        raise ProxyProtocolError(f"invalid port {text!r}")
    return port


def parse_proxy_header(line: bytes) -> Optional[tuple[tuple[str, int], tuple[str, int]]]:
    """Parse a PROXY protocol v1 header line.

    Returns ``(source, destination)`` address pairs, or ``None`` for the
    UNKNOWN protocol. Raises ProxyProtocolError if the line is malformed.
    """
    if not line.endswith(b"\r\n"):
        raise ProxyProtocolError("header not terminated by CRLF")
    parts = line[:-2].split(b" ")
    if len(parts) < 2 or parts[0] != _PROXY_SIGNATURE:
        raise ProxyProtocolError("missing PROXY signature")
    proto = parts[1]
    if proto == b"UNKNOWN":
        return None
    if proto not in (b"TCP4", b"TCP6") or len(parts) != 6:
        raise ProxyProtocolError("invalid header")
    try:
        src = ipaddress.ip_address(parts[2].decode("ascii"))
        dst = ipaddress.ip_address(parts[3].decode("ascii"))
    except (UnicodeDecodeError, ValueError):
        raise ProxyProtocolError("invalid address") from None
    version = 4 if proto == b"TCP4" else 6
    if src.version != version or dst.version != version:
        raise ProxyProtocolError("address does not match protocol")
    return (str(src), _parse_port(parts[4])), (str(dst), _parse_port(parts[5]))


class _AddressedConnection:
    """A connection reporting the addresses taken from a PROXY header."""

    def __init__(self, sock: Any, peer: tuple, local: tuple) -> None:
        self._sock = sock
        self._peer = peer
        self._local = local

    def getpeername(self) -> tuple:
        return self._peer

    def getsockname(self) -> tuple:
        return self._local

    def __getattr__(self, name: str) -> Any:
        return getattr(self._sock, name)


def _enable_keepalive(sock: socket.socket) -> None:
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
    for option in ("TCP_KEEPIDLE", "TCP_KEEPINTVL"):
        if hasattr(socket, option):
            try:
                sock.setsockopt(socket.IPPROTO_TCP, getattr(socket, option), KEEPALIVE_PERIOD)
            except OSError:
                pass


class TCPListener:
    """A listening socket that yields prepared connections from ``accept``."""

    def __init__(self, sock: socket.socket, config: ListenConfig,
                 ssl_context: Optional[ssl.SSLContext] = None) -> None:
        self.sock = sock
        self.config = config
        self.ssl_context = ssl_context

    def _read_proxy_header(self, conn: socket.socket) -> Optional[tuple]:
        timeout = self.config.proxy_header_timeout
        conn.settimeout(timeout if timeout > 0 else None)
        try:
            data = b""
            while len(data) < len(_PROXY_SIGNATURE):
                try:
                    data = conn.recv(len(_PROXY_SIGNATURE), socket.MSG_PEEK)
                except TimeoutError:
                    return None
                if not data or not _PROXY_SIGNATURE.startswith(data):
                    return None
                if len(data) < len(_PROXY_SIGNATURE):
                    time.sleep(0.001)
            line = bytearray()
            while not line.endswith(b"\r\n"):
                if len(line) >= _MAX_PROXY_HEADER:
                    raise ProxyProtocolError("header too long")
                byte = conn.recv(1)
                if not byte:
                    raise ProxyProtocolError("truncated header")
                line += byte
            return parse_proxy_header(bytes(line))
        finally:
            conn.settimeout(None)

    def accept(self) -> tuple[Any, Any]:
        """Return the next ``(connection, peer address)``.

        Connections with an invalid PROXY header are dropped.
        """
        while True:
            conn, addr = self.sock.accept()
            _enable_keepalive(conn)
            header = None
            if self.config.proxy_proto:
                try:
                    header = self._read_proxy_header(conn)
                except OSError:
                    conn.close()
                    continue
                except ProxyProtocolError:
                    conn.close()
                    continue
            result: Any = conn
            if self.ssl_context is not None:
                result = self.ssl_context.wrap_socket(
                    conn, server_side=True, do_handshake_on_connect=False
                )
            if header is not None:
                peer, local = header
                result = _AddressedConnection(result, peer, local)
                addr = peer
            return result, addr

    def close(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()

    def shutdown(self, how: int) -> None:
        self.sock.shutdown(how)

    def address(self) -> str:
        """Return the bound address as ``host:port``."""
        host, port = self.sock.getsockname()[:2]
        return _format_address(host, port)


def listen_tcp(listen: ListenConfig, ssl_context: Optional[ssl.SSLContext] = None) -> TCPListener:
    """Open a listening TCP socket as described by ``listen``."""
    host, sep, port_text = listen.address.rpartition(":")
    host = host.strip("[]")
    try:
        if not sep or not port_text.isdigit():
            raise ValueError(listen.address)
        infos = socket.getaddrinfo(host or None, int(port_text), type=socket.SOCK_STREAM,
                                   flags=socket.AI_PASSIVE)
    except (ValueError, OSError):
        raise OSError(f"listen: Fail to resolve tcp addr. {listen.address}") from None
    family, socktype, proto, _, sockaddr = infos[0]
    sock = socket.socket(family, socktype, proto)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(sockaddr)
        sock.listen(128)
    except OSError as exc:
        sock.close()
        raise OSError(f"listen: Fail to listen. {exc}") from None
    return TCPListener(sock, listen, ssl_context)