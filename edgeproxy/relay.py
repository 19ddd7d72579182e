"""Byte relaying between connections and PROXY protocol header writing."""

from __future__ import annotations

import ipaddress
from typing import Any, Callable, Optional

BUFFER_SIZE = 32 * 1024


class ShortWriteError(OSError):
    """Raised when a writer accepts fewer bytes than it was given."""

    def __init__(self) -> None:
        super().__init__("short write")


def _reader(src: Any) -> Callable[[int], bytes]:
    recv = getattr(src, "recv", None)
    return recv if recv is not None else src.read


def _write(dst: Any, chunk: bytes) -> int:
    write = getattr(dst, "write", None)
    if write is not None:
        written = write(chunk)
        return len(chunk) if written is None else written
    dst.sendall(chunk)
    return len(chunk)


def copy_buffer(dst: Any, src: Any, counter: Optional[Callable[[int], Any]] = None) -> int:
    """Copy everything from ``src`` to ``dst`` until end of stream.

    ``src`` needs ``recv`` or ``read``; ``dst`` needs ``write`` or ``sendall``.
    ``counter``, if given, is called with the number of bytes of every
    successful write. Returns the total number of bytes written.
    """
    read = _reader(src)
    total = 0
    while True:
        chunk = read(BUFFER_SIZE)
        if not chunk:
            return total
        written = _write(dst, chunk)
        if written > 0:
            total += written
            if counter is not None:
                counter(written)
        if written != len(chunk):
            raise ShortWriteError()


def _is_ipv4(host: str) -> bool:
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    if isinstance(addr, ipaddress.IPv6Address):
        return addr.ipv4_mapped is not None
    return True


def proxy_header(client_addr: tuple, server_addr: tuple) -> bytes:
    """Return a PROXY protocol v1 header for the given (host, port) pairs."""
    client_host, client_port = client_addr[0], client_addr[1]
    server_host, server_port = server_addr[0], server_addr[1]
    proto = "TCP4" if _is_ipv4(client_host) else "TCP6"
    line = f"PROXY {proto} {client_host} {server_host} {client_port} {server_port}\r\n"
    return line.encode("ascii")


def write_proxy_header(out: Any, inbound: Any) -> None:
    """Write the PROXY header describing ``inbound`` to ``out``."""
    header = proxy_header(inbound.getpeername(), inbound.getsockname())
    _write(out, header)