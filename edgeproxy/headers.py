"""Request and response header rewriting for the HTTP reverse proxy."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Union

TLS_VERSION_SSL30 = 0x0300
TLS_VERSION_TLS10 = 0x0301
TLS_VERSION_TLS11 = 0x0302
TLS_VERSION_TLS12 = 0x0303

_TLS_VERSION_NAMES = {
    TLS_VERSION_SSL30: "ssl30",
    TLS_VERSION_TLS10: "tls10",
    TLS_VERSION_TLS11: "tls11",
    TLS_VERSION_TLS12: "tls12",
}

_TOKEN_CHARS = frozenset(
    "!#$%&'*+-.^_`|~0123456789"
    "abcdefghijklmnopqrstuvwxyz"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
)

HeaderValue = Union[str, Iterable[str], None]


class HeaderError(ValueError):
    """Raised when a request cannot be prepared for forwarding."""


def canonical_key(name: str) -> str:
    """Return the canonical MIME form of a header name, e.g. ``X-Real-Ip``.

    Names containing characters that are not valid in a header field name
    are returned unchanged.
    """
    if not name or any(ch not in _TOKEN_CHARS for ch in name):
        return name
    parts = []
    upper = True
    for ch in name:
        parts.append(ch.upper() if upper else ch.lower())
        upper = ch == "-"
    return "".join(parts)


class Headers:
    """A case-insensitive multi-valued header map.

    A name mapped to ``None`` is present but suppressed: the proxy will not
    populate it.
    """

    def __init__(self, initial: Optional[Mapping[str, HeaderValue]] = None) -> None:
        self._items: dict[str, Optional[list[str]]] = {}
        for name, value in (initial or {}).items():
            key = canonical_key(name)
            if value is None:
                self._items[key] = None
            elif isinstance(value, str):
                self._items[key] = [value]
            else:
                self._items[key] = list(value)

    def get(self, name: str) -> str:
        """Return the first value for ``name`` or an empty string."""
        values = self._items.get(canonical_key(name))
        return values[0] if values else ""

    def set(self, name: str, value: str) -> None:
        """Replace all values of ``name`` with ``value``."""
        self._items[canonical_key(name)] = [value]

    def delete(self, name: str) -> None:
        """Remove ``name`` if present."""
        self._items.pop(canonical_key(name), None)

    def values(self, name: str) -> Optional[list[str]]:
        """Return a copy of the values of ``name``; ``None`` if absent or suppressed."""
        values = self._items.get(canonical_key(name))
        return None if values is None else list(values)

    def as_dict(self) -> dict[str, Optional[list[str]]]:
        """Return the headers as a plain dictionary keyed by canonical name."""
        return {k: (None if v is None else list(v)) for k, v in self._items.items()}

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and canonical_key(name) in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Headers):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        return f"Headers({self._items!r})"


@dataclass
class TLSInfo:
    """The negotiated parameters of a TLS connection."""

    version: int = 0
    cipher_suite: int = 0


@dataclass
class Request:
    """The parts of an incoming request that header rewriting looks at."""

    remote_addr: str = ""
    headers: Headers = field(default_factory=Headers)
    host: str = ""
    proto: str = ""
    tls: Optional[TLSInfo] = None


@dataclass
class STSHeader:
    """Settings for the Strict-Transport-Security response header."""

    max_age: int = 0
    subdomains: bool = False
    preload: bool = False


@dataclass
class ProxyConfig:
    """Proxy settings that influence header rewriting."""

    client_ip_header: str = ""
    local_ip: str = ""
    tls_header: str = ""
    tls_header_value: str = ""
    sts_header: STSHeader = field(default_factory=STSHeader)


def _split_host_port(address: str) -> tuple[str, str]:
    if address.startswith("["):
        end = address.find("]")
        if end < 0 or address[end + 1 : end + 2] != ":":
            raise ValueError(address)
        return address[1:end], address[end + 2 :]
    host, sep, port = address.rpartition(":")
    if not sep or ":" in host:
        raise ValueError(address)
    return host, port


def uint16_base16(n: int) -> str:
    """Format ``n`` as a zero padded four digit hex number, e.g. ``0xc023``."""
    return f"0x{n & 0xFFFF:04x}"


def add_response_headers(response_headers: Headers, request: Request, config: ProxyConfig) -> None:
    """Add the Strict-Transport-Security header for TLS requests when configured."""
    sts_cfg = config.sts_header
    if request.tls is None or sts_cfg.max_age <= 0:
        return
    sts = f"max-age={sts_cfg.max_age}"
    if sts_cfg.subdomains:
        sts += "; includeSubdomains"
    if sts_cfg.preload:
        sts += "; preload"
    response_headers.set("Strict-Transport-Security", sts)


def add_headers(request: Request, config: ProxyConfig, strip_path: str) -> None:
    """Add or update the forwarding headers on ``request`` in place.

    Raises HeaderError if the remote address cannot be parsed.
    """
    try:
        remote_ip, _ = _split_host_port(request.remote_addr)
    except ValueError:
        raise HeaderError("cannot parse " + request.remote_addr) from None

    headers = request.headers

    if config.client_ip_header and config.client_ip_header not in ("X-Forwarded-For", "X-Real-Ip"):
        headers.set(config.client_ip_header, remote_ip)

    if not headers.get("X-Real-Ip"):
        headers.set("X-Real-Ip", remote_ip)

    # Websocket connections bypass the HTTP forwarder that would
    # otherwise maintain X-Forwarded-For.
    if headers.get("Upgrade") == "websocket":
        client_ip = remote_ip
        present = "X-Forwarded-For" in headers
        prior = headers.values("X-Forwarded-For")
        omit = present and prior is None
        if prior:
            client_ip = ", ".join(prior) + ", " + client_ip
        if not omit:
            headers.set("X-Forwarded-For", client_ip)

    # Only 'http' and 'https' are safe values for X-Forwarded-Proto.
    proto = scheme(request)
    if not headers.get("X-Forwarded-Proto"):
        headers.set("X-Forwarded-Proto", {"ws": "http", "wss": "https"}.get(proto, proto))

    if not headers.get("X-Forwarded-Port"):
        headers.set("X-Forwarded-Port", local_port(request))

    if not headers.get("X-Forwarded-Host") and request.host:
        headers.set("X-Forwarded-Host", request.host)

    if strip_path:
        headers.set("X-Forwarded-Prefix", strip_path)

    fwd = headers.get("Forwarded")
    if not fwd:
        fwd = f"for={remote_ip}; proto={proto}"
    if config.local_ip:
        fwd += "; by=" + config.local_ip
    if request.proto:
        fwd += "; httpproto=" + request.proto.lower()
    tls = request.tls
    if tls is not None and tls.version > 0:
        fwd += "; tlsver=" + _TLS_VERSION_NAMES.get(tls.version, uint16_base16(tls.version))
    if tls is not None and tls.cipher_suite != 0:
        fwd += "; tlscipher=" + uint16_base16(tls.cipher_suite)
    headers.set("Forwarded", fwd)

    if config.tls_header:
        if tls is not None:
            headers.set(config.tls_header, config.tls_header_value)
        else:
            headers.delete(config.tls_header)


def scheme(request: Request) -> str:
    """Derive the scheme of the original request.

    X-Forwarded-Proto or the proto field of Forwarded is used when exactly
    one of the two headers is set; otherwise the scheme follows from the
    connection.
    """
    headers = request.headers
    xfp = headers.get("X-Forwarded-Proto")
    fwd = headers.get("Forwarded")
    if xfp and not fwd:
        return xfp
    if fwd and not xfp:
        marker = fwd.find("proto=")
        if marker >= 0:
            rest = fwd[marker + len("proto=") :]
            return rest.split(";", 1)[0]

    ws = headers.get("Upgrade") == "websocket"
    secure = request.tls is not None
    if ws:
        return "wss" if secure else "ws"
    return "https" if secure else "http"


def local_port(request: Optional[Request]) -> str:
    """Return the port of the Host header, or the default port for the connection."""
    if request is None:
        return ""
    host = request.host
    n = host.find(":")
    if 0 < n < len(host) - 1:
        return host[n + 1 :]
    return "443" if request.tls is not None else "80"