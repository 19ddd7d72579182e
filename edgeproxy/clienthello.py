"""Parsing of the TLS ClientHello message, enough to read the SNI host name."""

from __future__ import annotations

from dataclasses import dataclass

MAX_RECORD_LENGTH = 16384
RECORD_HEADER_LENGTH = 5
HANDSHAKE_HEADER_LENGTH = 4

_RECORD_TYPE_HANDSHAKE = 0x16
_HANDSHAKE_CLIENT_HELLO = 0x01
_EXTENSION_SERVER_NAME = 0
_NAME_TYPE_HOST_NAME = 0


class ClientHelloError(ValueError):
    """Raised when data is not a well-formed, unfragmented TLS ClientHello."""


@dataclass(frozen=True)
class ClientHello:
    """The fields of a ClientHello handshake message that are parsed."""

    version: int
    random: bytes
    session_id: bytes
    cipher_suites: tuple[int, ...]
    compression_methods: bytes
    server_name: str = ""


def client_hello_buffer_size(data: bytes) -> int:
    """Return the number of bytes needed to hold the complete ClientHello.

    ``data`` must hold at least the first 9 bytes of the TLS conversation:
    the record header and the handshake message header. The result covers
    both headers and the handshake body. Raises ClientHelloError if the data
    is not a TLS handshake record carrying a ClientHello, or if the message
    is fragmented over several records.
    """
    if len(data) < RECORD_HEADER_LENGTH + HANDSHAKE_HEADER_LENGTH:
        raise ClientHelloError("At least 9 bytes required to determine client hello length")

    if data[0] != _RECORD_TYPE_HANDSHAKE:
        raise ClientHelloError("Not a TLS handshake")

    record_length = int.from_bytes(data[3:5], "big")
    if record_length <= 0 or record_length > MAX_RECORD_LENGTH:
        raise ClientHelloError("Invalid TLS record length")

    if data[5] != _HANDSHAKE_CLIENT_HELLO:
        raise ClientHelloError("Not a client hello")

    handshake_length = int.from_bytes(data[6:9], "big")
    if handshake_length <= 0 or handshake_length > record_length - HANDSHAKE_HEADER_LENGTH:
        raise ClientHelloError("Invalid client hello length (fragmentation not implemented)")

    return handshake_length + RECORD_HEADER_LENGTH + HANDSHAKE_HEADER_LENGTH


def _invalid() -> ClientHelloError:
    return ClientHelloError("unable to parse client hello")


def _parse_server_name(ext: bytes) -> str | None:
    """Return the host name in a server_name extension body, or None if absent."""
    if len(ext) < 2:
        raise _invalid()
    names_length = int.from_bytes(ext[0:2], "big")
    names = ext[2:]
    if len(names) != names_length:
        raise _invalid()
    pos = 0
    while pos < len(names):
        if len(names) - pos < 3:
            raise _invalid()
        name_type = names[pos]
        name_length = int.from_bytes(names[pos + 1 : pos + 3], "big")
        pos += 3
        if len(names) - pos < name_length:
            raise _invalid()
        if name_type == _NAME_TYPE_HOST_NAME:
            return names[pos : pos + name_length].decode("utf-8", errors="replace")
        pos += name_length
    return None


def parse_client_hello(data: bytes) -> ClientHello:
    """Parse a ClientHello handshake message including its 4 byte header.

    Raises ClientHelloError if the message is malformed.
    """
    data = bytes(data)
    if len(data) < 42:
        raise _invalid()

    version = int.from_bytes(data[4:6], "big")
    random = data[6:38]
    session_id_length = data[38]
    if session_id_length > 32 or len(data) < 39 + session_id_length:
        raise _invalid()
    session_id = data[39 : 39 + session_id_length]
    pos = 39 + session_id_length

    if len(data) - pos < 2:
        raise _invalid()
    cipher_suites_length = int.from_bytes(data[pos : pos + 2], "big")
    if cipher_suites_length % 2 == 1 or len(data) - pos < 2 + cipher_suites_length:
        raise _invalid()
    suites = data[pos + 2 : pos + 2 + cipher_suites_length]
    cipher_suites = tuple(
        int.from_bytes(suites[i : i + 2], "big") for i in range(0, len(suites), 2)
    )
    pos += 2 + cipher_suites_length

    if len(data) - pos < 1:
        raise _invalid()
    compression_length = data[pos]
    if len(data) - pos < 1 + compression_length:
        raise _invalid()
    compression_methods = data[pos + 1 : pos + 1 + compression_length]
    pos += 1 + compression_length

    hello = dict(
        version=version,
        random=random,
        session_id=session_id,
        cipher_suites=cipher_suites,
        compression_methods=compression_methods,
    )

    # Extensions are optional.
    if pos == len(data):
        return ClientHello(**hello)
    if len(data) - pos < 2:
        raise _invalid()

    extensions_length = int.from_bytes(data[pos : pos + 2], "big")
    pos += 2
    if extensions_length != len(data) - pos:
        raise _invalid()

    server_name = ""
    while pos < len(data):
        if len(data) - pos < 4:
            raise _invalid()
        extension = int.from_bytes(data[pos : pos + 2], "big")
        length = int.from_bytes(data[pos + 2 : pos + 4], "big")
        pos += 4
        if len(data) - pos < length:
            raise _invalid()
        if extension == _EXTENSION_SERVER_NAME:
            name = _parse_server_name(data[pos : pos + length])
            if name is not None:
                server_name = name
        pos += length

    return ClientHello(server_name=server_name, **hello)


def read_server_name(message: bytes) -> str:
    """Return the SNI host name of a ClientHello handshake message.

    An empty string is returned when the server_name extension is absent.
    Raises ClientHelloError if the message cannot be parsed.
    """
    return parse_client_hello(message).server_name