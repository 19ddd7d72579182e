import pytest

from edgeproxy.clienthello import (
    ClientHello,
    ClientHelloError,
    client_hello_buffer_size,
    parse_client_hello,
    read_server_name,
)


# --- client_hello_buffer_size ---------------------------------------------


def test_buffer_size_largest_valid_message():
    data = bytes([0x16, 0x03, 0x01, 0x40, 0x00, 0x01, 0x00, 0x3F, 0xFC])
    assert client_hello_buffer_size(data) == 16384 + 5


@pytest.mark.parametrize(
    "name, data, message",
    [
        (
            "not enough data",
            [0x16, 0x03, 0x01, 0x40, 0x00, 0x01, 0x00, 0x3F],
            "At least 9 bytes",
        ),
        (
            "not a TLS record",
            [0x15, 0x03, 0x01, 0x01, 0xF4, 0x01, 0x00, 0x01, 0xEB],
            "Not a TLS handshake",
        ),
        (
            "TLS record too large",
            [0x16, 0x03, 0x01, 0x40, 0x01, 0x01, 0x00, 0x3F, 0xFC],
            "Invalid TLS record length",
        ),
        (
            "TLS record length zero",
            [0x16, 0x03, 0x01, 0x00, 0x00, 0x01, 0x00, 0x3F, 0xFC],
            "Invalid TLS record length",
        ),
        (
            "not a client hello",
            [0x16, 0x03, 0x01, 0x40, 0x00, 0x02, 0x00, 0x3F, 0xFC],
            "Not a client hello",
        ),
        (
            "invalid handshake message length",
            [0x16, 0x03, 0x01, 0x40, 0x00, 0x01, 0x00, 0x00, 0x00],
            "Invalid client hello length",
        ),
        (
            "fragmentation",
            [0x16, 0x03, 0x01, 0x01, 0xF4, 0x01, 0x00, 0x01, 0xF1],
            "fragmentation not implemented",
        ),
    ],
)
def test_buffer_size_errors(name, data, message):
    with pytest.raises(ClientHelloError, match=message):
        client_hello_buffer_size(bytes(data))


# --- read_server_name with captured client hellos --------------------------

WITH_SERVER_NAME = (
    "0100014803032657cacce41598fa82e5b75061050bc31c5affdba106b8e7431852"
    "24af0fa1aa000098cc14cc13cc15c030c02cc028c024c014c00a00a3009f00"
    "6b006a00390038ff8500c400c3008800870081c032c02ec02ac026c00fc005"
    "009d003d003500c00084c02fc02bc027c023c013c00900a2009e0067004000"
    "33003200be00bd00450044c031c02dc029c025c00ec004009c003c002f00ba"
    "0041c011c007c00cc00200050004c012c00800160013c00dc003000a001500"
    "12000900ff010000870000000f000d00000a676f6f676c652e636f6d000b00"
    "0403000102000a003a0038000e000d0019001c000b000c001b00180009000a"
    "001a0016001700080006000700140015000400050012001300010002000300"
    "0f0010001100230000000d00260024060106020603efef0501050205030401"
    "04020403eeeeeded030103020303020102020203"
)

WITHOUT_SERVER_NAME = (
    "0100013503036dfb09de7b16503dd1bb304dcbe54079913b65abf53de997f73b26c99e"
    "67ba28000098cc14cc13cc15c030c02cc028c024c014c00a00a3009f006b006a00"
    "390038ff8500c400c3008800870081c032c02ec02ac026c00fc005009d003d0035"
    "00c00084c02fc02bc027c023c013c00900a2009e006700400033003200be00bd00"
    "450044c031c02dc029c025c00ec004009c003c002f00ba0041c011c007c00cc002"
    "00050004c012c00800160013c00dc003000a00150012000900ff01000074000b00"
    "0403000102000a003a0038000e000d0019001c000b000c001b00180009000a001a"
    "00160017000800060007001400150004000500120013000100020003000f001000"
    "1100230000000d00260024060106020603efef050105020503040104020403eeee"
    "eded030103020303020102020203"
)

INVALID = (
    "0100014c5768656e2070656f706c652073617920746f206d653a20776f756c6420796f"
    "75207261746865722062652074686f75676874206f6620617320612066756e6e79"
    "206d616e206f72206120677265617420626f73733f204d7920616e737765722773"
    "20616c77617973207468652073616d652c20746f206d652c207468657927726520"
    "6e6f74206d757475616c6c79206578636c75736976652e2d204461766964204272"
    "656e74"
)


def test_read_server_name_present():
    assert read_server_name(bytes.fromhex(WITH_SERVER_NAME)) == "google.com"


def test_read_server_name_missing_extension():
    assert read_server_name(bytes.fromhex(WITHOUT_SERVER_NAME)) == ""


def test_read_server_name_invalid():
    with pytest.raises(ClientHelloError):
        read_server_name(bytes.fromhex(INVALID))


def test_parse_captured_hello_fields():
    hello = parse_client_hello(bytes.fromhex(WITH_SERVER_NAME))
    assert hello.version == 0x0303
    assert hello.random.hex() == (
        "2657cacce41598fa82e5b75061050bc31c5affdba106b8e743185224af0fa1aa"
    )
    assert hello.session_id == b""
    assert hello.cipher_suites[0] == 0xCC14
    assert hello.cipher_suites[-1] == 0x00FF
    assert len(hello.cipher_suites) == 0x98 // 2
    assert hello.compression_methods == b"\x00"
    assert hello.server_name == "google.com"


# --- synthetic messages ----------------------------------------------------


def _u16(n):
    return n.to_bytes(2, "big")


def _sni_extension(*names):
    entries = b"".join(bytes([t]) + _u16(len(n)) + n for t, n in names)
    body = _u16(len(entries)) + entries
    return _u16(0) + _u16(len(body)) + body


def _hello(extensions=None, session_id=b"", suites=b"\x00\x2f"):
    body = (
        b"\x03\x03"
        + bytes(range(32))
        + bytes([len(session_id)])
        + session_id
        + _u16(len(suites))
        + suites
        + b"\x01\x00"
    )
    if extensions is not None:
        body += _u16(len(extensions)) + extensions
    return b"\x01" + len(body).to_bytes(3, "big") + body


def _record(message):
    return b"\x16\x03\x01" + _u16(len(message)) + message


def test_buffer_size_matches_full_record():
    message = _hello(_sni_extension((0, b"example.com")))
    record = _record(message)
    size = client_hello_buffer_size(record[:9])
    assert size == len(record)
    assert read_server_name(record[5:size]) == "example.com"


def test_hello_without_extensions():
    hello = parse_client_hello(_hello())
    assert hello == ClientHello(
        version=0x0303,
        random=bytes(range(32)),
        session_id=b"",
        cipher_suites=(0x002F,),
        compression_methods=b"\x00",
        server_name="",
    )


def test_session_id_is_kept():
    hello = parse_client_hello(_hello(session_id=b"\xaa" * 16))
    assert hello.session_id == b"\xaa" * 16


def test_non_host_name_entries_are_skipped():
    ext = _sni_extension((1, b"other"), (0, b"api.example.com"))
    assert read_server_name(_hello(ext)) == "api.example.com"


def test_unknown_extension_is_ignored():
    unknown = _u16(0x000B) + _u16(2) + b"\x01\x00"
    ext = unknown + _sni_extension((0, b"example.com"))
    assert read_server_name(_hello(ext)) == "example.com"


def test_too_short_message_raises():
    with pytest.raises(ClientHelloError):
        parse_client_hello(_hello()[:41])


def test_odd_cipher_suite_length_raises():
    with pytest.raises(ClientHelloError):
        parse_client_hello(_hello(suites=b"\x00\x2f\x00"))


def test_session_id_too_long_raises():
    with pytest.raises(ClientHelloError):
        parse_client_hello(_hello(session_id=b"\x00" * 33))


def test_extensions_length_mismatch_raises():
    message = _hello(_sni_extension((0, b"example.com")))
    with pytest.raises(ClientHelloError):
        parse_client_hello(message[:-1])


def test_truncated_server_name_raises():
    entries = b"\x00" + _u16(20) + b"short"
    body = _u16(len(entries)) + entries
    ext = _u16(0) + _u16(len(body)) + body
    with pytest.raises(ClientHelloError):
        read_server_name(_hello(ext))


def test_server_name_list_length_mismatch_raises():
    entries = b"\x00" + _u16(3) + b"abc"
    body = _u16(len(entries) + 1) + entries
    ext = _u16(0) + _u16(len(body)) + body
    with pytest.raises(ClientHelloError):
        read_server_name(_hello(ext))