import pytest

from edgeproxy.testsupport import (
    RetryDialer,
    TestServer,
    new_server,
    new_server_with_proxy_proto,
    retry,
)


def _read_line(conn):
    data = b""
    while not data.endswith(b"\n"):
        chunk = conn.recv(1)
        if not chunk:
            break
        data += chunk
    return data.rstrip(b"\n")


def _echo(conn):
    conn.sendall(_read_line(conn) + b" echo")


def _peer(conn):
    host, port = conn.getpeername()[:2]
    conn.sendall(_read_line(conn) + f" {host}:{port}".encode())


def _read_all(conn):
    out = b""
    while True:
        chunk = conn.recv(1024)
        if not chunk:
            return out
        out += chunk


def test_retry_until_success():
    calls = []

    def dial():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionRefusedError("down")
        return "conn"

    assert retry(dial, 1.0, 0.01) == "conn"
    assert len(calls) == 3


def test_retry_gives_up():
    def dial():
        raise ConnectionRefusedError("down")

    with pytest.raises(ConnectionRefusedError):
        retry(dial, 0.05, 0.01)


def test_server_roundtrip():
    srv = new_server(_echo)
    try:
        conn = RetryDialer().dial(srv.address)
        conn.sendall(b"foo\n")
        assert _read_all(conn) == b"foo echo"
        conn.close()
    finally:
        srv.close()


def test_proxy_proto_server_sees_header_address():
    srv = new_server_with_proxy_proto(_peer)
    try:
        conn = RetryDialer(proxy_proto=True).dial(srv.address)
        conn.sendall(b"foo\n")
        assert _read_all(conn) == b"foo 1.2.3.4:12345"
        conn.close()
    finally:
        srv.close()


def test_double_start_raises():
    srv = new_server(_echo)
    try:
        with pytest.raises(RuntimeError, match="Server already started"):
            srv.start()
    finally:
        srv.close()


def test_close_unstarted_raises():
    srv = TestServer(handler=_echo)
    try:
        with pytest.raises(RuntimeError, match="Server not started"):
            srv.close()
    finally:
        srv.listener.close()