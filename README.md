# edgeproxy

Pieces for writing an edge proxy in plain Python, using only the standard
library.

## What is inside

- `edgeproxy.headers` – rewrites the forwarding headers of a request.
  `add_headers(request, config, strip_path)` sets `Forwarded`,
  `X-Forwarded-Proto`, `X-Forwarded-Port`, `X-Forwarded-Host`,
  `X-Forwarded-Prefix`, `X-Real-Ip`, `X-Forwarded-For` for websocket
  upgrades, and optionally a client IP header and a TLS marker header
  (`ProxyConfig.client_ip_header`, `tls_header`, `tls_header_value`).
  `add_response_headers` adds `Strict-Transport-Security` for TLS requests
  when `ProxyConfig.sts_header.max_age` is positive. `Headers` is a
  case-insensitive, multi-valued header map; `scheme`, `local_port`,
  `canonical_key` and `uint16_base16` are the helpers behind it.
- `edgeproxy.clienthello` – reads the server name (SNI) from a TLS
  ClientHello without terminating TLS: `client_hello_buffer_size`,
  `parse_client_hello` (returns a `ClientHello`) and `read_server_name`.
  Malformed or fragmented input raises `ClientHelloError`.
- `edgeproxy.relay` – `copy_buffer(dst, src, counter)` copies a stream to
  its end, calling `counter` with the size of every write, and raises
  `ShortWriteError` on a short write. `proxy_header` builds a PROXY
  protocol v1 line and `write_proxy_header` sends one describing an
  inbound connection.
- `edgeproxy.tcp_server` – `TCPServer`, a threaded TCP server. Each
  accepted connection is wrapped in a `TimeoutConnection`, which applies
  `read_timeout` and `write_timeout` to every `recv` and `sendall`, and is
  passed to `handler` (a callable, or an object with a `serve_tcp`
  method) in its own thread. `close` closes listeners and connections at
  once; `shutdown(timeout)` stops accepting, waits `timeout` seconds and
  then closes the remaining connections.
- `edgeproxy.listen` – `listen_tcp(ListenConfig, ssl_context)` opens a
  `TCPListener` with TCP keep-alive, optional PROXY protocol v1 parsing
  (`proxy_proto`, `proxy_header_timeout`) and optional TLS. Connections
  whose PROXY header is invalid are dropped; a valid header replaces the
  addresses the connection reports. `parse_proxy_header` parses a single
  header line.
- `edgeproxy.serve` – a registry of running servers keyed by listen
  address: `serve`, `listen_and_serve_tcp`, `close_proxy`, `close_all`
  and `shutdown`. `ServerGroup` serves several (listener, server) pairs
  together and stops them together.
- `edgeproxy.testsupport` – `RetryDialer` and `TLSRetryDialer`, which keep
  dialing until the address answers (one second by default), `retry`,
  and `TestServer` with `new_server` and `new_server_with_proxy_proto` for
  a TCP server on a random local port.

## Install

    pip install .

## Example: forwarding headers

    from edgeproxy.headers import ProxyConfig, Request, add_headers

    request = Request(remote_addr="1.2.3.4:5555", host="example.com:8080")
    add_headers(request, ProxyConfig(local_ip="5.6.7.8"), "/api")

    request.headers.get("Forwarded")           # "for=1.2.3.4; proto=http; by=5.6.7.8"
    request.headers.get("X-Forwarded-Port")    # "8080"
    request.headers.get("X-Forwarded-Prefix")  # "/api"

`add_headers` raises `HeaderError` when the remote address cannot be split
into host and port.

## Example: SNI lookup

    from edgeproxy.clienthello import client_hello_buffer_size, read_server_name

    size = client_hello_buffer_size(first_nine_bytes)
    record = first_nine_bytes + rest_of_record    # size bytes in all
    name = read_server_name(record[5:])           # e.g. "example.com"

## Example: a TCP server

    from edgeproxy.testsupport import RetryDialer, new_server

    def echo(conn):
        data = conn.recv(1024)
        conn.sendall(data.rstrip(b"\n") + b" echo")

    server = new_server(echo)
    client = RetryDialer().dial(server.address)
    client.sendall(b"foo\n")
    client.recv(1024)    # b"foo echo"
    client.close()
    server.close()

## What it does not do

The package provides the parts, not a running proxy. It has no HTTP
reverse proxy that forwards requests upstream, no TCP or SNI proxying
handlers that dial an upstream and relay traffic, no route table or
configuration loading, no metrics, and no command-line program. Those are
left to the code that uses these modules.

## Running the tests

    pip install ".[test]"
    pytest