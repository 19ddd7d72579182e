"""Registry of running proxy servers and helpers for starting them."""

from __future__ import annotations

import errno
import logging
import queue
import threading
from typing import Any, Callable, Optional

from edgeproxy.listen import ListenConfig, listen_tcp
from edgeproxy.tcp_server import TCPServer

log = logging.getLogger(__name__)

_CLOSED_ERRNOS = frozenset({errno.EBADF, errno.EINVAL, errno.ENOTSOCK, errno.ECONNABORTED})

_lock = threading.Lock()
_servers: dict[str, Any] = {}


def _is_closed_error(exc: BaseException) -> bool:
    """Return True if ``exc`` only reports that a listener was closed."""
    if isinstance(exc, ConnectionAbortedError):
        return True
    return isinstance(exc, OSError) and exc.errno in _CLOSED_ERRNOS


def _listener_address(listener: Any) -> str:
    address = getattr(listener, "address", None)
    if callable(address):
        return address()
    if isinstance(address, str) and address:
        return address
    host, port = listener.getsockname()[:2]
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _run_concurrently(calls: list[Callable[[], Any]]) -> list[Optional[BaseException]]:
    """Run every call in its own thread; return the errors in completion order."""
    outcomes: queue.Queue = queue.Queue()

    def run(call: Callable[[], Any]) -> None:
        try:
            call()
        except BaseException as exc:  # collected and reported by the caller
            outcomes.put(exc)
        else:
            outcomes.put(None)

    threads = [threading.Thread(target=run, args=(call,), daemon=True) for call in calls]
    for thread in threads:
        thread.start()
    return [outcomes.get() for _ in threads]


def _first_error(errors: list[Optional[BaseException]], level: int) -> Optional[BaseException]:
    first = None
    for exc in errors:
        if exc is None or _is_closed_error(exc):
            continue
        log.log(level, "%s", exc)
        if first is None:
            first = exc
    return first


class ServerGroup:
    """Several (listener, server) pairs that are served and stopped together.

    ``front`` is an optional listener shared by the children; it is closed
    before the children are told to stop.
    """

    def __init__(self, front: Any = None) -> None:
        self.front = front
        self._children: list[tuple[Any, Any]] = []

    def serve_later(self, listener: Any, server: Any) -> None:
        """Register ``server`` to serve ``listener`` once ``serve`` is called."""
        self._children.append((listener, server))

    def serve(self, listener: Any = None) -> None:
        """Serve every child until all of them return.

        ``listener`` is ignored; each child serves its own listener. The
        first error from a child is raised.
        """
        if not self._children:
            raise ValueError("no children defined for listener")
        calls = [
            (lambda ln=child_listener, srv=server: srv.serve(ln))
            for child_listener, server in self._children
        ]
        error = _first_error(_run_concurrently(calls), logging.CRITICAL)
        if error is not None:
            raise error

    def _close_front(self) -> None:
        if self.front is not None:
            try:
                self.front.close()
            except OSError:
                pass

    def close(self) -> None:
        """Close the front listener and every child server."""
        self._close_front()
        calls = [server.close for _, server in self._children]
        error = _first_error(_run_concurrently(calls), logging.ERROR)
        if error is not None:
            raise error

    def shutdown(self, timeout: Optional[float]) -> None:
        """Close the front listener, then shut every child down gracefully."""
        self._close_front()
        calls = [
            (lambda srv=server: srv.shutdown(timeout)) for _, server in self._children
        ]
        error = _first_error(_run_concurrently(calls), logging.ERROR)
        if error is not None:
            raise error


def close_proxy(address: str) -> None:
    """Close and forget the server registered for ``address``, if any."""
    with _lock:
        server = _servers.get(address)
        if server is None:
            return
        server.close()
        del _servers[address]
    log.info("Dynamic TCP listener on %s has been terminated", address)


def close_all() -> None:
    """Close every registered server immediately and clear the registry."""
    global _servers
    with _lock:
        servers, _servers = _servers, {}
    for server in servers.values():
        try:
            server.close()
        except Exception as exc:
            log.error("%s", exc)


def shutdown(timeout: Optional[float]) -> None:
    """Shut every registered server down concurrently, waiting up to ``timeout``."""
    global _servers
    with _lock:
        servers, _servers = _servers, {}
    calls = [(lambda srv=server: srv.shutdown(timeout)) for server in servers.values()]
    _first_error(_run_concurrently(calls), logging.ERROR)


def serve(listener: Any, server: Any) -> None:
    """Register ``server`` under the listener's address and serve until it stops.

    Errors that only report a closed listener are swallowed.
    """
    address = _listener_address(listener)
    with _lock:
        _servers[address] = server
    try:
        server.serve(listener)
    except OSError as exc:
        if _is_closed_error(exc):
            return
        raise


def listen_and_serve_tcp(listen: ListenConfig, handler: Any, ssl_context: Any = None) -> None:
    """Listen as described by ``listen`` and pass each connection to ``handler``."""
    listener = listen_tcp(listen, ssl_context)
    server = TCPServer(
        address=listen.address,
        handler=handler,
        read_timeout=listen.read_timeout,
        write_timeout=listen.write_timeout,
    )
    serve(listener, server)