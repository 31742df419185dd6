"""Blocking HTTP/1.1 client and multipart form bodies."""

from __future__ import annotations

import secrets
import socket
import ssl
import string
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple, Union

from .httpparser import HttpParserError, MethodType
from .request import HttpRequest
from .response import HttpResponse

BOUNDARY_PREFIX = "---------"
BOUNDARY_LENGTH = 32
_BOUNDARY_CHARSET = string.digits + string.ascii_lowercase + string.ascii_uppercase
_RECV_SIZE = 65536

ClientCallback = Optional[Callable[["HttpClient", int], None]]


def generate_boundary() -> str:
    """Return a random alphanumeric string to separate multipart sections."""
    return "".join(secrets.choice(_BOUNDARY_CHARSET) for _ in range(BOUNDARY_LENGTH))


@dataclass
class HttpPart:
    """One named field of a multipart form."""

    key: str
    value: Union[str, bytes] = ""
    content_type: str = ""


class MultiPart:
    """Accumulates form fields into a ``multipart/form-data`` body."""

    def __init__(self) -> None:
        self.boundary = ""
        self._data = bytearray()
        self.reset()

    @property
    def data(self) -> bytes:
        return bytes(self._data)

    def reset(self) -> None:
        """Pick a fresh boundary and drop every field added so far."""
        self.boundary = BOUNDARY_PREFIX + generate_boundary()
        self._data.clear()

    def append(self, part: HttpPart) -> None:
        """Add one field."""
        value = part.value.encode("utf-8") if isinstance(part.value, str) else bytes(part.value)
        section = f'{self.boundary}\r\nContent-Disposition: form-data; name="{part.key}"\r\n'
        if part.content_type:
            section += f"Content-Type: {part.content_type}\r\n"
        section += "\r\n"
        self._data += section.encode("utf-8") + value + b"\r\n"

    def append_final(self, part: HttpPart) -> None:
        """Add the last field and close the body."""
        self.append(part)
        self._data += (self.boundary + "--").encode("utf-8")


class HttpClientError(OSError):
    """Raised when a request cannot be sent or its response not received."""


class HttpClient:
    """A blocking HTTP/1.1 client that keeps a connection open between requests.

    ``on_connect`` is called with the client and 0 on success or -1 on failure;
    ``on_close`` is called with the client and 0 when the connection is closed.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout
        self.request = HttpRequest()
        self.response = HttpResponse()
        self.on_connect: ClientCallback = None
        self.on_close: ClientCallback = None
        self.ssl_context: Optional[ssl.SSLContext] = None
        self.error_message = ""
        self._sock: Optional[socket.socket] = None
        self._target: Optional[Tuple[str, str, int]] = None

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self, url: str) -> None:
        """Point the request at ``url`` and make sure a connection to its host is open."""
        try:
            self.request.set_url(url)
        except HttpParserError as exc:
            self.error_message = str(exc)
            raise HttpClientError(self.error_message) from exc
        parsed = self.request.parsed_url
        secure = parsed.protocol == "https"
        self.request.http_ssl = secure
        target = (parsed.protocol, parsed.host, parsed.port)
        if self._sock is not None and self._target == target:
            return
        self._drop()
        if not parsed.host or not 0 < parsed.port <= 65535:
            self.error_message = "addrs or port is null"
            raise HttpClientError(self.error_message)
        try:
            sock = socket.create_connection((parsed.host, parsed.port), timeout=self.timeout)
        except OSError as exc:
            self.error_message = f"connect is error addrs:{parsed.host}, port:{parsed.port}"
            self._notify(self.on_connect, -1)
            raise HttpClientError(self.error_message) from exc
        if secure:
            context = self.ssl_context or ssl.create_default_context()
            try:
                sock = context.wrap_socket(sock, server_hostname=parsed.host)
            except OSError as exc:
                sock.close()
                self.error_message = "SSL connect error"
                self._notify(self.on_connect, -1)
                raise HttpClientError(self.error_message) from exc
        self._sock = sock
        self._target = target
        self._renew_response()
        self.response.http_ssl = secure
        self._notify(self.on_connect, 0)

    def send_request(
        self,
        method: MethodType,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: bytes = b"",
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        """Send a whole request and wait for its response."""
        timeout = self.timeout if timeout is None else timeout
        self.response.reset()
        self.request.method = MethodType(method)
        for key, value in (headers or {}).items():
            self.request.add_header(key, value)
        self.request.body = body
        self.connect(url)
        self._send(self._encode(include_body=True))
        self._pump(timeout, lambda: self.response.parsed)
        if not self.response.parsed and self._sock is None:
            self.error_message = "connection closed before the response was complete"
            raise HttpClientError(self.error_message)
        if not self.request.keep_alive or not self.response.keep_alive:
            self.close()
        return self.response

    def start_request(self, url: str, body: bytes = b"") -> None:
        """Send the request line and headers, and the body if one is given."""
        self.response.reset()
        self.connect(url)
        if body:
            self.request.body = body
            self._send(self._encode(include_body=True))
        else:
            self._send(self._encode(include_body=False))

    def send_body(self, body: bytes) -> None:
        """Send a request body after :meth:`start_request`."""
        self.request.body = body
        try:
            data = self.request.build_body()
        except ValueError as exc:
            raise HttpClientError(str(exc)) from exc
        self._send(data)

    def wait_response(self, timeout: Optional[float] = None) -> int:
        """Wait until the response is complete or some body has arrived; return its size."""
        timeout = self.timeout if timeout is None else timeout
        if self._sock is not None:
            self._pump(timeout, lambda: self.response.parsed or len(self.response.body) > 0)
        if self._sock is None and not self.response.parsed:
            self.error_message = "connection closed before the response was complete"
            raise HttpClientError(self.error_message)
        if self.response.parsed and (not self.request.keep_alive or not self.response.keep_alive):
            self.close()
        return len(self.response.body)

    def take_body(self, count: int = 0) -> bytes:
        """Remove and return up to ``count`` received body bytes; 0 takes them all."""
        return self.response.take_body(count)

    def clear_body(self) -> None:
        """Drop every received body byte."""
        self.response.body.clear()

    def url_file_name(self) -> str:
        """Return the last segment of the request path."""
        path = self.request.parsed_url.path
        if "/" not in path:
            return ""
        return path.rsplit("/", 1)[1]

    def close(self) -> None:
        """Close the connection if one is open."""
        if self._sock is not None:
            self._drop()
            self._notify(self.on_close, 0)

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _notify(self, callback: ClientCallback, status: int) -> None:
        if callback is not None:
            callback(self, status)

    def _drop(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            finally:
                self._sock = None
                self._target = None

    def _renew_response(self) -> None:
        old = self.response
        fresh = HttpResponse()
        fresh.on_headers_complete = old.on_headers_complete
        fresh.on_body = old.on_body
        fresh.max_body_cache_length = old.max_body_cache_length
        self.response = fresh

    def _encode(self, include_body: bool) -> bytes:
        peer = None
        if self._sock is not None:
            peer = tuple(self._sock.getpeername()[:2])
        return self.request.encode(include_body, peer)

    def _send(self, data: bytes) -> None:
        if self._sock is None:
            raise HttpClientError("not connected")
        try:
            self._sock.sendall(data)
        except OSError as exc:
            self.error_message = f"Request Write error: {exc}"
            self._drop()
            raise HttpClientError(self.error_message) from exc

    def _pump(self, timeout: float, done: Callable[[], bool]) -> None:
        deadline = time.monotonic() + timeout
        while self._sock is not None and not done():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            self._sock.settimeout(remaining)
            try:
                data = self._sock.recv(_RECV_SIZE)
            except TimeoutError:
                return
            except OSError:
                data = b""
            try:
                self.response.feed(data)
            except HttpParserError as exc:
                self.error_message = str(exc)
                self._drop()
                raise HttpClientError(self.error_message) from exc
            if not data:
                self._drop()
                return