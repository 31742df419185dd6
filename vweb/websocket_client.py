"""WebSocket client: opening handshake over HTTP and framed messaging."""

from __future__ import annotations

import base64
import contextlib
import logging
import secrets
import time
from enum import IntEnum
from typing import Callable, Optional

from .client import HttpClient, HttpClientError
from .httpparser import MAX_BODY_CACHE_LENGTH, HttpParserError, MethodType
from .websocket import (
    WebSocketFrameError,
    WebSocketParser,
    WebSocketURL,
    WsFlags,
    build_frame,
    generate_mask,
    parse_websocket_url,
)

logger = logging.getLogger(__name__)

_RECV_SIZE = 65536
_REDIRECT_STATUSES = (301, 302, 303, 307, 308)
_MAX_REDIRECTS = 20

StatusCallback = Optional[Callable[["WebSocketClient", int], None]]
MaskCallback = Optional[Callable[["WebSocketClient", bytes], None]]
BodyCallback = Optional[Callable[["WebSocketClient", bytes], bool]]


class WebSocketVersion(IntEnum):
    """Values of the Sec-WebSocket-Version header."""

    VERSION_0 = 0
    VERSION_7 = 7
    VERSION_8 = 8
    VERSION_10 = 10
    VERSION_11 = 11
    VERSION_13 = 13


def generate_websocket_key() -> str:
    """Return a base64 Sec-WebSocket-Key made of 16 random non-zero bytes."""
    raw = bytes(secrets.randbelow(255) + 1 for _ in range(16))
    return base64.b64encode(raw).decode("ascii")


def _as_http_url(url: str) -> str:
    if url.startswith(("ws://", "wss://")):
        return "http" + url[2:]
    return url


class WebSocketClient(HttpClient):
    """A blocking WebSocket client built on :class:`HttpClient`.

    Callbacks, all optional:
    ``on_websocket_connect(client, status)`` after the handshake, 0 or -1;
    ``on_send_finish(client, status)`` after each frame is written;
    ``on_parser_finish(client, 0)`` when a frame has been parsed;
    ``on_mask(client, mask)`` when a received frame carries a mask;
    ``on_websocket_body(client, body)`` as payload arrives, true clears it;
    ``on_final(client, 0)`` when a final frame ends;
    ``on_websocket_close(client, flags)`` when the peer sends a close frame.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        super().__init__(timeout)
        self.version = WebSocketVersion.VERSION_13
        self.max_body_cache_length = MAX_BODY_CACHE_LENGTH
        self.on_websocket_connect: StatusCallback = None
        self.on_send_finish: StatusCallback = None
        self.on_parser_finish: StatusCallback = None
        self.on_mask: MaskCallback = None
        self.on_websocket_body: BodyCallback = None
        self.on_final: StatusCallback = None
        self.on_websocket_close: StatusCallback = None
        self.parser = WebSocketParser()
        self.parser.on_frame_header = self._frame_header
        self.parser.on_frame_body = self._frame_body
        self.parser.on_frame_end = self._frame_end
        self._reset_websocket()

    @property
    def websocket_body(self) -> bytearray:
        return self._ws_body

    def _reset_websocket(self) -> None:
        self._ws_body = bytearray()
        self.websocket_url = WebSocketURL()
        self.parsed = False
        self.sent_close = False
        self.parser.reset()

    def websocket_connect(self, url: str) -> None:
        """Open a connection to ``url`` and perform the upgrade handshake."""
        self._reset_websocket()
        try:
            target = parse_websocket_url(url)
        except ValueError as exc:
            self.error_message = "WebSocketURL is error :" + url
            raise HttpClientError(self.error_message) from exc
        self.websocket_url = target
        http_url = "http" + url[2:]

        request = self.request
        request.method = MethodType.GET
        request.add_header("Upgrade", "websocket")
        request.add_header("Connection", "Upgrade")
        request.add_header("Sec-WebSocket-Key", generate_websocket_key())
        request.add_header("Sec-WebSocket-Version", str(int(self.version)))

        status = 0
        for _ in range(_MAX_REDIRECTS + 1):
            try:
                self.start_request(http_url)
                leftover = self._read_handshake()
            except HttpClientError:
                if not self.error_message:
                    self.error_message = "http request is error :" + http_url
                self._notify(self.on_websocket_connect, -1)
                raise
            status = self.response.status_code
            if status == 101:
                self.response.take_body()
                if leftover:
                    self.feed(leftover)
                self._notify(self.on_websocket_connect, 0)
                return
            if status in _REDIRECT_STATUSES and self.response.location:
                http_url = _as_http_url(self.response.location)
                self.close()
                continue
            break

        self.error_message = f"websocket handshake failed with status {status}"
        self.close()
        self._notify(self.on_websocket_connect, -1)
        raise HttpClientError(self.error_message)

    def send(
        self,
        data: bytes = b"",
        flags: WsFlags = WsFlags.TEXT | WsFlags.FINAL | WsFlags.HAS_MASK,
        mask: Optional[bytes] = None,
    ) -> None:
        """Build one frame from ``data`` and ``flags`` and write it."""
        flags = WsFlags(int(flags))
        if flags & WsFlags.HAS_MASK and mask is None:
            mask = generate_mask()
        frame = build_frame(flags, mask, data)
        try:
            self._send(frame)
        except HttpClientError:
            self._notify(self.on_send_finish, -1)
            raise
        self._notify(self.on_send_finish, 0)

    @staticmethod
    def _data_flags(opcode: WsFlags, final: bool, mask: bool) -> WsFlags:
        flags = opcode
        if final:
            flags |= WsFlags.FINAL
        if mask:
            flags |= WsFlags.HAS_MASK
        return flags

    def send_text(self, data: str, final: bool = True, mask: bool = True) -> None:
        """Send a text frame."""
        self.send(data.encode("utf-8"), self._data_flags(WsFlags.TEXT, final, mask))

    def send_binary(self, data: bytes, final: bool = True, mask: bool = True) -> None:
        """Send a binary frame."""
        self.send(data, self._data_flags(WsFlags.BINARY, final, mask))

    def send_continue(self, data: bytes, final: bool = True, mask: bool = True) -> None:
        """Send a continuation frame; the last piece of a message has ``final`` set."""
        self.send(data, self._data_flags(WsFlags.CONTINUE, final, mask))

    def send_ping(self) -> None:
        self.send(b"", WsFlags.PING | WsFlags.FINAL)

    def send_pong(self) -> None:
        self.send(b"", WsFlags.PONG | WsFlags.FINAL)

    def send_close(self) -> None:
        self.send(b"", WsFlags.CLOSE | WsFlags.FINAL)

    def ping(self) -> int:
        """Send a ping, wait for the next frame and return the delay in milliseconds."""
        self.parsed = False
        start = time.monotonic()
        self.send_ping()
        self.wait_frame()
        return int((time.monotonic() - start) * 1000)

    def websocket_close(self) -> None:
        """Send a close frame, wait briefly for the reply and close the connection."""
        try:
            self.send_close()
            self.sent_close = True
        except HttpClientError:
            self.sent_close = False
        if self.sent_close:
            self.parsed = False
            with contextlib.suppress(HttpClientError):
                self.wait_frame()
        self.close()

    def wait_frame(self, timeout: Optional[float] = None) -> int:
        """Wait until a frame has been parsed; return the size of the buffered payload."""
        timeout = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        while self._sock is not None and not self.parsed:
            data = self._recv_some(deadline)
            if data is None:
                break
            if not data:
                self._drop()
                break
            self.feed(data)
        if self._sock is None:
            self.error_message = "connection is closed"
            raise HttpClientError(self.error_message)
        return len(self._ws_body)

    def take_websocket_body(self, count: int = 0) -> bytes:
        """Remove and return up to ``count`` payload bytes; 0 takes all of them."""
        if count == 0 or count >= len(self._ws_body):
            taken = bytes(self._ws_body)
            self._ws_body.clear()
            return taken
        taken = bytes(self._ws_body[:count])
        del self._ws_body[:count]
        return taken

    def clear_websocket_body(self) -> None:
        """Drop every buffered payload byte."""
        self._ws_body.clear()

    def feed(self, data: bytes) -> int:
        """Parse received frame bytes; return how many were consumed."""
        return self.parser.feed(data)

    def _recv_some(self, deadline: float) -> Optional[bytes]:
        sock = self._sock
        if sock is None:
            return b""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        sock.settimeout(remaining)
        try:
            return sock.recv(_RECV_SIZE)
        except TimeoutError:
            return None
        except OSError:
            return b""

    def _read_handshake(self) -> bytes:
        deadline = time.monotonic() + self.timeout
        buf = bytearray()
        while True:
            end = buf.find(b"\r\n\r\n")
            if end >= 0:
                break
            data = self._recv_some(deadline)
            if data is None:
                self.error_message = "timed out waiting for the handshake response"
                raise HttpClientError(self.error_message)
            if not data:
                self._drop()
                self.error_message = "connection closed during the handshake"
                raise HttpClientError(self.error_message)
            buf += data
        head = bytes(buf[:end + 4])
        rest = bytes(buf[end + 4:])
        try:
            self.response.feed(head)
        except HttpParserError as exc:
            self._drop()
            self.error_message = str(exc)
            raise HttpClientError(self.error_message) from exc
        return rest

    def _frame_header(self, parser: WebSocketParser) -> None:
        self.parsed = False
        if parser.has_mask and self.on_mask is not None:
            self.on_mask(self, bytes(parser.mask))

    def _frame_body(self, parser: WebSocketParser, data: bytes) -> None:
        if len(self._ws_body) > self.max_body_cache_length:
            self.error_message = (
                "VWebSocketClient body size is to long, max_body_cache_length_ = "
                f"{self.max_body_cache_length}websocket_body_ size = {len(self._ws_body)}"
            )
            logger.error("%s", self.error_message)
            return
        self._ws_body += data
        if self.on_websocket_body is not None and self.on_websocket_body(self, bytes(self._ws_body)):
            self._ws_body.clear()

    def _frame_end(self, parser: WebSocketParser) -> None:
        if parser.is_final and self.on_final is not None:
            self.on_final(self, 0)
        if self.on_parser_finish is not None:
            self.on_parser_finish(self, 0)
        self.parsed = True
        if parser.is_close and self.on_websocket_close is not None and not self.sent_close:
            self.on_websocket_close(self, int(parser.flags))
            try:
                self.send_close()
                self.sent_close = True
            except HttpClientError:
                self.sent_close = False
            self.close()


__all__ = [
    "WebSocketClient",
    "WebSocketFrameError",
    "WebSocketVersion",
    "generate_websocket_key",
]