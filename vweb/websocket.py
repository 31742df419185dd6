"""WebSocket frame building, masking, URL splitting and incremental parsing."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import IntFlag
from typing import Callable, Optional

MINI_CACHE_SIZE = 14


class WsFlags(IntFlag):
    """Frame opcode and marker bits."""

    CONTINUE = 0x0
    TEXT = 0x1
    BINARY = 0x2
    CLOSE = 0x8
    PING = 0x9
    PONG = 0xA
    OPCODE_MASK = 0xF
    FINAL = 0x10
    HAS_MASK = 0x20


class WebSocketFrameError(ValueError):
    """Raised when a WebSocket frame cannot be parsed."""


@dataclass
class WebSocketURL:
    """Components of a ``ws://`` or ``wss://`` URL."""

    protocol: str = ""
    host: str = ""
    port: int = 0
    path: str = ""


_WS_URL_RE = re.compile(r"(wss?)://([^:/\s]+):(\d+)(/.*)?")


def parse_websocket_url(url: str) -> WebSocketURL:
    """Split a WebSocket URL; the port must be given explicitly."""
    match = _WS_URL_RE.fullmatch(url)
    if match is None:
        raise ValueError(f"invalid WebSocket URL: {url}")
    return WebSocketURL(match.group(1), match.group(2), int(match.group(3)), match.group(4) or "")


def generate_mask() -> bytes:
    """Return four random masking bytes."""
    return os.urandom(4)


def apply_mask(data: bytes, mask: bytes, offset: int = 0) -> tuple[bytes, int]:
    """XOR ``data`` with ``mask`` starting at ``offset``; return data and next offset."""
    data = bytes(data)
    mask = bytes(mask)
    if len(mask) != 4:
        raise ValueError("mask must be 4 bytes")
    offset %= 4
    size = len(data)
    rotated = mask[offset:] + mask[:offset]
    key = (rotated * (size // 4 + 1))[:size]
    masked = (int.from_bytes(data, "big") ^ int.from_bytes(key, "big")).to_bytes(size, "big")
    return masked, (offset + size) % 4


def calc_frame_size(flags, data_len: int) -> int:
    """Return the size of a frame carrying ``data_len`` payload bytes."""
    size = data_len + 2
    if data_len >= 126:
        size += 8 if data_len > 0xFFFF else 2
    if int(flags) & WsFlags.HAS_MASK:
        size += 4
    return size


def build_frame(flags, mask: Optional[bytes], data: bytes) -> bytes:
    """Build a frame; a masked frame without a given mask gets a random one."""
    flags = int(flags)
    data = bytes(data)
    first = flags & WsFlags.OPCODE_MASK
    if flags & WsFlags.FINAL:
        first |= 0x80
    second = 0x80 if flags & WsFlags.HAS_MASK else 0
    size = len(data)
    if size < 126:
        header = bytes((first, second | size))
    elif size <= 0xFFFF:
        header = bytes((first, second | 126)) + size.to_bytes(2, "big")
    else:
        header = bytes((first, second | 127)) + size.to_bytes(8, "big")
    if flags & WsFlags.HAS_MASK:
        mask = generate_mask() if mask is None else bytes(mask)
        payload, _ = apply_mask(data, mask, 0)
        return header + mask + payload
    return header + data


NotifyCallback = Optional[Callable[["WebSocketParser"], Optional[int]]]
BodyCallback = Optional[Callable[["WebSocketParser", bytes], Optional[int]]]


class WebSocketParser:
    """Incremental frame parser driven by callbacks.

    ``on_frame_header`` runs once a frame header is complete, ``on_frame_body``
    receives payload pieces (already unmasked) and ``on_frame_end`` runs when
    the payload is complete.  A callback returning a non-zero integer aborts
    parsing with :class:`WebSocketFrameError`.
    """

    def __init__(self) -> None:
        self.on_frame_header: NotifyCallback = None
        self.on_frame_body: BodyCallback = None
        self.on_frame_end: NotifyCallback = None
        self.data = None
        self.reset()

    def reset(self) -> None:
        """Forget any partial frame; callbacks are kept."""
        self.flags = WsFlags(0)
        self.length = 0
        self.mask = b"\x00\x00\x00\x00"
        self.mask_offset = 0
        self.offset = 0
        self._header = bytearray()
        self._in_body = False

    @property
    def opcode(self) -> WsFlags:
        return WsFlags(self.flags & WsFlags.OPCODE_MASK)

    @property
    def has_mask(self) -> bool:
        return bool(self.flags & WsFlags.HAS_MASK)

    @property
    def is_final(self) -> bool:
        return bool(self.flags & WsFlags.FINAL)

    @property
    def is_close(self) -> bool:
        return self.opcode == WsFlags.CLOSE

    @property
    def is_text(self) -> bool:
        return self.opcode == WsFlags.TEXT

    @property
    def is_binary(self) -> bool:
        return self.opcode == WsFlags.BINARY

    @property
    def is_ping(self) -> bool:
        return self.opcode == WsFlags.PING

    @property
    def is_pong(self) -> bool:
        return self.opcode == WsFlags.PONG

    @property
    def is_continue(self) -> bool:
        return self.opcode == WsFlags.CONTINUE

    def feed(self, data: bytes) -> int:
        """Parse ``data`` and return how many bytes were consumed."""
        view = memoryview(bytes(data))
        pos = 0
        while pos < len(view):
            if self._in_body:
                take = min(self.length - self.offset, len(view) - pos)
                chunk = bytes(view[pos:pos + take])
                pos += take
                self._deliver_body(chunk)
                continue
            needed = self._header_size()
            if len(self._header) < needed:
                take = needed - len(self._header)
                self._header += view[pos:pos + take]
                pos += min(take, len(view) - pos)
            if len(self._header) == self._header_size():
                self._start_frame()
        if not self._in_body and self._header and len(self._header) == self._header_size():
            self._start_frame()
        return len(view)

    def _header_size(self) -> int:
        if len(self._header) < 2:
            return 2
        second = self._header[1]
        size = 2
        length = second & 0x7F
        if length == 126:
            size += 2
        elif length == 127:
            size += 8
        if second & 0x80:
            size += 4
        return size

    def _start_frame(self) -> None:
        header = bytes(self._header)
        self._header = bytearray()
        first, second = header[0], header[1]
        flags = first & WsFlags.OPCODE_MASK
        if first & 0x80:
            flags |= WsFlags.FINAL
        if second & 0x80:
            flags |= WsFlags.HAS_MASK
        length = second & 0x7F
        pos = 2
        if length == 126:
            length = int.from_bytes(header[2:4], "big")
            pos = 4
        elif length == 127:
            length = int.from_bytes(header[2:10], "big")
            pos = 10
            if length >> 63:
                raise WebSocketFrameError("frame length exceeds 63 bits")
        self.flags = WsFlags(flags)
        self.length = length
        self.mask = header[pos:pos + 4] if second & 0x80 else b"\x00\x00\x00\x00"
        self.mask_offset = 0
        self.offset = 0
        self._call(self.on_frame_header, "frame_header")
        if length == 0:
            self._end_frame()
        else:
            self._in_body = True

    def _deliver_body(self, chunk: bytes) -> None:
        if self.has_mask:
            chunk, self.mask_offset = apply_mask(chunk, self.mask, self.mask_offset)
        self.offset += len(chunk)
        self._call(self.on_frame_body, "frame_body", chunk)
        if self.offset == self.length:
            self._end_frame()

    def _end_frame(self) -> None:
        self._in_body = False
        self._call(self.on_frame_end, "frame_end")

    def _call(self, callback, name: str, *args) -> None:
        if callback is None:
            return
        result = callback(self, *args)
        if result:
            raise WebSocketFrameError(f"{name} callback failed")