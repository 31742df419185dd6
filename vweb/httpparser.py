"""Incremental HTTP/1.x message parser, URL splitting and method helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum, IntEnum, auto
from typing import Callable, Optional

HTTP_VERSION_1_0 = "HTTP/1.0"
HTTP_VERSION_1_1 = "HTTP/1.1"
HTTP_VERSION_2_0 = "HTTP/2.0"

MAX_BODY_CACHE_LENGTH = 104857600
MAX_HEADER_SIZE = 80 * 1024


class MethodType(IntEnum):
    """Request methods known to the client and server."""

    OPTIONS = 0
    GET = 1
    HEAD = 2
    POST = 3
    PUT = 4
    DELETE_METHOD = 5
    TRACE = 6
    CONNECT = 7


class ParserType(IntEnum):
    """Which kind of message a parser expects."""

    REQUEST = 0
    RESPONSE = 1
    BOTH = 2


class HttpParserError(ValueError):
    """Raised when a URL or an HTTP message cannot be parsed."""


@dataclass
class ParsedURL:
    """Components of a parsed URL."""

    protocol: str = ""
    host: str = ""
    port: int = 0
    path: str = ""
    query: str = ""


_METHOD_NAMES = {member: member.name for member in MethodType}
_METHOD_TYPES = {name: member for member, name in _METHOD_NAMES.items()}


def method_name(method) -> str:
    """Return the name of a method, or an empty string if it is unknown."""
    try:
        return _METHOD_NAMES[MethodType(method)]
    except (ValueError, TypeError):
        return ""


def method_type(name: str) -> MethodType:
    """Return the method for a name; unknown names give ``MethodType.OPTIONS``."""
    return _METHOD_TYPES.get(name, MethodType.OPTIONS)


_ABSOLUTE_URL_RE = re.compile(
    r"""
    (?P<schema>[A-Za-z]+)://
    (?:[^@/?#\s]*@)?
    (?:\[(?P<ipv6>[0-9A-Fa-f:.]+(?:%[A-Za-z0-9._~-]+)?)\]
       |(?P<host>[A-Za-z0-9._~-]+))
    (?::(?P<port>[0-9]*))?
    (?P<path>/[^?#\s]*)?
    (?:\?(?P<query>[^#\s]*))?
    (?:\#\S*)?
    """,
    re.VERBOSE,
)
_RELATIVE_URL_RE = re.compile(r"(?P<path>/[^?#\s]*|\*)(?:\?(?P<query>[^#\s]*))?(?:#\S*)?")


def parse_url(url: str) -> ParsedURL:
    """Split a URL into protocol, host, port, path and query.

    A missing port defaults to 443 for https and 80 otherwise; a missing
    path defaults to ``/``.
    """
    result = ParsedURL()
    match = _ABSOLUTE_URL_RE.fullmatch(url)
    if match is not None:
        result.protocol = match.group("schema")
        result.host = match.group("host") or match.group("ipv6")
        port = match.group("port")
        if port is not None:
            if not port or int(port) > 65535:
                raise HttpParserError(f"Failed to parse URL: {url}")
            result.port = int(port)
        path = match.group("path")
    else:
        match = _RELATIVE_URL_RE.fullmatch(url)
        if match is None:
            raise HttpParserError(f"Failed to parse URL: {url}")
        path = match.group("path")
    if not result.port:
        result.port = 443 if result.protocol == "https" else 80
    result.path = path or "/"
    result.query = match.group("query") or ""
    return result


_KNOWN_METHODS = frozenset(
    """DELETE GET HEAD POST PUT CONNECT OPTIONS TRACE COPY LOCK MKCOL MOVE
    PROPFIND PROPPATCH SEARCH UNLOCK BIND REBIND UNBIND ACL REPORT MKACTIVITY
    CHECKOUT MERGE M-SEARCH NOTIFY SUBSCRIBE UNSUBSCRIBE PATCH PURGE MKCALENDAR
    LINK UNLINK SOURCE""".split()
)
_REQUEST_LINE_RE = re.compile(rb"([A-Z-]+) (\S+) HTTP/(\d)\.(\d)")
_STATUS_LINE_RE = re.compile(rb"HTTP/(\d)\.(\d) (\d{3})(?: (.*))?")
_TOKEN_RE = re.compile(rb"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")
_CHUNK_SIZE_RE = re.compile(rb"([0-9A-Fa-f]+)[ \t]*(?:;.*)?")
_DIGITS_RE = re.compile(r"[0-9]+")


class _State(Enum):
    START = auto()
    FIRST_LINE = auto()
    HEADERS = auto()
    BODY_IDENTITY = auto()
    BODY_EOF = auto()
    CHUNK_SIZE = auto()
    CHUNK_DATA = auto()
    CHUNK_DATA_END = auto()
    TRAILERS = auto()
    DONE = auto()
    CLOSED = auto()


DataCallback = Optional[Callable[["HttpParser", bytes], Optional[int]]]
NotifyCallback = Optional[Callable[["HttpParser"], Optional[int]]]


class HttpParser:
    """Incremental HTTP/1.x parser driven by callbacks.

    Callbacks are plain attributes.  Data callbacks receive the parser and a
    ``bytes`` chunk; notification callbacks receive the parser alone.  A
    callback that returns a non-zero integer aborts parsing with
    :class:`HttpParserError`, except ``on_headers_complete``, which may return
    1 to announce that the message has no body.  A pause requested from a
    callback takes effect once the callbacks of the current step have run.
    """

    max_header_size = MAX_HEADER_SIZE

    def __init__(self, kind: ParserType = ParserType.BOTH) -> None:
        self.on_message_begin: NotifyCallback = None
        self.on_url: DataCallback = None
        self.on_status: DataCallback = None
        self.on_header_field: DataCallback = None
        self.on_header_value: DataCallback = None
        self.on_headers_complete: NotifyCallback = None
        self.on_body: DataCallback = None
        self.on_message_complete: NotifyCallback = None
        self.on_chunk_header: NotifyCallback = None
        self.on_chunk_complete: NotifyCallback = None
        self._handlers = {
            _State.START: self._step_start,
            _State.FIRST_LINE: self._step_first_line,
            _State.HEADERS: self._step_headers,
            _State.BODY_IDENTITY: self._step_body,
            _State.BODY_EOF: self._step_body,
            _State.CHUNK_SIZE: self._step_chunk_size,
            _State.CHUNK_DATA: self._step_body,
            _State.CHUNK_DATA_END: self._step_chunk_end,
            _State.TRAILERS: self._step_trailers,
            _State.CLOSED: self._step_closed,
        }
        self.reset(kind)

    def reset(self, kind: ParserType = ParserType.BOTH) -> None:
        """Start over, expecting messages of the given kind; callbacks are kept."""
        self.kind = ParserType(kind)
        self.error: Optional[str] = None
        self._buffer = bytearray()
        self._pos = 0
        self._paused = False
        self._stop = False
        self._state = _State.START
        self._message_kind = ParserType.REQUEST if self.kind is ParserType.BOTH else self.kind
        self._clear_message()

    def _clear_message(self) -> None:
        self.method: Optional[str] = None
        self.status_code = 0
        self.http_major = 0
        self.http_minor = 0
        self.content_length: Optional[int] = None
        self.upgrade = False
        self._remaining = 0
        self._header_bytes = 0
        self._chunked = False
        self._skip_body = False
        self._conn_keep_alive = False
        self._conn_close = False
        self._conn_upgrade = False
        self._has_upgrade = False

    def feed(self, data: bytes) -> int:
        """Parse ``data`` and return how many of its bytes were consumed.

        An empty ``data`` signals the end of the stream.  Fewer bytes than
        given are consumed when the parser is paused or after an upgrade.
        """
        if self.error is not None:
            raise HttpParserError(self.error)
        if self._paused:
            return 0
        data = bytes(data)
        try:
            if not data:
                self._on_eof()
                return 0
            old = len(self._buffer)
            self._buffer += data
            self._pos = 0
            self._stop = False
            while not self._paused and not self._stop:
                handler = self._handlers.get(self._state)
                if handler is None or not handler():
                    break
        except HttpParserError as exc:
            self.error = str(exc)
            self._buffer = bytearray()
            raise
        if self._paused or self._stop:
            consumed = max(0, self._pos - old)
            self._buffer = self._buffer[self._pos:old] if self._pos < old else bytearray()
            self._pos = 0
            return consumed
        del self._buffer[: self._pos]
        self._pos = 0
        return len(data)

    def should_keep_alive(self) -> bool:
        """Whether the connection may carry another message after this one."""
        if self.http_major > 0 and self.http_minor > 0:
            if self._conn_close:
                return False
        elif not self._conn_keep_alive:
            return False
        return not self._needs_eof()

    def pause(self, paused: bool) -> None:
        """Pause or resume parsing."""
        self._paused = bool(paused)

    def body_is_final(self) -> bool:
        """Whether the body data being delivered is the last of the message."""
        return self._state is _State.DONE

    def _needs_eof(self) -> bool:
        if self._message_kind is ParserType.REQUEST:
            return False
        if self.status_code // 100 == 1 or self.status_code in (204, 304) or self._skip_body:
            return False
        if self._chunked or self.content_length is not None:
            return False
        return True

    def _call(self, callback, name: str, *args) -> int:
        if callback is None:
            return 0
        result = callback(self, *args)
        result = 0 if result is None else result
        if result and name != "headers_complete":
            raise HttpParserError(f"{name} callback failed")
        return result

    def _read_line(self, counted: bool) -> Optional[bytes]:
        end = self._buffer.find(b"\n", self._pos)
        if end < 0:
            pending = len(self._buffer) - self._pos
            if counted:
                pending += self._header_bytes
            if pending > self.max_header_size:
                raise HttpParserError("header overflow")
            return None
        if counted:
            self._header_bytes += end + 1 - self._pos
            if self._header_bytes > self.max_header_size:
                raise HttpParserError("header overflow")
        line = bytes(self._buffer[self._pos:end])
        self._pos = end + 1
        return line[:-1] if line.endswith(b"\r") else line

    def _skip_newlines(self) -> bool:
        while self._pos < len(self._buffer) and self._buffer[self._pos] in b"\r\n":
            self._pos += 1
        return self._pos < len(self._buffer)

    def _step_start(self) -> bool:
        if not self._skip_newlines():
            return False
        self._clear_message()
        self._state = _State.FIRST_LINE
        self._call(self.on_message_begin, "message_begin")
        return True

    def _step_closed(self) -> bool:
        if self._skip_newlines():
            raise HttpParserError("data received after connection closed")
        return False

    def _step_first_line(self) -> bool:
        line = self._read_line(True)
        if line is None:
            return False
        if self.kind is ParserType.BOTH:
            self._message_kind = (
                ParserType.RESPONSE if line.startswith(b"HTTP/") else ParserType.REQUEST
            )
        self._state = _State.HEADERS
        if self._message_kind is ParserType.REQUEST:
            match = _REQUEST_LINE_RE.fullmatch(line)
            if match is None:
                raise HttpParserError("invalid request line")
            method = match.group(1).decode("ascii")
            if method not in _KNOWN_METHODS:
                raise HttpParserError(f"invalid method {method!r}")
            self.method = method
            self.http_major, self.http_minor = int(match.group(3)), int(match.group(4))
            self._call(self.on_url, "url", match.group(2))
        else:
            match = _STATUS_LINE_RE.fullmatch(line)
            if match is None:
                raise HttpParserError("invalid status line")
            self.http_major, self.http_minor = int(match.group(1)), int(match.group(2))
            self.status_code = int(match.group(3))
            self._call(self.on_status, "status", match.group(4) or b"")
        return True

    def _step_headers(self) -> bool:
        line = self._read_line(True)
        if line is None:
            return False
        if line:
            self._header_line(line, trailer=False)
        else:
            self._headers_done()
        return True

    def _header_line(self, line: bytes, trailer: bool) -> None:
        if line[:1] in (b" ", b"\t"):
            raise HttpParserError("invalid header folding")
        field, sep, value = line.partition(b":")
        if not sep or _TOKEN_RE.fullmatch(field) is None:
            raise HttpParserError("invalid header field")
        value = value.strip(b" \t")
        if not trailer:
            self._track_header(field.decode("latin-1").lower(), value.decode("latin-1"))
        self._call(self.on_header_field, "header_field", field)
        self._call(self.on_header_value, "header_value", value)

    def _track_header(self, field: str, value: str) -> None:
        tokens = [token.strip().lower() for token in value.split(",")]
        if field == "content-length":
            if _DIGITS_RE.fullmatch(value) is None:
                raise HttpParserError("invalid content length")
            if self.content_length is not None or self._chunked:
                raise HttpParserError("unexpected content length")
            self.content_length = int(value)
        elif field == "transfer-encoding":
            self._chunked = tokens[-1] == "chunked"
            if self._chunked and self.content_length is not None:
                raise HttpParserError("unexpected content length")
        elif field == "connection":
            self._conn_keep_alive |= "keep-alive" in tokens
            self._conn_close |= "close" in tokens
            self._conn_upgrade |= "upgrade" in tokens
        elif field == "upgrade":
            self._has_upgrade = True

    def _headers_done(self) -> None:
        self._header_bytes = 0
        is_request = self._message_kind is ParserType.REQUEST
        if self._has_upgrade and self._conn_upgrade:
            self.upgrade = is_request or self.status_code == 101
        else:
            self.upgrade = is_request and self.method == "CONNECT"
        if self._call(self.on_headers_complete, "headers_complete") == 1:
            self._skip_body = True
        elif self._call_result_unexpected:
            pass
        has_body = self._chunked or (self.content_length or 0) > 0
        if self.upgrade and (self.method == "CONNECT" or self._skip_body or not has_body):
            self._complete_message()
        elif self._skip_body:
            self._complete_message()
        elif self._chunked:
            self._state = _State.CHUNK_SIZE
        elif self.content_length == 0:
            self._complete_message()
        elif self.content_length is not None:
            self._remaining = self.content_length
            self._state = _State.BODY_IDENTITY
        elif self._needs_eof():
            self._state = _State.BODY_EOF
        else:
            self._complete_message()

    _call_result_unexpected = False

    def _step_body(self) -> bool:
        available = len(self._buffer) - self._pos
        if available == 0:
            return False
        if self._state is _State.BODY_EOF:
            size = available
        else:
            size = min(available, self._remaining)
            self._remaining -= size
        chunk = bytes(self._buffer[self._pos:self._pos + size])
        self._pos += size
        finished = self._state is _State.BODY_IDENTITY and self._remaining == 0
        if finished:
            self._state = _State.DONE
        elif self._state is _State.CHUNK_DATA and self._remaining == 0:
            self._state = _State.CHUNK_DATA_END
        self._call(self.on_body, "body", chunk)
        if finished:
            self._complete_message()
        return True

    def _step_chunk_size(self) -> bool:
        line = self._read_line(False)
        if line is None:
            return False
        match = _CHUNK_SIZE_RE.fullmatch(line)
        if match is None:
            raise HttpParserError("invalid chunk size")
        size = int(match.group(1), 16)
        self.content_length = size
        self._remaining = size
        self._state = _State.CHUNK_DATA if size else _State.TRAILERS
        self._call(self.on_chunk_header, "chunk_header")
        return True

    def _step_chunk_end(self) -> bool:
        line = self._read_line(False)
        if line is None:
            return False
        if line:
            raise HttpParserError("invalid chunk data terminator")
        self._state = _State.CHUNK_SIZE
        self._call(self.on_chunk_complete, "chunk_complete")
        return True

    def _step_trailers(self) -> bool:
        line = self._read_line(True)
        if line is None:
            return False
        if line:
            self._header_line(line, trailer=True)
        else:
            self._state = _State.DONE
            self._call(self.on_chunk_complete, "chunk_complete")
            self._complete_message()
        return True

    def _complete_message(self) -> None:
        self._state = _State.DONE
        self._call(self.on_message_complete, "message_complete")
        if self.upgrade:
            self._stop = True
            self._state = _State.START
        elif self.should_keep_alive():
            self._state = _State.START
        else:
            self._state = _State.CLOSED

    def _on_eof(self) -> None:
        if self._state in (_State.START, _State.CLOSED):
            return
        if self._state is _State.BODY_EOF:
            self._complete_message()
            return
        raise HttpParserError("unexpected end of stream")