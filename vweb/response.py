"""HTTP response: building the wire form and parsing incoming responses."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from .compression import GzipDecompressor, GzipError, gzip_compress
from .httpparser import HTTP_VERSION_1_1, HttpParser, ParserType

logger = logging.getLogger(__name__)

DEFAULT_SERVER = "VHttpServer/1.0"
RESPONSE_MAX_BODY_CACHE_LENGTH = 1024 * 1024 * 100

_STATUS_MESSAGES = {
    100: "Continue",
    101: "Switching Protocols",
    200: "OK",
    201: "Created",
    202: "Accepted",
    203: "Non-Authoritative Information",
    204: "No Content",
    205: "Reset Content",
    206: "Partial Content",
    300: "Multiple Choices",
    301: "Moved Permanently",
    302: "Found",
    303: "See Other",
    304: "Not Modified",
    305: "Use Proxy",
    307: "Temporary Redirect",
    400: "Bad Request",
    401: "Unauthorized",
    402: "Payment Required",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    406: "Not Acceptable",
    407: "Proxy Authentication Required",
    408: "Request Timeout",
    409: "Conflict",
    410: "Gone",
    411: "Length Required",
    412: "Precondition Failed",
    413: "Payload Too Large",
    414: "URI Too Long",
    415: "Unsupported Media Type",
    416: "Range Not Satisfiable",
    417: "Expectation Failed",
    500: "Internal Server Error",
    501: "Not Implemented",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
    505: "HTTP Version Not Supported",
}

HeadersCallback = Optional[Callable[["HttpResponse", Dict[str, str]], None]]
BodyCallback = Optional[Callable[["HttpResponse", bytes], bool]]


def status_message(code: int) -> str:
    """Return the reason phrase for a status code, or ``Unknown Status``."""
    return _STATUS_MESSAGES.get(code, "Unknown Status")


class HttpResponse:
    """An HTTP response that can be encoded for sending or filled by parsing.

    ``on_headers_complete`` is called with the response and its headers once
    the headers of an incoming response are parsed.  ``on_body`` is called
    with the response and the body received so far; returning true clears
    the body.  A gzip Content-Encoding is decoded as the body arrives.
    """

    def __init__(self) -> None:
        self.on_headers_complete: HeadersCallback = None
        self.on_body: BodyCallback = None
        self.max_body_cache_length = RESPONSE_MAX_BODY_CACHE_LENGTH
        self._decompressor: Optional[GzipDecompressor] = None
        self._parser = HttpParser(ParserType.RESPONSE)
        self._parser.on_message_begin = self._message_begin
        self._parser.on_status = self._status
        self._parser.on_header_field = self._header_field
        self._parser.on_header_value = self._header_value
        self._parser.on_headers_complete = self._headers_complete
        self._parser.on_body = self._body
        self._parser.on_message_complete = self._message_complete
        self.reset()

    def reset(self) -> None:
        """Clear every response field; callbacks and limits are kept."""
        self.status_message = ""
        self.http_version = ""
        self.server = ""
        self.location = ""
        self.content_language = ""
        self.content_type = ""
        self.accept_ranges = ""
        self.content_length = 0
        self.status_code = 0
        self.headers: Dict[str, str] = {}
        self._body_buf = bytearray()
        self.response_data = b""
        self.use_gzip = False
        self.use_chunked = False
        self.keep_alive = True
        self.parsed = False
        self.http_ssl = False
        self.error_message = ""
        self._header_cache = ""

    @property
    def body(self) -> bytearray:
        return self._body_buf

    @body.setter
    def body(self, value: bytes) -> None:
        self._body_buf = bytearray(value)

    def add_header(self, key: str, value: str) -> None:
        """Set a header, replacing any earlier value."""
        self.headers[key] = value

    def set_content_type(self, content_type: str) -> None:
        self.content_type = content_type
        self.add_header("Content-Type", content_type)

    def set_accept_ranges(self, accept_ranges: str) -> None:
        self.accept_ranges = accept_ranges
        self.add_header("Accept-Ranges", accept_ranges)

    def set_keep_alive(self, keep_alive: bool) -> None:
        self.keep_alive = keep_alive
        self.add_header("Connection", "keep_alive" if keep_alive else "close")

    def set_use_gzip(self, use_gzip: bool) -> None:
        """Compress the body on encoding and list gzip in Accept-Encoding, or undo it."""
        self.use_gzip = use_gzip
        encoding = self.headers.get("Accept-Encoding", "")
        if use_gzip:
            self.add_header("Accept-Encoding", f"{encoding},gzip" if encoding else "gzip")
        elif "Accept-Encoding" in self.headers:
            if encoding == "gzip":
                del self.headers["Accept-Encoding"]
            else:
                for part in (",gzip", "gzip,", "gzip"):
                    encoding = encoding.replace(part, "")
                self.headers["Accept-Encoding"] = encoding

    def set_use_chunked(self, use_chunked: bool) -> None:
        self.use_chunked = use_chunked
        if use_chunked:
            self.add_header("Transfer-Encoding", "chunked")
        else:
            self.headers.pop("Transfer-Encoding", None)

    def set_server(self, server: str) -> None:
        self.server = server
        self.add_header("Server", server)

    def set_location(self, location: str) -> None:
        self.location = location
        self.add_header("Location", location)

    def set_content_length(self, length: int) -> None:
        self.content_length = length
        self.add_header("Content-Length", str(length))

    def encode(self) -> bytes:
        """Return the status line, headers and body as sent on the wire."""
        if not self.http_version:
            self.http_version = HTTP_VERSION_1_1
        head = f"{self.http_version} {self.status_code} {status_message(self.status_code)}\r\n"
        if not self.server:
            self.set_server(DEFAULT_SERVER)
        head += "".join(f"{key}: {value}\r\n" for key, value in sorted(self.headers.items()))
        head += "\r\n"
        body = gzip_compress(self._body_buf) if self.use_gzip else bytes(self._body_buf)
        self.response_data = head.encode("utf-8") + body
        return self.response_data

    def feed(self, data: bytes) -> int:
        """Parse incoming response bytes; return how many were consumed."""
        self.response_data = bytes(data)
        return self._parser.feed(data)

    def take_body(self, count: int = 0) -> bytes:
        """Remove and return up to ``count`` body bytes; 0 takes all of them."""
        if count == 0 or count >= len(self._body_buf):
            taken = bytes(self._body_buf)
            self._body_buf.clear()
            return taken
        taken = bytes(self._body_buf[:count])
        del self._body_buf[:count]
        return taken

    def _message_begin(self, parser: HttpParser) -> None:
        self.reset()
        self._decompressor = GzipDecompressor()

    def _status(self, parser: HttpParser, data: bytes) -> None:
        self.status_message = data.decode("latin-1")
        self.status_code = parser.status_code

    def _header_field(self, parser: HttpParser, data: bytes) -> None:
        self._header_cache = data.decode("latin-1")

    def _header_value(self, parser: HttpParser, data: bytes) -> int:
        value = data.decode("latin-1")
        field = self._header_cache
        if not field:
            return -1
        if field == "Content-Type":
            self.content_type = value
        elif field == "Connection":
            self.keep_alive = value == "keep-alive"
        elif field == "Server":
            self.server = value
        elif field == "Content-Encoding":
            self.use_gzip = "gzip" in value
        elif field == "Content-Language":
            self.content_language = value
        elif field == "Location":
            self.location = value
        elif field == "Content-Length":
            self.content_length = int(value)
        elif field == "Transfer-Encoding":
            self.use_chunked = "chunked" in value
        elif field in ("Accept-Ranges", "Accept_Ranges"):
            self.accept_ranges = value
        self.add_header(field, value)
        self._header_cache = ""
        return 0

    def _headers_complete(self, parser: HttpParser) -> None:
        if self.on_headers_complete is not None:
            self.on_headers_complete(self, self.headers)

    def _decompress(self, data: bytes, final: bool) -> None:
        if self._decompressor is None or self._decompressor.closed:
            self._decompressor = GzipDecompressor()
        try:
            self._body_buf += self._decompressor.decompress(data, final)
        except GzipError:
            self.error_message = (
                "gzipDecompress finish is error" if final else "gzipDecompress is error"
            )

    def _body(self, parser: HttpParser, data: bytes) -> None:
        if len(self._body_buf) > self.max_body_cache_length:
            self.error_message = (
                "response body size is to long, max_body_cache_length_ = "
                f"{self.max_body_cache_length}content_length_ = {self.content_length}"
            )
            logger.error("%s", self.error_message)
        elif self.use_gzip and data:
            self._decompress(data, False)
        else:
            self._body_buf += data
        if self.on_body is not None and self.on_body(self, bytes(self._body_buf)):
            self._body_buf.clear()

    def _message_complete(self, parser: HttpParser) -> None:
        if len(self._body_buf) <= self.max_body_cache_length and self.use_gzip and self._body_buf:
            self._decompress(b"", True)
        self.http_version = f"HTTP/{parser.http_major}.{parser.http_minor}"
        self.parsed = True
        self._decompressor = None