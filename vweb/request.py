"""HTTP request: building the wire form and parsing incoming requests."""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, Optional, Tuple

from .httpparser import (
    MAX_BODY_CACHE_LENGTH,
    HttpParser,
    HttpParserError,
    MethodType,
    ParsedURL,
    ParserType,
    method_name,
    method_type,
    parse_url,
)

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "VHttpClient/1.0"
LAST_CHUNK = b"0\r\n\r\n"

_IP_RE = re.compile(r"[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}")

HeadersCallback = Optional[Callable[["HttpRequest", Dict[str, str]], None]]
BodyCallback = Optional[Callable[["HttpRequest", bytes], bool]]


def is_valid_ip_address(address: str) -> bool:
    """Whether ``address`` looks like a dotted IPv4 address."""
    return _IP_RE.fullmatch(address) is not None


def encode_chunk(data: bytes, last: bool = False) -> bytes:
    """Encode one piece of a chunked body, followed by the last chunk if asked."""
    data = bytes(data)
    out = b"%x\r\n" % len(data) + data + b"\r\n"
    if last:
        out += LAST_CHUNK
    return out


def _method_from_wire(name: Optional[str]) -> MethodType:
    if name == "DELETE":
        return MethodType.DELETE_METHOD
    return method_type(name or "")


class HttpRequest:
    """An HTTP request that can be encoded for sending or filled by parsing.

    ``on_headers_complete`` is called with the request and its headers once
    the headers of an incoming request are parsed.  ``on_body`` is called with
    the request and the body received so far; returning true clears the body.
    """

    def __init__(self) -> None:
        self.on_headers_complete: HeadersCallback = None
        self.on_body: BodyCallback = None
        self.max_body_cache_length = MAX_BODY_CACHE_LENGTH
        self.request_data = b""
        self._parser = HttpParser(ParserType.REQUEST)
        self._parser.on_message_begin = self._message_begin
        self._parser.on_url = self._url
        self._parser.on_header_field = self._header_field
        self._parser.on_header_value = self._header_value
        self._parser.on_headers_complete = self._headers_complete
        self._parser.on_body = self._body
        self._parser.on_message_complete = self._message_complete
        self.reset()

    def reset(self) -> None:
        """Clear every request field; callbacks and limits are kept."""
        self.http_version = ""
        self.method = MethodType.OPTIONS
        self.url = ""
        self.url_raw = ""
        self.host = ""
        self.referer = ""
        self.user_agent = ""
        self.location = ""
        self.accept_language = ""
        self.content_type = ""
        self.accept = ""
        self.parsed_url = ParsedURL()
        self.content_length = 0
        self.headers: Dict[str, str] = {}
        self._body_buf = bytearray()
        self.request_data = b""
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

    @property
    def method_name(self) -> str:
        return method_name(self.method)

    def set_url(self, url: str) -> None:
        """Set the target URL and derive the Host value and TLS use from it."""
        parsed = parse_url(url)
        self.url = url
        self.parsed_url = parsed
        self.url_raw = parsed.path + ("?" + parsed.query if parsed.query else "")
        if parsed.protocol == "https":
            self.host = parsed.host if parsed.port == 443 else f"{parsed.host}:{parsed.port}"
            self.http_ssl = True
        elif parsed.protocol == "http":
            self.host = parsed.host if parsed.port == 80 else f"{parsed.host}:{parsed.port}"
            self.http_ssl = False

    def add_header(self, key: str, value: str) -> None:
        """Set a header, replacing any earlier value."""
        self.headers[key] = value

    def set_keep_alive(self, keep_alive: bool) -> None:
        self.add_header("Connection", "keep-alive" if keep_alive else "close")
        self.keep_alive = keep_alive

    def set_use_gzip(self, use_gzip: bool) -> None:
        """Ask for gzip in Accept-Encoding, or take it out again."""
        if use_gzip:
            self.add_header("Accept-Encoding", "gzip")
        else:
            encoding = self.headers.get("Accept-Encoding")
            if encoding is not None and "gzip" in encoding:
                encoding = encoding.replace("gzip", "", 1)
                if encoding:
                    self.headers["Accept-Encoding"] = encoding
                else:
                    del self.headers["Accept-Encoding"]
        self.use_gzip = use_gzip

    def set_use_chunked(self, use_chunked: bool) -> None:
        self.use_chunked = use_chunked
        if use_chunked:
            self.add_header("Transfer-Encoding", "chunked")
        else:
            self.headers.pop("Transfer-Encoding", None)

    def set_content_type(self, content_type: str) -> None:
        self.add_header("Content-Type", content_type)
        self.content_type = content_type

    def set_accept(self, accept: str) -> None:
        self.add_header("Accept", accept)
        self.accept = accept

    def set_referer(self, referer: str) -> None:
        self.add_header("Referer", referer)
        self.referer = referer

    def set_user_agent(self, user_agent: str) -> None:
        self.user_agent = user_agent
        self.add_header("User-Agent", user_agent)

    def set_location(self, location: str) -> None:
        self.location = location
        self.add_header("Location", location)

    def set_content_length(self, length: int) -> None:
        self.content_length = length
        self.add_header("Content-Length", str(length))

    def build_start_line(self) -> bytes:
        """Return the request line, ``METHOD path?query HTTP/1.1``."""
        query = self.parsed_url.query
        line = (
            f"{method_name(self.method)} {self.parsed_url.path}"
            f"{'?' if query else ''}{query} HTTP/1.1\r\n"
        )
        return line.encode("utf-8")

    def build_headers(self, peer: Optional[Tuple[str, int]] = None) -> bytes:
        """Return the header block, ending with the blank line.

        ``peer`` is the connected address, used for Host when nothing else
        gives one.
        """
        if not self.user_agent:
            self.set_user_agent(DEFAULT_USER_AGENT)

        if not self.host and "Host" in self.headers:
            self.host = self.headers["Host"]
        elif not self.host and self.parsed_url.host:
            self.host = f"{self.parsed_url.host}:{self.parsed_url.port}"
            self.headers["Host"] = self.host
        elif not self.host:
            if peer is None:
                raise ValueError("no host known for the request")
            ip, port = peer
            self.host = f"{ip}:{port}"
            self.headers["Host"] = self.host

        lines = [f"Host: {self.host}\r\n"]
        if self.method in (MethodType.POST, MethodType.PUT):
            if self.use_chunked:
                if "Content-Length" in self.headers:
                    del self.headers["Content-Length"]
                    self.content_length = -1
                if "Transfer-Encoding" not in self.headers:
                    self.add_header("Transfer-Encoding", "chunked")
            else:
                if "Content-Length" in self.headers:
                    self.content_length = int(self.headers["Content-Length"])
                elif len(self._body_buf) > self.content_length:
                    self.content_length = len(self._body_buf)
                lines.append(f"Content-Length: {self.content_length}\r\n")

        lines.extend(
            f"{key}: {value}\r\n"
            for key, value in sorted(self.headers.items())
            if key not in ("Host", "Content-Length")
        )
        lines.append("\r\n")
        return "".join(lines).encode("utf-8")

    def build_body(self) -> bytes:
        """Return the body as sent; chunked bodies go through :func:`encode_chunk`."""
        if self.use_chunked:
            raise ValueError("a chunked body is sent with encode_chunk")
        return bytes(self._body_buf)

    def encode(self, include_body: bool = True, peer: Optional[Tuple[str, int]] = None) -> bytes:
        """Return the request line, headers and, if asked, the body."""
        data = self.build_start_line() + self.build_headers(peer)
        if include_body:
            data += self.build_body()
        return data

    def feed(self, data: bytes) -> int:
        """Parse incoming request bytes; return how many were consumed."""
        self.request_data = bytes(data)
        return self._parser.feed(data)

    def _message_begin(self, parser: HttpParser) -> None:
        self.reset()

    def _url(self, parser: HttpParser, data: bytes) -> None:
        self.url_raw = data.decode("latin-1")

    def _header_field(self, parser: HttpParser, data: bytes) -> None:
        self._header_cache = data.decode("latin-1")

    def _header_value(self, parser: HttpParser, data: bytes) -> int:
        value = data.decode("latin-1")
        field = self._header_cache
        if not field:
            return -1
        if field == "Host":
            self.host = value
        elif field == "Accept":
            self.accept = value
        elif field == "Content-Type":
            self.content_type = value
        elif field == "Connection":
            self.keep_alive = value == "keep-alive"
        elif field == "User-Agent":
            self.user_agent = value
        elif field == "Accept-Encoding":
            self.use_gzip = "gzip" in value
        elif field == "Accept-Language":
            self.accept_language = value
        elif field == "Location":
            self.location = value
        elif field == "Referer":
            self.referer = value
        elif field == "Content-Length":
            self.content_length = int(value)
        elif field == "Transfer-Encoding":
            self.use_chunked = "chunked" in value
        self.add_header(field, value)
        self._header_cache = ""
        return 0

    def _headers_complete(self, parser: HttpParser) -> None:
        if self.on_headers_complete is not None:
            self.on_headers_complete(self, self.headers)

    def _body(self, parser: HttpParser, data: bytes) -> None:
        if len(self._body_buf) > self.max_body_cache_length:
            self.error_message = (
                "request body size is to long, max_body_cache_length_ = "
                f"{self.max_body_cache_length}content_length_ = {self.content_length}"
            )
            logger.error("%s", self.error_message)
        else:
            self._body_buf += data
        if self.on_body is not None and self.on_body(self, bytes(self._body_buf)):
            self._body_buf.clear()

    def _message_complete(self, parser: HttpParser) -> None:
        scheme = "https://" if self.http_ssl else "http://"
        self.url = scheme + self.host + self.url_raw
        self.http_version = f"HTTP/{parser.http_major}.{parser.http_minor}"
        try:
            self.parsed_url = parse_url(self.url)
        except HttpParserError:
            logger.error("Failed to parse URL:%s", self.url)
            self.parsed_url = ParsedURL()
        self.method = _method_from_wire(parser.method)
        self.parsed = True