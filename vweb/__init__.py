"""Blocking HTTP/1.1 and WebSocket client with HTTP parsing, gzip streams and WebSocket framing."""

__version__ = "0.1.0"

__all__ = [
    "client",
    "compression",
    "httpparser",
    "request",
    "response",
    "websocket",
    "websocket_client",
]