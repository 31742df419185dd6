"""Gzip compression, one-shot and streaming."""

from __future__ import annotations

import zlib

_GZIP_WBITS = zlib.MAX_WBITS + 16
_MAX_MEM_LEVEL = 9
_STREAM_MEM_LEVEL = 8


class GzipError(ValueError):
    """Raised when gzip data cannot be compressed or decompressed."""


def gzip_compress(data: bytes) -> bytes:
    """Compress ``data`` into a complete gzip member."""
    compressor = zlib.compressobj(
        zlib.Z_DEFAULT_COMPRESSION,
        zlib.DEFLATED,
        _GZIP_WBITS,
        _MAX_MEM_LEVEL,
        zlib.Z_DEFAULT_STRATEGY,
    )
    try:
        return compressor.compress(bytes(data)) + compressor.flush(zlib.Z_FINISH)
    except zlib.error as exc:
        raise GzipError(f"Gzip compression failed: {exc}") from exc


def gzip_decompress(data: bytes) -> bytes:
    """Decompress a gzip member; a truncated member yields what it holds."""
    decompressor = zlib.decompressobj(_GZIP_WBITS)
    try:
        return decompressor.decompress(bytes(data)) + decompressor.flush()
    except zlib.error as exc:
        raise GzipError(f"Gzip decompression failed: {exc}") from exc


class GzipCompressor:
    """Streaming gzip compressor; the stream ends with a ``final`` call."""

    def __init__(self) -> None:
        self._stream = zlib.compressobj(
            zlib.Z_DEFAULT_COMPRESSION,
            zlib.DEFLATED,
            _GZIP_WBITS,
            _STREAM_MEM_LEVEL,
            zlib.Z_DEFAULT_STRATEGY,
        )
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether the stream has been finished."""
        return self._closed

    def compress(self, data: bytes, final: bool = False) -> bytes:
        """Compress a piece of input and return the output produced so far."""
        if self._closed:
            raise GzipError("Compress stream not initialized.")
        try:
            out = self._stream.compress(bytes(data))
            if final:
                out += self._stream.flush(zlib.Z_FINISH)
        except zlib.error as exc:
            raise GzipError(f"Gzip compression failed: {exc}") from exc
        if final:
            self._closed = True
        return out


class GzipDecompressor:
    """Streaming gzip decompressor; the stream ends with a ``final`` call."""

    def __init__(self) -> None:
        self._stream = zlib.decompressobj(_GZIP_WBITS)
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether the stream has been finished."""
        return self._closed

    @property
    def eof(self) -> bool:
        """Whether the end of the gzip member has been reached."""
        return self._stream.eof

    def decompress(self, data: bytes, final: bool = False) -> bytes:
        """Decompress a piece of input and return the output produced so far."""
        if self._closed:
            raise GzipError("Decompress stream not initialized.")
        try:
            out = self._stream.decompress(bytes(data))
            if final:
                out += self._stream.flush()
        except zlib.error as exc:
            raise GzipError(f"Gzip decompression failed: {exc}") from exc
        if final:
            self._closed = True
        return out