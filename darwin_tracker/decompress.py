#!/usr/bin/env python3
"""Streaming gzip decompression of a timetable object body."""

from __future__ import annotations

import gzip
import io
import logging
import zlib
from typing import Any

from botocore.exceptions import BotoCoreError

from .errors import CorruptPayloadError, TransientStorageError

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
CHUNK_SIZE = 64 * 1024


def _read_raw(raw: Any, size: int) -> bytes:
    try:
        return raw.read(size) or b""
    except (BotoCoreError, OSError) as exc:
        raise TransientStorageError(f"reading object body failed: {type(exc).__name__}: {exc}", stage="decompressing") from exc


class _BodyReader:
    """File-like view of the object body for GzipFile: replays the header chunk, counts bytes."""

    def __init__(self, raw: Any, first_chunk: bytes, chunk_size: int) -> None:
        self._raw = raw
        self._pending = first_chunk
        self._chunk_size = chunk_size
        self.bytes_in = len(first_chunk)

    def read(self, size: int = -1) -> bytes:
        if self._pending:
            if size < 0 or size >= len(self._pending):
                data, self._pending = self._pending, b""
            else:
                data, self._pending = self._pending[:size], self._pending[size:]
            return data
        want = self._chunk_size if size < 0 else min(size, self._chunk_size)
        data = _read_raw(self._raw, want)
        self.bytes_in += len(data)
        return data


class DecodedFeedStream(io.RawIOBase):
    """
    Decompressed view over a gzip byte stream.

    Owns the raw stream it wraps: closing this closes the raw stream (once).
    The body is pulled at most CHUNK_SIZE bytes at a time; the full payload is never held.
    """

    def __init__(self, raw: Any, first_chunk: bytes = b"", *, tolerate_truncation: bool = False,
                 chunk_size: int = CHUNK_SIZE) -> None:
        super().__init__()
        self._raw = raw
        self._body = _BodyReader(raw, first_chunk, chunk_size)
        # GzipFile never closes a fileobj it was handed; close() below does that
        self._gz = gzip.GzipFile(fileobj=self._body, mode="rb")
        self.tolerate_truncation = tolerate_truncation
        self.truncated = False
        self.bytes_out = 0

    @property
    def bytes_in(self) -> int:
        return self._body.bytes_in

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed stream")
        if self.truncated:
            return 0
        try:
            # read1 hands out what is already decoded, so a tolerated truncation keeps the prefix
            data = self._gz.read1(len(b))
        except EOFError as exc:
            return self._truncated(exc)
        except (gzip.BadGzipFile, zlib.error) as exc:
            raise CorruptPayloadError(
                f"corrupt gzip data after {self.bytes_out} decoded bytes: {exc}"
            ) from exc
        n = len(data)
        b[:n] = data
        self.bytes_out += n
        return n

    def _truncated(self, exc: EOFError) -> int:
        if not self.tolerate_truncation:
            raise CorruptPayloadError(
                f"gzip stream truncated after {self.bytes_in} compressed / {self.bytes_out} decoded bytes"
            ) from exc
        self.truncated = True
        logger.warning("Gzip stream truncated (%s); continuing with %d decoded bytes", exc, self.bytes_out)
        return 0

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._raw.close()
        finally:
            self._gz.close()
            super().close()


def open_decoded(raw: Any, *, tolerate_truncation: bool = False, chunk_size: int = CHUNK_SIZE) -> DecodedFeedStream:
    """
    Take ownership of a gzip-compressed raw stream and return its decoded stream.

    The header is checked here, before any decoding: an empty body or a body that does not
    start with the gzip magic raises CorruptPayloadError. On any failure the raw stream is
    closed before the exception leaves this function.
    """
    try:
        first = _read_raw(raw, chunk_size)
        if not first:
            raise CorruptPayloadError("empty payload: no compressed data")
        if first[:2] != GZIP_MAGIC:
            raise CorruptPayloadError(f"not a gzip stream (header {first[:2].hex() or 'missing'})")
    except BaseException:
        raw.close()
        raise
    return DecodedFeedStream(raw, first, tolerate_truncation=tolerate_truncation, chunk_size=chunk_size)
