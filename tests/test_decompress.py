#!/usr/bin/env python3
"""Unit tests for streaming gzip decompression and stream ownership."""

import gzip
import logging
from unittest.mock import Mock

import pytest

from darwin_tracker.decompress import DecodedFeedStream, open_decoded
from darwin_tracker.errors import CorruptPayloadError, TransientStorageError

PAYLOAD = b"<Pport>" + b"".join(f"<TS rid='{i:015d}' uid='C{i % 977:05d}'/>".encode() for i in range(2000)) + b"</Pport>"


def test_decodes_in_small_chunks(counting_stream):
    raw = counting_stream(gzip.compress(PAYLOAD))
    with open_decoded(raw, chunk_size=7) as decoded:
        assert decoded.read() == PAYLOAD
        assert decoded.bytes_out == len(PAYLOAD)
    assert raw.close_calls == 1


def test_close_is_idempotent_and_closes_raw_once(counting_stream):
    raw = counting_stream(gzip.compress(PAYLOAD))
    decoded = open_decoded(raw)
    decoded.close()
    decoded.close()
    assert raw.close_calls == 1
    assert decoded.closed


def test_not_gzip_fails_on_open_and_closes_raw_once(counting_stream):
    raw = counting_stream(b"<Pport>plain xml, not compressed</Pport>")
    with pytest.raises(CorruptPayloadError) as ei:
        open_decoded(raw)
    assert "not a gzip stream" in str(ei.value)
    assert raw.close_calls == 1


def test_empty_body_is_distinguished(counting_stream):
    raw = counting_stream(b"")
    with pytest.raises(CorruptPayloadError) as ei:
        open_decoded(raw)
    assert "empty payload" in str(ei.value)
    assert raw.close_calls == 1


def test_truncated_body_fails_by_default(counting_stream):
    data = gzip.compress(PAYLOAD)
    raw = counting_stream(data[: len(data) // 2])
    with open_decoded(raw, chunk_size=16) as decoded:
        with pytest.raises(CorruptPayloadError) as ei:
            decoded.read()
    assert "truncated" in str(ei.value)
    assert raw.close_calls == 1


def test_truncated_body_tolerated_yields_prefix(counting_stream):
    data = gzip.compress(PAYLOAD)
    raw = counting_stream(data[: len(data) - 20])
    with open_decoded(raw, tolerate_truncation=True, chunk_size=16) as decoded:
        out = decoded.read()
        assert decoded.truncated
    assert out
    assert PAYLOAD.startswith(out)


def test_tolerated_truncation_is_logged(counting_stream, caplog):
    data = gzip.compress(PAYLOAD)
    raw = counting_stream(data[: len(data) // 2])
    with caplog.at_level(logging.WARNING, logger="darwin_tracker.decompress"):
        with open_decoded(raw, tolerate_truncation=True, chunk_size=64) as decoded:
            out = decoded.read()
            assert decoded.read() == b""
    assert PAYLOAD.startswith(out)
    assert "truncated" in caplog.text
    assert raw.close_calls == 1


def test_truncated_inside_header_is_truncation(counting_stream):
    raw = counting_stream(gzip.compress(PAYLOAD)[:6])
    with open_decoded(raw) as decoded:
        with pytest.raises(CorruptPayloadError) as ei:
            decoded.read()
    assert "truncated" in str(ei.value)


def test_garbage_after_member_is_corrupt(counting_stream):
    raw = counting_stream(gzip.compress(b"<a/>") + b"trailing junk")
    with open_decoded(raw) as decoded:
        with pytest.raises(CorruptPayloadError) as ei:
            decoded.read()
    assert "corrupt" in str(ei.value)


def test_zero_padding_after_member_is_ignored(counting_stream):
    raw = counting_stream(gzip.compress(b"<a/>") + b"\x00" * 16)
    with open_decoded(raw, chunk_size=4) as decoded:
        assert decoded.read() == b"<a/>"


def test_bad_checksum_is_corrupt(counting_stream):
    data = bytearray(gzip.compress(PAYLOAD))
    # CRC32 sits in the 8-byte trailer
    data[-8] ^= 0xFF
    raw = counting_stream(bytes(data))
    with open_decoded(raw) as decoded:
        with pytest.raises(CorruptPayloadError):
            decoded.read()
    assert raw.close_calls == 1


def test_concatenated_members(counting_stream):
    raw = counting_stream(gzip.compress(b"<a>") + gzip.compress(b"</a>"))
    with open_decoded(raw, chunk_size=5) as decoded:
        assert decoded.read() == b"<a></a>"


def test_read_failure_from_store_is_transient():
    raw = Mock()
    raw.read.side_effect = [gzip.compress(PAYLOAD)[:10], OSError("connection reset")]
    decoded = open_decoded(raw, chunk_size=10)
    with pytest.raises(TransientStorageError):
        decoded.read()
    decoded.close()
    raw.close.assert_called_once_with()


def test_read_failure_on_open_closes_raw():
    raw = Mock()
    raw.read.side_effect = OSError("timed out")
    with pytest.raises(TransientStorageError):
        open_decoded(raw)
    raw.close.assert_called_once_with()


def test_read_after_close_rejected(counting_stream):
    decoded = DecodedFeedStream(counting_stream(gzip.compress(b"x")))
    decoded.close()
    with pytest.raises(ValueError):
        decoded.read()
