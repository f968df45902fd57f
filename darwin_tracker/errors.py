#!/usr/bin/env python3
"""Failure taxonomy for one ingestion pass."""

from __future__ import annotations


class FeedError(Exception):
    """Base class. Any FeedError aborts the current pass and leaves the cache alone."""

    stage = "pass"

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        if stage:
            self.stage = stage


class AuthError(FeedError):
    """Storage credentials missing or rejected."""

    stage = "listing"


class NotFoundError(FeedError):
    """Nothing to ingest under the configured bucket/prefix."""

    stage = "listing"


class TransientStorageError(FeedError):
    """Network/service failure talking to object storage; the next scheduled pass may succeed."""

    stage = "fetching"


class CorruptPayloadError(FeedError):
    stage = "decompressing"


class MalformedFeedError(FeedError):
    stage = "decoding"
