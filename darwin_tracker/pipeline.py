#!/usr/bin/env python3
"""One ingestion pass: locate -> fetch -> decompress -> decode -> publish."""

from __future__ import annotations

import dataclasses
import enum
import logging
import threading
import time
from typing import Callable, Mapping, Optional

from .cache import ProgressCache
from .decoder import iter_services, project
from .decompress import open_decoded
from .errors import FeedError
from .models import PassStatus, TrackedTrain, TrainProgress, utc_now_iso
from .storage import ObjectLocator, StreamFetcher

logger = logging.getLogger(__name__)


class PassState(enum.Enum):
    IDLE = "idle"
    LISTING = "listing"
    FETCHING = "fetching"
    DECOMPRESSING = "decompressing"
    DECODING = "decoding"
    PUBLISHING = "publishing"


class IngestionPipeline:
    """Single-attempt ingestion. Retrying is up to whoever calls run_pass()."""

    def __init__(
        self,
        locator: ObjectLocator,
        fetcher: StreamFetcher,
        cache: ProgressCache,
        tracked: TrackedTrain,
        *,
        station_name: Optional[Callable[[str], str]] = None,
        activity_labels: Optional[Mapping[str, str]] = None,
        tolerate_truncation: bool = False,
    ) -> None:
        self.locator = locator
        self.fetcher = fetcher
        self.cache = cache
        self.tracked = tracked
        self.station_name = station_name
        self.activity_labels = activity_labels
        self.tolerate_truncation = tolerate_truncation

        self._pass_lock = threading.Lock()
        self._status_lock = threading.Lock()
        self._status = PassStatus()
        self._state = PassState.IDLE

    @property
    def state(self) -> PassState:
        return self._state

    def _set_state(self, state: PassState) -> None:
        self._state = state
        with self._status_lock:
            self._status.state = state.value

    def status(self) -> PassStatus:
        with self._status_lock:
            return dataclasses.replace(self._status)

    def execute(self) -> TrainProgress:
        """
        Run the stages once and publish the result.

        Raises the FeedError of the failing stage; in that case nothing is published.
        The object body is closed exactly once whichever way this exits.
        """
        try:
            self._set_state(PassState.LISTING)
            obj = self.locator.latest()

            self._set_state(PassState.FETCHING)
            raw = self.fetcher.fetch(obj)

            self._set_state(PassState.DECOMPRESSING)
            decoded = open_decoded(raw, tolerate_truncation=self.tolerate_truncation)

            with decoded:
                self._set_state(PassState.DECODING)
                progress = project(
                    iter_services(decoded),
                    self.tracked,
                    station_name=self.station_name,
                    activity_labels=self.activity_labels,
                    source_key=obj.key,
                )

            self._set_state(PassState.PUBLISHING)
            self.cache.publish(progress)
            return progress
        finally:
            self._set_state(PassState.IDLE)

    def run_pass(self) -> None:
        """Ingestion trigger. Passes never overlap; a second caller waits for the first."""
        with self._pass_lock:
            t0 = time.monotonic()
            with self._status_lock:
                self._status.passes += 1
                self._status.last_started = utc_now_iso()

            try:
                progress = self.execute()
            except FeedError as e:
                self._record_failure(e.stage, e)
                previous = self.cache.read()
                logger.warning(
                    "Ingestion pass failed at %s: %s: %s (keeping snapshot from %s)",
                    e.stage, type(e).__name__, e, previous.published_at or "startup",
                )
                return
            except Exception as e:
                self._record_failure("unexpected", e)
                logger.exception("Ingestion pass crashed")
                raise

            with self._status_lock:
                self._status.last_success = progress.published_at
                self._status.last_key = progress.source_key
                self._status.last_error = ""
                self._status.last_error_stage = ""
            logger.info("Published %d stops for train %s from %s in %.1fs",
                        len(progress.stops), self.tracked.label(), progress.source_key, time.monotonic() - t0)

    def _record_failure(self, stage: str, exc: BaseException) -> None:
        with self._status_lock:
            self._status.failures += 1
            self._status.last_error = f"{type(exc).__name__}: {exc}"
            self._status.last_error_stage = stage


def start_refresh_ticker(pipeline: IngestionPipeline, interval: int, *,
                         stop: Optional[threading.Event] = None,
                         run_immediately: bool = True) -> threading.Thread:
    """
    Drive the pipeline from a daemon thread: once at start, then every `interval` seconds.

    interval <= 0 means the startup pass only.
    """
    stop = stop or threading.Event()

    def tick():
        try:
            pipeline.run_pass()
        except Exception:
            logger.error("Refresh tick failed; next attempt in %ss", interval)

    def loop():
        if run_immediately:
            tick()
        if interval <= 0:
            return
        while not stop.wait(interval):
            tick()

    t = threading.Thread(target=loop, name="refresh-ticker", daemon=True)
    t.start()
    return t
