#!/usr/bin/env python3
"""Data models and helper functions for darwin_tracker."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple


# Constants
DEFAULT_BUCKET = "darwin.xmltimetable"
DEFAULT_PREFIX = "PPTimetable/"
DEFAULT_REGION = "eu-west-1"

DEFAULT_TRAIN_ID = "2B15"
DEFAULT_PORT = 8081
DEFAULT_POLL_SECONDS = 30
DEFAULT_REFRESH_SECONDS = 300
DEFAULT_IO_TIMEOUT = 30.0

CORPUS_URL = "https://publicdatafeeds.networkrail.co.uk/ntrod/SupportingFileAuthenticate?type=CORPUS"


# Helper functions
def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def mask(secret: str, keep: int = 4) -> str:
    s = secret or ""
    if len(s) <= keep:
        return "*" * len(s)
    return s[:keep] + "*" * (len(s) - keep)


# Dataclasses
@dataclass(frozen=True)
class TimetableObject:
    key: str
    last_modified: datetime

    def sort_key(self) -> Tuple[datetime, str]:
        # Newest wins; equal timestamps fall back to the lexicographically largest key.
        return (self.last_modified, self.key)


@dataclass(frozen=True)
class Location:
    tiploc: str = ""
    scheduled_arrival: str = ""      # pta, HH:MM (may be blank)
    actual_arrival: str = ""         # ata, HH:MM (may be blank)
    activity_code: str = ""
    cancelled: bool = False


@dataclass(frozen=True)
class TrainService:
    rid: str = ""                    # Darwin RTTI train id (unique per run)
    uid: str = ""                    # CIF train uid
    train_id: str = ""               # headcode / reporting number
    locations: Tuple[Location, ...] = ()


@dataclass(frozen=True)
class Stop:
    station: str = ""
    scheduled: str = ""
    actual: str = ""
    status: str = ""


@dataclass(frozen=True)
class TrainProgress:
    """One train's stop-by-stop view. Replaced whole, never edited in place."""

    stops: Tuple[Stop, ...] = ()
    source_key: str = ""             # object key the snapshot was decoded from
    published_at: str = ""           # UTC ISO time of publish (blank for the initial snapshot)

    @property
    def is_empty(self) -> bool:
        return not self.stops


@dataclass(frozen=True)
class TrackedTrain:
    """Identifiers of the monitored service; blank fields are ignored."""

    rid: str = ""
    uid: str = ""
    train_id: str = ""

    def match_rank(self, service: TrainService) -> Optional[int]:
        """Lower is better: 0 = RID match, 1 = UID match, 2 = headcode match."""
        if self.rid and service.rid == self.rid:
            return 0
        if self.uid and service.uid.strip() == self.uid.strip():
            return 1
        if self.train_id and service.train_id == self.train_id:
            return 2
        return None

    def label(self) -> str:
        return self.train_id or self.uid or self.rid or "?"


@dataclass
class PassStatus:
    passes: int = 0
    failures: int = 0
    state: str = "idle"
    last_started: str = ""
    last_success: str = ""
    last_key: str = ""
    last_error: str = ""
    last_error_stage: str = ""

    def as_dict(self) -> dict:
        return {
            "passes": self.passes,
            "failures": self.failures,
            "state": self.state,
            "last_started": self.last_started,
            "last_success": self.last_success,
            "last_key": self.last_key,
            "last_error": self.last_error,
            "last_error_stage": self.last_error_stage,
        }
