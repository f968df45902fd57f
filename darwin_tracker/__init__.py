#!/usr/bin/env python3
"""Darwin train tracker - live progress of one UK train from the Darwin timetable feed."""

__version__ = "0.1.0"

from .models import TimetableObject, TrainService, Location, Stop, TrainProgress, TrackedTrain
from .errors import (
    FeedError, AuthError, NotFoundError, TransientStorageError, CorruptPayloadError, MalformedFeedError,
)
from .cache import ProgressCache
from .pipeline import IngestionPipeline, PassState

__all__ = [
    "TimetableObject", "TrainService", "Location", "Stop", "TrainProgress", "TrackedTrain",
    "FeedError", "AuthError", "NotFoundError", "TransientStorageError", "CorruptPayloadError",
    "MalformedFeedError", "ProgressCache", "IngestionPipeline", "PassState",
]
