#!/usr/bin/env python3
"""In-memory holder for the latest published TrainProgress."""

from __future__ import annotations

import threading
from typing import Optional

from .models import TrainProgress


class ProgressCache:
    """
    Single cell shared by the ingestion pass (sole writer) and the web handlers (readers).

    Snapshots are frozen, so publish is a reference swap and read hands out the shared
    object. The lock covers only the swap/load, never a pass.
    """

    def __init__(self, initial: Optional[TrainProgress] = None) -> None:
        self._lock = threading.Lock()
        self._snapshot = initial if initial is not None else TrainProgress()
        self._version = 0

    def publish(self, snapshot: TrainProgress) -> None:
        if not isinstance(snapshot, TrainProgress):
            raise TypeError(f"expected TrainProgress, got {type(snapshot).__name__}")
        with self._lock:
            self._snapshot = snapshot
            self._version += 1

    def read(self) -> TrainProgress:
        with self._lock:
            return self._snapshot

    @property
    def version(self) -> int:
        """Number of publishes so far."""
        with self._lock:
            return self._version
