#!/usr/bin/env python3
"""Darwin Push Port XML decoding and projection onto the tracked train."""

from __future__ import annotations

import json
import logging
import pathlib
import xml.etree.ElementTree as ET
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional

from .errors import MalformedFeedError
from .models import Location, Stop, TrackedTrain, TrainProgress, TrainService, utc_now_iso

logger = logging.getLogger(__name__)

# TS = train status (Location children); Journey = timetable (calling-point children)
SERVICE_TAGS = {"TS", "Journey"}
TS_LOCATION_TAGS = {"Location"}
JOURNEY_CALLING_TAGS = {"OR", "IP", "DT"}

DEFAULT_ACTIVITY_LABELS: Dict[str, str] = {
    # Darwin / CIF activity codes
    "TB": "Train begins",
    "TF": "Train finishes",
    "T": "Stops",
    "D": "Set down only",
    "U": "Pick up only",
    "R": "Request stop",
    "N": "Unadvertised stop",
    "OP": "Operational stop",
    "A": "Stops or passes",
    "-D": "Detach",
    "-U": "Attach",
    "RM": "Reverses",
    "C": "Crew change",
    # textual states some feeds carry instead of codes
    "on time": "On time",
    "forecast": "Expected",
    "arrived": "Arrived",
    "late": "Late",
    "delayed": "Delayed",
    "cancelled": "Cancelled",
}


def local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _attr(elem: ET.Element, *names: str) -> str:
    for n in names:
        v = elem.get(n)
        if v:
            return v.strip()
    return ""


def _location_from(elem: ET.Element) -> Optional[Location]:
    tiploc = _attr(elem, "tpl").upper()
    if not tiploc:
        return None
    actual = _attr(elem, "ata")
    if not actual:
        # Push Port TS nests actual times: <Location ...><arr at="08:01"/></Location>
        for child in elem:
            if local_name(child.tag) == "arr":
                actual = _attr(child, "at")
                break
    return Location(
        tiploc=tiploc,
        scheduled_arrival=_attr(elem, "pta"),
        actual_arrival=actual,
        activity_code=(elem.get("act") or "").rstrip(),
        cancelled=_attr(elem, "can", "isCancelled").lower() == "true",
    )


def _service_from(elem: ET.Element, kind: str) -> TrainService:
    wanted = TS_LOCATION_TAGS if kind == "TS" else JOURNEY_CALLING_TAGS
    locations: List[Location] = []
    for child in elem:
        if local_name(child.tag) not in wanted:
            continue
        loc = _location_from(child)
        if loc:
            locations.append(loc)
    return TrainService(
        rid=_attr(elem, "rid"),
        uid=_attr(elem, "uid"),
        train_id=_attr(elem, "trainid", "trainId"),
        locations=tuple(locations),
    )


def iter_services(stream: Any) -> Iterator[TrainService]:
    """
    Stream TrainService records out of a decoded feed, in document order.

    Element names are matched without their namespace so every Push Port schema version
    decodes the same way. Finished elements outside a service are detached from their
    parent, so memory stays flat on full-day timetables.
    """
    stack: List[ET.Element] = []
    open_services = 0
    try:
        for event, elem in ET.iterparse(stream, events=("start", "end")):
            kind = local_name(elem.tag)
            if event == "start":
                stack.append(elem)
                if kind in SERVICE_TAGS:
                    open_services += 1
                continue

            stack.pop()
            if kind in SERVICE_TAGS:
                open_services -= 1
                yield _service_from(elem, kind)
                elem.clear()
            elif open_services:
                # child of a service still being read
                continue
            if stack:
                stack[-1].remove(elem)
    except (ET.ParseError, UnicodeDecodeError, LookupError, ValueError) as e:
        # expat reports an unknown declared encoding as LookupError, a multi-byte one as ValueError
        raise MalformedFeedError(f"feed XML parse failed: {type(e).__name__}: {e}") from e


def decode(stream: Any) -> List[TrainService]:
    return list(iter_services(stream))


def status_label(loc: Location, labels: Mapping[str, str]) -> str:
    if loc.cancelled:
        return labels.get("cancelled", "Cancelled")

    code = (loc.activity_code or "").strip()
    if not code:
        return ""
    hit = labels.get(code) or labels.get(code.lower())
    if hit:
        return hit

    # Darwin packs several two-character codes into one field, e.g. "T -D"
    raw = loc.activity_code
    parts = [raw[i:i + 2].strip() for i in range(0, len(raw), 2)]
    parts = [p for p in parts if p]
    if parts and all(p in labels for p in parts):
        return ", ".join(labels[p] for p in parts)
    return code


def project(
    services: Iterable[TrainService],
    tracked: TrackedTrain,
    *,
    station_name: Optional[Callable[[str], str]] = None,
    activity_labels: Optional[Mapping[str, str]] = None,
    source_key: str = "",
) -> TrainProgress:
    """
    Build the tracked train's TrainProgress from a decoded service sequence.

    The whole sequence is consumed even after a match so that a parse failure anywhere in
    the document still aborts the pass. No matching service gives an empty snapshot.
    """
    labels = DEFAULT_ACTIVITY_LABELS if activity_labels is None else activity_labels
    best: Optional[TrainService] = None
    best_rank: Optional[int] = None
    scanned = 0

    for svc in services:
        scanned += 1
        rank = tracked.match_rank(svc)
        if rank is None:
            continue
        if best_rank is None or rank < best_rank:
            best, best_rank = svc, rank

    if best is None:
        logger.info("No service for train %s among %d decoded services", tracked.label(), scanned)
        return TrainProgress(stops=(), source_key=source_key, published_at=utc_now_iso())

    logger.info("Matched train %s: rid=%s uid=%s (%d locations, %d services scanned)",
                tracked.label(), best.rid, best.uid, len(best.locations), scanned)

    stops = []
    for loc in best.locations:
        name = station_name(loc.tiploc) if station_name else ""
        stops.append(Stop(
            station=name or loc.tiploc,
            scheduled=loc.scheduled_arrival or "",
            actual=loc.actual_arrival or "",
            status=status_label(loc, labels),
        ))
    return TrainProgress(stops=tuple(stops), source_key=source_key, published_at=utc_now_iso())


def load_activity_labels(path: str) -> Dict[str, str]:
    """Read a JSON object of code -> label; entries override the built-in table."""
    p = pathlib.Path(path).expanduser()
    try:
        payload = json.loads(p.read_text(encoding="utf-8"))
    except Exception as e:
        raise RuntimeError(f"activity table {p} unreadable: {e}") from e
    if not isinstance(payload, dict):
        raise RuntimeError(f"activity table {p}: expected a JSON object, got {type(payload).__name__}")

    labels = dict(DEFAULT_ACTIVITY_LABELS)
    for code, label in payload.items():
        labels[str(code)] = str(label)
    return labels
