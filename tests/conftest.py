"""Shared fixtures: in-memory feeds, gzip bodies and close-counting streams."""

import gzip
import io
from datetime import datetime, timedelta, timezone

import pytest

PUSH_PORT_NS = "http://www.thalesgroup.com/rtti/PushPort/v16"


class CountingStream(io.BytesIO):
    """BytesIO that remembers how many times close() was called."""

    def __init__(self, data=b""):
        super().__init__(data)
        self.close_calls = 0

    def close(self):
        self.close_calls += 1
        super().close()


def ts_xml(rid, uid, trainid, locations, ns=PUSH_PORT_NS):
    locs = []
    for tpl, pta, ata, act in locations:
        locs.append(f'<Location tpl="{tpl}" pta="{pta}" ata="{ata}" act="{act}"/>')
    return f'<TS xmlns="{ns}" rid="{rid}" uid="{uid}" trainid="{trainid}">{"".join(locs)}</TS>'


def pport_xml(*services, ns=PUSH_PORT_NS):
    return f'<?xml version="1.0" encoding="UTF-8"?><Pport xmlns="{ns}" ts="2026-10-18T08:00:00">{"".join(services)}</Pport>'


@pytest.fixture
def counting_stream():
    return CountingStream


@pytest.fixture
def make_ts():
    return ts_xml


@pytest.fixture
def make_pport():
    return pport_xml


@pytest.fixture
def gz():
    def _gz(text):
        data = text.encode("utf-8") if isinstance(text, str) else text
        return gzip.compress(data)
    return _gz


@pytest.fixture
def tracked_feed():
    """The three-stop feed for train 2B15 plus an unrelated service."""
    return pport_xml(
        ts_xml("202610188000001", "Y00001", "1A01", [("PADTON", "07:00", "07:00", "TB")]),
        ts_xml("202610187654321", "C12345", "2B15", [
            ("X", "08:00", "08:01", "on time"),
            ("Y", "08:10", "", "forecast"),
            ("Z", "", "", "cancelled"),
        ]),
    )


@pytest.fixture
def listing():
    base = datetime(2026, 10, 18, 8, 0, tzinfo=timezone.utc)

    def _listing(*pairs):
        return [{"Key": k, "LastModified": base + timedelta(seconds=t)} for k, t in pairs]
    return _listing
