#!/usr/bin/env python3
"""TIPLOC -> station name lookup backed by Network Rail CORPUS reference data."""

from __future__ import annotations

import base64
import gzip
import json
import logging
import os
import pathlib
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError

from .models import CORPUS_URL

logger = logging.getLogger(__name__)

NR_HOST = "publicdatafeeds.networkrail.co.uk"


class NoRedirect(urllib.request.HTTPRedirectHandler):
    """Stop urllib auto-following redirects so we can manage headers safely."""
    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


class LocationResolver:
    """
    Loads a CORPUSExtract-style JSON into a TIPLOC -> station name map.

    Unknown codes resolve to "" so callers can fall back to the raw TIPLOC.
    """

    def __init__(self, tiploc_to_name: Optional[Dict[str, str]] = None) -> None:
        self.tiploc_to_name: Dict[str, str] = dict(tiploc_to_name or {})

    def load_or_download(
        self,
        username: str,
        password: str,
        cache_path: str,
        force: bool = False,
        timeout: float = 60.0,
    ) -> None:
        path = pathlib.Path(cache_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)

        if force or (not path.exists()):
            logger.info("CORPUS: downloading to %s ...", path)
            self._download_corpus(username, password, str(path), timeout=timeout)
        else:
            logger.info("CORPUS: using cached file %s", path)

        self.load_file(str(path))

    def _download_corpus(self, username: str, password: str, out_file: str, timeout: float = 60.0) -> None:
        """
        Download CORPUS via Network Rail SupportingFileAuthenticate.

        The first hop needs Basic Auth; the redirect target is a pre-signed S3 URL that
        rejects an Authorization header, so redirects are followed by hand.
        """

        def is_presigned_aws(url: str) -> bool:
            q = urllib.parse.urlparse(url).query
            return "X-Amz-Algorithm=" in q or "X-Amz-Signature=" in q

        auth = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        opener = urllib.request.build_opener(NoRedirect())

        url = CORPUS_URL
        raw = b""
        encoding = ""

        for _hop in range(8):
            host = (urllib.parse.urlparse(url).hostname or "").lower()
            headers = {
                "User-Agent": "darwin_tracker/0.1 (+python urllib)",
                "Accept": "*/*",
                "Accept-Encoding": "gzip",
            }
            if host == NR_HOST and not is_presigned_aws(url):
                headers["Authorization"] = f"Basic {auth}"

            req = urllib.request.Request(url, headers=headers)
            try:
                with opener.open(req, timeout=timeout) as resp:
                    raw = resp.read()
                    encoding = (resp.headers.get("Content-Encoding") or "").lower().strip()
                break
            except HTTPError as e:
                if e.code in (301, 302, 303, 307, 308):
                    loc = e.headers.get("Location")
                    if not loc:
                        raise RuntimeError(f"CORPUS redirect ({e.code}) without Location header") from e
                    url = urllib.parse.urljoin(url, loc)
                    continue
                raise RuntimeError(f"CORPUS download HTTP error: {e.code} {e.reason}") from e
            except URLError as e:
                raise RuntimeError(f"CORPUS download failed: {e}") from e
        else:
            raise RuntimeError("CORPUS download failed: too many redirects")

        if encoding == "gzip" or raw[:2] == b"\x1f\x8b":
            raw = gzip.decompress(raw)

        tmp = out_file + ".tmp"
        with open(tmp, "wb") as f:
            f.write(raw)
        os.replace(tmp, out_file)

    def load_file(self, filename: str) -> None:
        with open(filename, "rb") as f:
            raw = f.read()
        try:
            payload = json.loads(raw.decode("utf-8", errors="replace"))
        except ValueError as e:
            raise RuntimeError(f"CORPUS parse failed (not valid JSON?): {e}") from e
        self.load_rows(payload)

    def load_rows(self, payload: Any) -> None:
        # CORPUS is either a bare list of rows or a wrapper like {"TIPLOCDATA": [...]}
        rows: Optional[List[Any]] = None
        if isinstance(payload, list):
            rows = payload
        elif isinstance(payload, dict):
            for key in ("TIPLOCDATA", "tiplocdata", "locations", "data"):
                v = payload.get(key)
                if isinstance(v, list):
                    rows = v
                    break
            if rows is None and len(payload) == 1:
                v = next(iter(payload.values()))
                if isinstance(v, list):
                    rows = v

        if rows is None:
            raise RuntimeError(
                f"CORPUS unexpected format: expected list or wrapper dict containing a list; got {type(payload)}"
            )

        tiploc: Dict[str, str] = {}
        for row in rows:
            if not isinstance(row, dict):
                continue
            name = (row.get("NLCDESC") or row.get("NLCDESC16") or "").strip()
            if not name:
                continue
            tip = (row.get("TIPLOC") or "").strip().upper()
            if tip and tip not in tiploc:
                tiploc[tip] = name

        self.tiploc_to_name = tiploc
        logger.info("CORPUS loaded: %d TIPLOC mappings", len(tiploc))

    def name_for_tiploc(self, code: str) -> str:
        return self.tiploc_to_name.get((code or "").strip().upper(), "")
