#!/usr/bin/env python3
"""Command-line interface for darwin_tracker."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from .cache import ProgressCache
from .decoder import load_activity_labels
from .models import (
    DEFAULT_BUCKET, DEFAULT_PREFIX, DEFAULT_REGION, DEFAULT_TRAIN_ID, DEFAULT_PORT,
    DEFAULT_REFRESH_SECONDS, DEFAULT_IO_TIMEOUT, DEFAULT_POLL_SECONDS,
    TrackedTrain, utc_now_iso,
)
from .pipeline import IngestionPipeline, start_refresh_ticker
from .resolvers import LocationResolver
from .storage import ObjectLocator, S3ClientFactory, StorageCredentials, StreamFetcher
from .web import create_app, start_web_dashboard

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # boto's wire logging drowns everything else at DEBUG
    for noisy in ("botocore", "boto3", "urllib3", "s3transfer"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def upstream_credentials(environ: Optional[Mapping[str, str]] = None) -> Tuple[str, str]:
    """DARWIN_USERNAME / DARWIN_TOKEN; the process does not start without them."""
    env = os.environ if environ is None else environ
    username = (env.get("DARWIN_USERNAME") or "").strip()
    token = (env.get("DARWIN_TOKEN") or "").strip()
    if not username or not token:
        raise SystemExit("Please set DARWIN_USERNAME and DARWIN_TOKEN environment variables.")
    return username, token


def build_pipeline(args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None,
                   resolver: Optional[LocationResolver] = None) -> IngestionPipeline:
    credentials = StorageCredentials.from_env(environ)
    if not credentials.present:
        logger.warning("AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY not set; ingestion passes will fail until they are")

    factory = S3ClientFactory(credentials, region=args.region, timeout=args.timeout)
    tracked = TrackedTrain(rid=args.rid or "", uid=args.uid or "", train_id=args.train_id or "")
    labels = load_activity_labels(args.activity_table) if args.activity_table else None

    return IngestionPipeline(
        locator=ObjectLocator(factory, bucket=args.bucket, prefix=args.prefix),
        fetcher=StreamFetcher(factory, bucket=args.bucket),
        cache=ProgressCache(),
        tracked=tracked,
        station_name=resolver.name_for_tiploc if resolver else None,
        activity_labels=labels,
        tolerate_truncation=args.tolerate_truncation,
    )


def load_station_names(args: argparse.Namespace, username: str, token: str) -> Optional[LocationResolver]:
    if not args.use_corpus:
        return None
    resolver = LocationResolver()
    try:
        resolver.load_or_download(username, token, cache_path=args.corpus_cache,
                                  force=args.corpus_refresh, timeout=args.timeout)
    except Exception as e:
        logger.warning("CORPUS: failed to load (%s); stations will show as TIPLOC codes", e)
        return None
    return resolver


def run(args: argparse.Namespace) -> None:
    if args.env_file:
        load_dotenv(args.env_file)
    else:
        load_dotenv()
    configure_logging(args.verbose)

    username, token = upstream_credentials()

    try:
        pipeline = build_pipeline(args, resolver=load_station_names(args, username, token))
    except RuntimeError as e:
        raise SystemExit(f"Configuration error: {e}")

    tracked = pipeline.tracked
    print(f"[{utc_now_iso()}] Starting. tracking train={tracked.label()} rid={tracked.rid or '-'} uid={tracked.uid or '-'}")
    print(f"[{utc_now_iso()}] Feed: s3://{args.bucket}/{args.prefix} ({args.region})  refresh every {args.refresh_every}s")

    start_refresh_ticker(pipeline, args.refresh_every)

    app = create_app(pipeline.cache, pipeline, label=tracked.label(), poll_seconds=args.poll_every)
    print(f"[{utc_now_iso()}] WEB: server started at http://localhost:{args.port}")
    start_web_dashboard(app, args.port)


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Serve one train's live progress from the Darwin timetable feed on S3.")
    p.add_argument("--bucket", default=DEFAULT_BUCKET, help=f"S3 bucket holding the feed (default: {DEFAULT_BUCKET})")
    p.add_argument("--prefix", default=DEFAULT_PREFIX, help=f"Key prefix of timetable files (default: {DEFAULT_PREFIX})")
    p.add_argument("--region", default=DEFAULT_REGION, help=f"S3 region (default: {DEFAULT_REGION})")

    p.add_argument("--train-id", dest="train_id", default=DEFAULT_TRAIN_ID,
                   help=f"Headcode of the tracked train (default: {DEFAULT_TRAIN_ID})")
    p.add_argument("--rid", help="Darwin RID of the tracked train (preferred over headcode when set)")
    p.add_argument("--uid", help="CIF train uid of the tracked train")

    p.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"HTTP port (default {DEFAULT_PORT})")
    p.add_argument("--poll-every", dest="poll_every", type=int, default=DEFAULT_POLL_SECONDS,
                   help=f"Browser refresh interval for the progress fragment (default {DEFAULT_POLL_SECONDS}s)")
    p.add_argument("--refresh-every", dest="refresh_every", type=int, default=DEFAULT_REFRESH_SECONDS,
                   help=f"Re-ingest the feed every N seconds; 0 = at startup only (default {DEFAULT_REFRESH_SECONDS})")
    p.add_argument("--timeout", type=float, default=DEFAULT_IO_TIMEOUT,
                   help=f"Per-call network timeout in seconds (default {DEFAULT_IO_TIMEOUT:g})")
    p.add_argument("--tolerate-truncation", action="store_true",
                   help="Decode whatever prefix of a truncated gzip body is readable instead of failing the pass")

    p.add_argument("--corpus-cache", default="~/.cache/openraildata/CORPUSExtract.json",
                   help="Path to cached CORPUS JSON (default: ~/.cache/openraildata/CORPUSExtract.json)")
    p.add_argument("--corpus-refresh", action="store_true", help="Force re-download of CORPUS even if cache exists")
    p.add_argument("--no-corpus", dest="use_corpus", action="store_false",
                   help="Do not load CORPUS; show TIPLOC codes instead of station names")
    p.set_defaults(use_corpus=True)

    p.add_argument("--activity-table", help="JSON file of activity code -> status label overrides")
    p.add_argument("--env-file", help="Load environment variables from this file (default: ./.env if present)")
    p.add_argument("--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    try:
        run(args)
    except KeyboardInterrupt:
        print(f"\n[{utc_now_iso()}] Exiting...", file=sys.stderr)
