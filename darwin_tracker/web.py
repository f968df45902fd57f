#!/usr/bin/env python3
"""Web page for darwin_tracker: a shell page plus the htmx-polled progress fragment."""

from __future__ import annotations

import logging
from html import escape

from flask import Flask, jsonify

from .cache import ProgressCache
from .models import DEFAULT_POLL_SECONDS, TrainProgress

logger = logging.getLogger(__name__)


def render_progress(progress: TrainProgress, label: str) -> str:
    html = [f"<h2>Train {escape(label)} Progress</h2>"]
    if progress.is_empty:
        html.append("<p>No progress available yet.</p>")
        return "\n".join(html)
    html.append("<ul>")
    for s in progress.stops:
        html.append(
            f"<li><strong>{escape(s.station)}</strong>: "
            f"Scheduled {escape(s.scheduled)} | Actual {escape(s.actual)} | Status: {escape(s.status)}</li>"
        )
    html.append("</ul>")
    if progress.published_at:
        html.append(f"<p><small>Updated {escape(progress.published_at)} from {escape(progress.source_key)}</small></p>")
    return "\n".join(html)


def create_app(cache: ProgressCache, pipeline=None, *, label: str = "?",
               poll_seconds: int = DEFAULT_POLL_SECONDS) -> Flask:
    app = Flask(__name__)

    @app.get("/")
    def index():
        html = ["<!DOCTYPE html><html lang='en'><head><meta charset='utf-8'>"
                "<title>Train Route Progression</title>"
                "<script src='https://unpkg.com/htmx.org@1.9.10'></script>"
                "<style>body{font-family:system-ui,Arial;margin:20px} li{margin:4px 0}</style>"
                "</head><body>"]
        html.append("<h1>Train Route Progression</h1>")
        html.append(f"<div id='train-progression' hx-get='/progress' "
                    f"hx-trigger='load, every {int(poll_seconds)}s' hx-swap='innerHTML'>")
        html.append("<p>Loading train route...</p></div>")
        html.append("</body></html>")
        return "\n".join(html)

    @app.get("/progress")
    def progress():
        logger.debug("Serving /progress")
        return render_progress(cache.read(), label)

    @app.get("/status")
    def status():
        snap = cache.read()
        body = {
            "train": label,
            "stops": len(snap.stops),
            "source_key": snap.source_key,
            "published_at": snap.published_at,
            "pipeline": pipeline.status().as_dict() if pipeline is not None else None,
        }
        return jsonify(body)

    return app


def start_web_dashboard(app: Flask, port: int, host: str = "0.0.0.0") -> None:
    app.run(host=host, port=port, debug=False, use_reloader=False, threaded=True)
