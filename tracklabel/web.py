"""
Labeling web service.

Routes:
    GET  /                                                    labeling page
    GET  /api/features                                        declared features
    POST /api/features/<feature_id>                           declare a feature
    GET  /api/features/<feature_id>/tracks/random_untrained   next track to label
    POST /api/features/<feature_id>/tracks/<track_id>/rate/<rating>
    GET  /api/spotify_token                                   access token for in-page playback
    POST /api/shutdown                                        stop serving

Errors are returned as plain text with the status code of the TrackLabelError.
"""

from __future__ import annotations

import logging
import os
import threading
import webbrowser
from typing import Callable

from flask import Flask, jsonify
from werkzeug.serving import make_server

from tracklabel import labeling
from tracklabel.errors import TrackLabelError
from tracklabel.signals import CompletionSlot, SignalInvariantError
from tracklabel.store import CatalogStore

log = logging.getLogger("tracklabel.web")

FATAL_EXIT_CODE = 70

_TEXT = {"Content-Type": "text/plain; charset=utf-8"}

_INDEX_HTML = """<!DOCTYPE html>
<html>
<head>
<meta charset="UTF-8">
<title>tracklabel</title>
</head>
<body>
<script src="/static/data_input.js"></script>
</body>
</html>
"""


def terminate(error: BaseException) -> None:
    """Default fatal hook: a broken invariant ends the process."""
    log.critical("Invariant violated, terminating: %s", error)
    logging.shutdown()
    os._exit(FATAL_EXIT_CODE)


def install_error_handlers(app: Flask, on_fatal: Callable[[BaseException], None]) -> None:
    @app.errorhandler(TrackLabelError)
    def _report(e: TrackLabelError):
        if e.status_code >= 500:
            log.error("%s: %s", type(e).__name__, e)
        return str(e), e.status_code, _TEXT

    @app.errorhandler(SignalInvariantError)
    def _fatal(e: SignalInvariantError):
        on_fatal(e)
        return f"fatal: {e}", 500, _TEXT


def create_app(
    store: CatalogStore,
    token_provider: Callable[[], str],
    shutdown_slot: CompletionSlot,
    market: str,
    on_fatal: Callable[[BaseException], None] = terminate,
) -> Flask:
    app = Flask(__name__, static_folder="static", static_url_path="/static")
    install_error_handlers(app, on_fatal)

    @app.route("/", methods=["GET"])
    def data_input_html():
        return _INDEX_HTML, 200, {"Content-Type": "text/html; charset=utf-8"}

    @app.route("/api/features", methods=["GET"], strict_slashes=False)
    def list_features():
        return jsonify(labeling.list_features(store))

    @app.route("/api/features/<feature_id>", methods=["POST"], strict_slashes=False)
    def create_feature(feature_id: str):
        labeling.create_feature(store, feature_id)
        return "ok", 200, _TEXT

    @app.route("/api/features/<feature_id>/tracks/random_untrained", methods=["GET"])
    def random_untrained_track_for_feature(feature_id: str):
        return jsonify(labeling.next_untrained(store, feature_id, market))

    @app.route("/api/features/<feature_id>/tracks/<track_id>/rate/<rating>", methods=["POST"])
    def rate_feature_for_track(feature_id: str, track_id: str, rating: str):
        try:
            value = int(rating)
        except ValueError:
            value = rating
        labeling.record_rating(store, feature_id, track_id, value)
        return "ok", 200, _TEXT

    @app.route("/api/spotify_token", methods=["GET"])
    def spotify_token():
        return token_provider(), 200, _TEXT

    @app.route("/api/shutdown", methods=["POST"])
    def shutdown():
        shutdown_slot.fire()
        log.info("Shutdown requested")
        return "ok", 200, _TEXT

    return app


def web_interface(
    store: CatalogStore,
    token_provider: Callable[[], str],
    market: str,
    host: str = "127.0.0.1",
    port: int = 3000,
    open_browser: Callable[[str], object] = webbrowser.open,
    server_factory: Callable = make_server,
) -> None:
    """Serve the labeling UI until POST /api/shutdown, then stop gracefully."""
    slot = CompletionSlot("shutdown")
    waiter = slot.arm()
    app = create_app(store, token_provider, slot, market)

    server = server_factory(host, port, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, name="labeling-web", daemon=True)
    thread.start()
    url = f"http://{host}:{port}/"
    log.info("Labeling UI listening on %s", url)
    try:
        open_browser(url)
        waiter.wait()
    finally:
        server.shutdown()
        thread.join()
    log.info("Labeling UI stopped")
