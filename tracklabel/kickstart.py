"""
Token acquisition: get an authenticated CatalogClient, running the interactive
OAuth authorization-code flow when the cached token is missing or unusable.

Flow:
1. Validate the cached token; return a client straight away if it works.
2. Otherwise arm a completion signal, serve /api/callback on the redirect URI's
   host/port, open the authorization URL in the browser and block.
3. The callback exchanges the code, persists the token and fires the signal.
4. Tear the listener down and go back to step 1.

There is no timeout: if the browser never calls back, acquire() blocks forever.
"""

from __future__ import annotations

import logging
import secrets
import threading
import webbrowser
from typing import Callable, Optional

import requests
from flask import Flask, request
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError
from werkzeug.serving import make_server

from tracklabel.config import Settings
from tracklabel.signals import CompletionSlot
from tracklabel.spotify_client import CatalogClient, build_auth_manager, load_valid_token
from tracklabel.web import install_error_handlers, terminate

log = logging.getLogger("tracklabel.kickstart")


def create_callback_app(
    auth_manager: SpotifyOAuth,
    slot: CompletionSlot,
    callback_path: str = "/api/callback",
    on_fatal: Callable[[BaseException], None] = terminate,
) -> Flask:
    """Flask app serving only the OAuth redirect endpoint."""
    app = Flask("tracklabel.kickstart")
    install_error_handlers(app, on_fatal)

    @app.route(callback_path, methods=["GET"])
    def auth_callback():
        code = request.args.get("code")
        state = request.args.get("state")
        error = request.args.get("error")

        if error:
            log.error("Spotify OAuth error: %s", error)
            return f"authorization failed: {error}", 400, {"Content-Type": "text/plain"}
        if not code or state is None:
            log.error("Spotify OAuth callback missing code or state")
            return "missing code or state", 400, {"Content-Type": "text/plain"}
        if auth_manager.state is not None and state != auth_manager.state:
            log.error("Spotify OAuth callback state mismatch")
            return "state mismatch", 400, {"Content-Type": "text/plain"}

        try:
            auth_manager.get_access_token(code, as_dict=False, check_cache=False)
        except (SpotifyOauthError, SpotifyException, requests.RequestException) as e:
            log.error("Requesting Spotify token failed: %r", e)
            return f"requesting token failed: {e}", 500, {"Content-Type": "text/plain"}

        log.info("Spotify token stored")
        slot.fire()
        return "ok", 200, {"Content-Type": "text/plain"}

    return app


class TokenAcquisition:
    """
    Produces an authenticated CatalogClient for the configured credentials.

    ``open_browser`` and ``server_factory`` are injectable so the flow can run
    without a real browser or socket.
    """

    def __init__(
        self,
        settings: Settings,
        open_browser: Callable[[str], object] = webbrowser.open,
        server_factory: Callable = make_server,
        cache_handler=None,
    ):
        self.settings = settings
        self.open_browser = open_browser
        self.server_factory = server_factory
        self.cache_handler = cache_handler

    def authed_client(self) -> Optional[CatalogClient]:
        auth_manager = build_auth_manager(self.settings, cache_handler=self.cache_handler)
        if load_valid_token(auth_manager) is None:
            return None
        return CatalogClient(auth_manager)

    def acquire(self) -> CatalogClient:
        attempt = 0
        while True:
            client = self.authed_client()
            if client is not None:
                log.info("Authenticated with Spotify")
                return client
            attempt += 1
            if attempt > 1:
                log.warning("Token still invalid after callback, restarting login (attempt %d)", attempt)
            self.await_callback()

    def await_callback(self) -> None:
        """Run one round of the interactive login and block until the callback fires."""
        auth_manager = build_auth_manager(
            self.settings, state=secrets.token_urlsafe(16), cache_handler=self.cache_handler
        )
        slot = CompletionSlot("auth")
        waiter = slot.arm()
        app = create_callback_app(auth_manager, slot, self.settings.callback_path)

        host, port = self.settings.callback_address
        server = self.server_factory(host, port, app, threaded=True)
        thread = threading.Thread(target=server.serve_forever, name="oauth-callback", daemon=True)
        thread.start()
        try:
            login_url = auth_manager.get_authorize_url()
            log.info("Opening Spotify login: %s", login_url)
            self.open_browser(login_url)
            waiter.wait()
        finally:
            server.shutdown()
            thread.join()
        log.info("OAuth callback listener stopped")


def acquire(settings: Settings) -> CatalogClient:
    return TokenAcquisition(settings).acquire()
