"""
Tests for the OAuth token acquisition flow, with no browser and no sockets.

Run: pytest tracklabel/test_kickstart.py -v
"""

import threading
import time
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from tracklabel.config import Settings
from tracklabel.kickstart import TokenAcquisition, create_callback_app
from tracklabel.signals import CompletionSlot
from tracklabel.spotify_client import SCOPES, CatalogClient


def token(expires_in=3600, scope=None):
    return {
        "access_token": "fresh-token",
        "token_type": "Bearer",
        "expires_in": expires_in,
        "refresh_token": "refresh",
        "scope": scope if scope is not None else " ".join(SCOPES),
        "expires_at": int(time.time()) + expires_in,
    }


@pytest.fixture
def settings(tmp_path):
    return Settings(client_id="cid", client_secret="secret", token_dir=tmp_path)


class FakeServer:
    """Blocks in serve_forever until shutdown, like werkzeug's BaseWSGIServer."""

    def __init__(self, host, port, app, threaded=True):
        self.host, self.port, self.app = host, port, app
        self._stopped = threading.Event()
        self.shutdown_calls = 0

    def serve_forever(self):
        self._stopped.wait()

    def shutdown(self):
        self.shutdown_calls += 1
        self._stopped.set()


class FakeBrowser:
    """Follows the authorization URL by calling the local callback with the same state."""

    def __init__(self, servers, code="auth-code", state_override=None):
        self.servers = servers
        self.code = code
        self.state_override = state_override
        self.urls = []
        self.responses = []

    def __call__(self, url):
        self.urls.append(url)
        state = self.state_override or parse_qs(urlparse(url).query)["state"][0]
        resp = self.servers[-1].app.test_client().get(
            "/api/callback", query_string={"code": self.code, "state": state}
        )
        self.responses.append(resp)


# -----------------------------------------------------------------------------
# Cached token
# -----------------------------------------------------------------------------


def test_valid_cached_token_skips_login(settings):
    cache = MemoryCacheHandler(token_info=token())
    browser = Mock()
    flow = TokenAcquisition(settings, open_browser=browser, cache_handler=cache)

    client = flow.acquire()

    assert isinstance(client, CatalogClient)
    assert client.access_token() == "fresh-token"
    browser.assert_not_called()


def test_token_with_missing_scopes_is_not_valid(settings):
    cache = MemoryCacheHandler(token_info=token(scope="user-library-read"))
    flow = TokenAcquisition(settings, cache_handler=cache)
    assert flow.authed_client() is None


def test_failed_refresh_is_not_valid(settings):
    cache = MemoryCacheHandler(token_info=token(expires_in=-10))
    flow = TokenAcquisition(settings, cache_handler=cache)
    with patch.object(SpotifyOAuth, "refresh_access_token", side_effect=SpotifyOauthError("revoked")):
        assert flow.authed_client() is None


# -----------------------------------------------------------------------------
# Interactive flow
# -----------------------------------------------------------------------------


def test_login_flow_stores_token_and_returns_client(settings):
    cache = MemoryCacheHandler()
    servers = []

    def factory(host, port, app, threaded=True):
        servers.append(FakeServer(host, port, app, threaded))
        return servers[-1]

    def exchange(self, code, as_dict=False, check_cache=False):
        assert code == "auth-code"
        self.cache_handler.save_token_to_cache(token())
        return "fresh-token"

    browser = FakeBrowser(servers)
    flow = TokenAcquisition(settings, open_browser=browser, server_factory=factory, cache_handler=cache)
    with patch.object(SpotifyOAuth, "get_access_token", autospec=True, side_effect=exchange):
        client = flow.acquire()

    assert client.access_token() == "fresh-token"
    assert len(browser.urls) == 1
    assert browser.responses[0].data == b"ok"
    assert (servers[0].host, servers[0].port) == ("127.0.0.1", 3000)
    assert servers[0].shutdown_calls == 1


def test_login_flow_restarts_when_token_still_invalid(settings):
    cache = MemoryCacheHandler()
    servers = []
    exchanges = []

    def factory(host, port, app, threaded=True):
        servers.append(FakeServer(host, port, app, threaded))
        return servers[-1]

    def exchange(self, code, as_dict=False, check_cache=False):
        exchanges.append(code)
        # first exchange yields a token lacking scopes, second one is good
        scope = "user-library-read" if len(exchanges) == 1 else None
        self.cache_handler.save_token_to_cache(token(scope=scope))
        return "fresh-token"

    browser = FakeBrowser(servers)
    flow = TokenAcquisition(settings, open_browser=browser, server_factory=factory, cache_handler=cache)
    with patch.object(SpotifyOAuth, "get_access_token", autospec=True, side_effect=exchange):
        flow.acquire()

    assert len(exchanges) == 2
    assert len(servers) == 2
    assert all(s.shutdown_calls == 1 for s in servers)


# -----------------------------------------------------------------------------
# Callback handler
# -----------------------------------------------------------------------------


def test_callback_state_mismatch_does_not_fire():
    slot = CompletionSlot("auth")
    slot.arm()
    auth_manager = Mock(state="expected")
    client = create_callback_app(auth_manager, slot).test_client()

    resp = client.get("/api/callback", query_string={"code": "c", "state": "forged"})

    assert resp.status_code == 400
    assert slot.pending
    auth_manager.get_access_token.assert_not_called()


def test_callback_exchange_failure_does_not_fire():
    slot = CompletionSlot("auth")
    slot.arm()
    auth_manager = Mock(state="s")
    auth_manager.get_access_token.side_effect = SpotifyOauthError("invalid_grant")
    client = create_callback_app(auth_manager, slot).test_client()

    resp = client.get("/api/callback", query_string={"code": "c", "state": "s"})

    assert resp.status_code == 500
    assert b"requesting token failed" in resp.data
    assert slot.pending


def test_callback_missing_code():
    slot = CompletionSlot("auth")
    slot.arm()
    client = create_callback_app(Mock(state=None), slot).test_client()
    assert client.get("/api/callback").status_code == 400
    assert slot.pending


def test_second_callback_is_fatal():
    slot = CompletionSlot("auth")
    waiter = slot.arm()
    fatal = []
    auth_manager = Mock(state="s")
    client = create_callback_app(auth_manager, slot, on_fatal=fatal.append).test_client()

    first = client.get("/api/callback", query_string={"code": "c", "state": "s"})
    second = client.get("/api/callback", query_string={"code": "c", "state": "s"})

    assert first.status_code == 200
    assert waiter.is_set()
    assert second.status_code == 500
    assert len(fatal) == 1
