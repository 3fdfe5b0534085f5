"""
Spotify access for tracklabel.

This module handles:
1. The on-disk token cache (one file per client id), refreshed on demand
2. Building the OAuth manager used by the acquisition flow
3. Fetching the catalog: the primary playlist, saved-album tracks and audio features

Everything that talks to Spotify raises RemoteApiError on failure so callers can
abort an operation and leave the store in a resumable state.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional

import requests
import spotipy
from spotipy.cache_handler import CacheFileHandler
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from tracklabel.config import Settings
from tracklabel.errors import RemoteApiError

log = logging.getLogger("tracklabel.spotify")

# user-library-read: saved albums
# playlist-read-private: the primary playlist
# streaming / user-modify-playback-state: playback from the labeling UI
SCOPES = [
    "user-library-read",
    "playlist-read-private",
    "playlist-modify-private",
    "playlist-modify-public",
    "streaming",
    "user-read-email",
    "user-read-private",
    "user-modify-playback-state",
]

PLAYLIST_PAGE_SIZE = 100
SAVED_ALBUMS_PAGE_SIZE = 50
AUDIO_FEATURES_BATCH = 100

_REMOTE_ERRORS = (SpotifyException, SpotifyOauthError, requests.RequestException)


def token_cache(settings: Settings) -> CacheFileHandler:
    """Token store for the configured client credentials."""
    settings.token_dir.mkdir(parents=True, exist_ok=True)
    return CacheFileHandler(cache_path=str(settings.token_cache_path))


def build_auth_manager(settings: Settings, state: Optional[str] = None, cache_handler=None) -> SpotifyOAuth:
    """OAuth manager bound to the configured redirect URI and token cache."""
    return SpotifyOAuth(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirect_uri=settings.redirect_uri,
        scope=" ".join(SCOPES),
        state=state,
        cache_handler=cache_handler if cache_handler is not None else token_cache(settings),
        open_browser=False,
    )


def load_valid_token(auth_manager: SpotifyOAuth) -> Optional[Dict[str, Any]]:
    """
    Return the cached token if usable, refreshing it when expired.

    Returns None when there is no cached token, its scopes are insufficient,
    or the refresh was rejected.
    """
    token_info = auth_manager.cache_handler.get_cached_token()
    if not token_info:
        log.info("No cached Spotify token")
        return None
    try:
        token_info = auth_manager.validate_token(token_info)
    except _REMOTE_ERRORS as e:
        log.warning("Cached Spotify token could not be refreshed: %r", e)
        return None
    if not token_info or "access_token" not in token_info:
        log.info("Cached Spotify token is not valid for the requested scopes")
        return None
    return token_info


def normalize_track(track: Optional[Dict[str, Any]], album: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """
    Reduce a full or simplified Spotify track object to the stored track record.

    Returns None for local files, episodes and tracks without an id.
    """
    if not track or track.get("type", "track") != "track" or track.get("is_local"):
        return None
    track_id = track.get("id")
    if not track_id:
        return None

    album = album or track.get("album") or None
    markets = track.get("available_markets")
    if markets is None and album is not None:
        markets = album.get("available_markets")

    return {
        "id": track_id,
        "name": track.get("name", ""),
        "artists": [
            {"id": artist.get("id"), "name": artist.get("name", "")}
            for artist in track.get("artists", [])
        ],
        "available_markets": list(markets) if markets is not None else None,
        "duration_ms": track.get("duration_ms"),
        "uri": track.get("uri") or f"spotify:track:{track_id}",
        "album": {"id": album.get("id"), "name": album.get("name", "")} if album else None,
    }


class CatalogClient:
    """
    Authenticated Spotify client, narrowed to what the catalog needs.
    """

    def __init__(self, auth_manager: SpotifyOAuth, sp: Optional[spotipy.Spotify] = None):
        self.auth_manager = auth_manager
        self.sp = sp if sp is not None else spotipy.Spotify(auth_manager=auth_manager)

    def _pages(self, first_page: Optional[Dict[str, Any]]) -> Iterator[Dict[str, Any]]:
        page = first_page
        while page:
            yield page
            if not page.get("next"):
                break
            page = self.sp.next(page)

    def primary_tracks(self, playlist_id: str) -> List[Dict[str, Any]]:
        """Track objects of the primary playlist (episodes and empty slots dropped)."""
        tracks = []
        try:
            first = self.sp.playlist_items(playlist_id, limit=PLAYLIST_PAGE_SIZE, additional_types=("track",))
            for page in self._pages(first):
                for item in page.get("items", []):
                    track = item.get("track")
                    if track:
                        tracks.append(track)
        except _REMOTE_ERRORS as e:
            raise RemoteApiError(f"failed to fetch playlist {playlist_id}: {e}") from e
        log.info("Fetched %d tracks from playlist %s", len(tracks), playlist_id)
        return tracks

    def saved_album_tracks(self) -> List[Dict[str, Any]]:
        """
        Tracks of every album in the user's library.

        Album tracks come back as simplified track objects; the album is
        attached to each so the record can carry it.
        """
        tracks = []
        try:
            first = self.sp.current_user_saved_albums(limit=SAVED_ALBUMS_PAGE_SIZE)
            for page in self._pages(first):
                for item in page.get("items", []):
                    album = item.get("album") or {}
                    for track_page in self._pages(album.get("tracks")):
                        for track in track_page.get("items", []):
                            if track:
                                tracks.append(dict(track, album=album))
        except _REMOTE_ERRORS as e:
            raise RemoteApiError(f"failed to fetch saved albums: {e}") from e
        log.info("Fetched %d tracks from saved albums", len(tracks))
        return tracks

    def audio_features(self, track_ids: List[str]) -> List[Optional[Dict[str, Any]]]:
        """
        Audio features for up to 100 ids, index-aligned with ``track_ids``.
        Entries are None where Spotify has no analysis for the track.
        """
        if not track_ids:
            return []
        if len(track_ids) > AUDIO_FEATURES_BATCH:
            raise ValueError(f"at most {AUDIO_FEATURES_BATCH} ids per request, got {len(track_ids)}")
        try:
            features = self.sp.audio_features(track_ids) or []
        except _REMOTE_ERRORS as e:
            raise RemoteApiError(f"failed to fetch audio features: {e}") from e
        if len(features) != len(track_ids):
            raise RemoteApiError(
                f"audio features response has {len(features)} entries for {len(track_ids)} ids"
            )
        return features

    def access_token(self) -> str:
        """Current access token, refreshed if expired."""
        token_info = load_valid_token(self.auth_manager)
        if token_info is None:
            raise RemoteApiError("no valid Spotify token; restart to log in again")
        return token_info["access_token"]
