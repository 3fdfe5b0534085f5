"""
Tests for catalog population against an in-memory Spotify stand-in.

Run: pytest tracklabel/test_populate.py -v
"""

import json

import pytest

from tracklabel.conftest import make_features
from tracklabel.errors import RemoteApiError
from tracklabel.populate import collect_tracks, populate
from tracklabel.store import UNAVAILABLE


def full_track(track_id, markets=("PL",)):
    return {
        "type": "track",
        "id": track_id,
        "name": f"Song {track_id}",
        "artists": [{"id": "a1", "name": "Artist"}],
        "available_markets": list(markets),
        "duration_ms": 200000,
        "uri": f"spotify:track:{track_id}",
        "album": {"id": "al1", "name": "Album"},
        "is_local": False,
    }


class FakeSpotify:
    def __init__(self, playlist, album_tracks=(), unavailable=(), fail_after=None):
        self.playlist = list(playlist)
        self.album_tracks = list(album_tracks)
        self.unavailable = set(unavailable)
        self.fail_after = fail_after
        self.feature_requests = []

    def primary_tracks(self, playlist_id):
        return list(self.playlist)

    def saved_album_tracks(self):
        return list(self.album_tracks)

    def audio_features(self, track_ids):
        if self.fail_after is not None and len(self.feature_requests) >= self.fail_after:
            raise RemoteApiError("rate limited")
        self.feature_requests.append(list(track_ids))
        return [None if t in self.unavailable else make_features(t) for t in track_ids]


# -----------------------------------------------------------------------------
# Normalization
# -----------------------------------------------------------------------------


def test_collect_tracks_dedupes_and_drops_invalid():
    raw = [
        full_track("a"),
        None,
        dict(full_track("x"), id=None),
        dict(full_track("l"), is_local=True),
        {"type": "episode", "id": "ep"},
        full_track("b"),
        dict(full_track("a"), name="Duplicate"),
    ]
    tracks = collect_tracks(raw)
    assert [t["id"] for t in tracks] == ["a", "b"]
    assert tracks[0]["name"] == "Song a"


# -----------------------------------------------------------------------------
# Population
# -----------------------------------------------------------------------------


def test_populate_writes_details_and_features(store):
    album_track = {"id": "c", "name": "Album Song", "artists": [], "available_markets": ["PL"]}
    source = FakeSpotify([full_track("a"), full_track("b")], album_tracks=[album_track], unavailable={"b"})

    summary = populate(source, store, "playlist")

    assert summary.tracks == 3
    assert summary.features_fetched == 3
    assert summary.features_unavailable == 1
    assert json.loads(store.details.get("c"))["name"] == "Album Song"
    assert store.features.get("b") == UNAVAILABLE
    assert json.loads(store.features.get("a"))["tempo"] == 128.0


def test_populate_twice_fetches_nothing_new(store):
    source = FakeSpotify([full_track(f"t{i:03d}") for i in range(5)], unavailable={"t001"})
    populate(source, store, "playlist")
    snapshot = list(store.features.iter())
    requests_after_first = len(source.feature_requests)

    summary = populate(source, store, "playlist")

    assert summary.features_fetched == 0
    assert len(source.feature_requests) == requests_after_first
    assert list(store.features.iter()) == snapshot


def test_populate_fetches_only_new_tracks(store):
    source = FakeSpotify([full_track("a"), full_track("b")])
    populate(source, store, "playlist")
    source.playlist.append(full_track("c"))

    populate(source, store, "playlist")

    assert source.feature_requests[-1] == ["c"]


def test_populate_batches_of_100(store):
    source = FakeSpotify([full_track(f"t{i:03d}") for i in range(250)])
    populate(source, store, "playlist")
    assert [len(batch) for batch in source.feature_requests] == [100, 100, 50]
    assert len(store.features) == 250


def test_populate_overwrites_track_details(store):
    source = FakeSpotify([full_track("a")])
    populate(source, store, "playlist")
    source.playlist = [dict(full_track("a"), name="Renamed")]
    populate(source, store, "playlist")
    assert json.loads(store.details.get("a"))["name"] == "Renamed"


def test_remote_failure_leaves_resumable_state(store):
    source = FakeSpotify([full_track(f"t{i:03d}") for i in range(250)], fail_after=1)
    with pytest.raises(RemoteApiError):
        populate(source, store, "playlist")
    assert len(store.details) == 250
    assert len(store.features) == 100

    source.fail_after = None
    source.feature_requests = []
    populate(source, store, "playlist")
    assert [len(batch) for batch in source.feature_requests] == [100, 50]
    assert len(store.features) == 250
