import json

import pytest

from tracklabel.store import UNAVAILABLE, CatalogStore

MISSING = object()


def make_track(track_id, markets=("PL", "DE"), name=None):
    return {
        "id": track_id,
        "name": name or f"Song {track_id}",
        "artists": [{"id": f"a-{track_id}", "name": f"Artist {track_id}"}],
        "available_markets": list(markets) if markets is not None else None,
        "duration_ms": 180000,
        "uri": f"spotify:track:{track_id}",
        "album": None,
    }


def make_features(track_id, **overrides):
    features = {
        "id": track_id,
        "acousticness": 0.1,
        "danceability": 0.7,
        "energy": 0.8,
        "instrumentalness": 0.0,
        "key": 5,
        "liveness": 0.12,
        "loudness": -5.5,
        "speechiness": 0.04,
        "tempo": 128.0,
        "time_signature": 4,
        "valence": 0.6,
        "mode": 1,
        "duration_ms": 180000,
    }
    features.update(overrides)
    return features


@pytest.fixture
def store():
    s = CatalogStore()
    yield s
    s.close()


@pytest.fixture
def seed(store):
    """
    seed(track_id, markets=..., features=...) writes a track record and its
    feature vector. features="unavailable" writes the unavailable marker,
    features=MISSING writes no feature vector at all.
    """

    def _seed(track_id, markets=("PL", "DE"), features=None):
        store.details.insert(track_id, json.dumps(make_track(track_id, markets)).encode())
        if features is MISSING:
            return
        if features == "unavailable":
            store.features.insert(track_id, UNAVAILABLE)
            return
        if features is None:
            features = make_features(track_id)
        store.features.insert(track_id, json.dumps(features).encode())

    return _seed
