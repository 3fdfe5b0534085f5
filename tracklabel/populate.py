"""
Catalog population: pull the user's tracks from Spotify into the catalog store.

Track records are rewritten on every run. Audio features are fetched only for
tracks that have no feature-vector record yet, so the cost of a run is
proportional to the number of new tracks.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol

from tracklabel.spotify_client import AUDIO_FEATURES_BATCH, normalize_track
from tracklabel.store import UNAVAILABLE, Atomicity, CatalogStore

log = logging.getLogger("tracklabel.populate")


class TrackSource(Protocol):
    def primary_tracks(self, playlist_id: str) -> List[Dict[str, Any]]: ...

    def saved_album_tracks(self) -> List[Dict[str, Any]]: ...

    def audio_features(self, track_ids: List[str]) -> List[Optional[Dict[str, Any]]]: ...


@dataclass
class PopulateSummary:
    tracks: int = 0
    features_fetched: int = 0
    features_unavailable: int = 0


def collect_tracks(raw_tracks: Iterable[Optional[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Normalize raw Spotify tracks, dropping id-less ones and duplicates (first wins)."""
    seen = {}
    for raw in raw_tracks:
        record = normalize_track(raw)
        if record is not None and record["id"] not in seen:
            seen[record["id"]] = record
    return list(seen.values())


def _batches(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def populate(client: TrackSource, store: CatalogStore, playlist_id: str) -> PopulateSummary:
    """
    Upsert the primary playlist and saved-album tracks plus any missing audio features.

    Remote failures propagate as RemoteApiError; whatever batches were already
    written stay written and the next run picks up from there.
    """
    raw = client.primary_tracks(playlist_id) + client.saved_album_tracks()
    tracks = collect_tracks(raw)
    summary = PopulateSummary()

    summary.tracks = store.details.insert_batch(
        ((t["id"], json.dumps(t).encode("utf-8")) for t in tracks),
        atomicity=Atomicity.BATCH,
    )
    log.info("Stored %d track records", summary.tracks)

    features_tree = store.features
    ids = [t["id"] for t in tracks]
    for batch in _batches(ids, AUDIO_FEATURES_BATCH):
        missing = features_tree.missing_keys(batch)
        if not missing:
            continue
        features = client.audio_features(missing)
        rows = []
        for track_id, feature in zip(missing, features):
            if feature is None:
                rows.append((track_id, UNAVAILABLE))
                summary.features_unavailable += 1
            else:
                rows.append((track_id, json.dumps(feature).encode("utf-8")))
        features_tree.insert_batch(rows, atomicity=Atomicity.BATCH)
        summary.features_fetched += len(missing)
        log.info("Fetched audio features for %d new tracks", len(missing))

    log.info(
        "Population done: %d tracks, %d feature vectors fetched (%d unavailable)",
        summary.tracks, summary.features_fetched, summary.features_unavailable,
    )
    return summary
