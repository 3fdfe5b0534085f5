"""
Labeling operations: feature directory, next-track selection and rating.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from tracklabel.errors import CorruptRecordError, InvalidRatingError, NoMoreTracksError
from tracklabel.store import UNAVAILABLE, CatalogStore

log = logging.getLogger("tracklabel.labeling")


def list_features(store: CatalogStore) -> List[str]:
    return store.declared_features()


def create_feature(store: CatalogStore, feature_name: str) -> None:
    store.declare_feature(feature_name)


def _available_in(details: Dict[str, Any], market: str) -> bool:
    markets = details.get("available_markets")
    return bool(markets) and market in markets


def next_untrained(store: CatalogStore, feature_name: str, market: str) -> Dict[str, Any]:
    """
    First track, in store order, that is not yet labeled for ``feature_name``,
    has an available feature vector and is playable in ``market``.

    Raises NoMoreTracksError when every track is filtered out.
    """
    labels = store.label_tree(feature_name)
    features = store.features
    for track_id, raw in store.details.iter():
        if labels.contains_key(track_id):
            continue
        vector = features.get(track_id)
        if vector is None or vector == UNAVAILABLE:
            continue
        try:
            details = json.loads(raw)
        except ValueError as e:
            raise CorruptRecordError(f"track record {track_id!r} is not valid JSON: {e}") from e
        if not _available_in(details, market):
            continue
        return details
    log.info("No untrained tracks left for feature %r", feature_name)
    raise NoMoreTracksError()


def record_rating(store: CatalogStore, feature_name: str, track_id: str, rating: int) -> None:
    """Store ``rating`` (0-255) for the track under the feature. Last write wins."""
    if isinstance(rating, bool) or not isinstance(rating, int) or not 0 <= rating <= 255:
        raise InvalidRatingError(f"rating must be an integer between 0 and 255, got {rating!r}")
    store.label_tree(feature_name).insert(track_id, bytes([rating]))
    log.debug("Rated %s as %d for %r", track_id, rating, feature_name)
