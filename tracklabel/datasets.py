"""
Dataset builder: project the catalog store into numeric matrices.

Two datasets:
1. Fitting: one row per labeled track with an available feature vector,
   target = rating byte > 0.
2. Prediction: one row per track with an available feature vector,
   tagged with the track id. Labels are ignored.

Rows always have the 11 columns in FEATURE_NAMES order. Any malformed record
aborts the build with CorruptRecordError; partial datasets are never returned.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import numpy as np
import pandas as pd

from tracklabel.errors import CorruptRecordError
from tracklabel.store import CatalogStore

log = logging.getLogger("tracklabel.datasets")

FEATURE_NAMES: Tuple[str, ...] = (
    "acousticness",
    "danceability",
    "energy",
    "instrumentalness",
    "key",
    "liveness",
    "loudness",
    "speechiness",
    "tempo",
    "time_signature",
    "valence",
)


@dataclass
class Dataset:
    """Records matrix (n x 11, float32) with index-aligned targets."""

    records: np.ndarray
    targets: np.ndarray
    target_name: str
    feature_names: Tuple[str, ...] = FEATURE_NAMES

    def __len__(self) -> int:
        return int(self.records.shape[0])

    @property
    def dim(self) -> Tuple[int, int]:
        return tuple(self.records.shape)

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame(self.records, columns=list(self.feature_names))
        df[self.target_name] = self.targets
        return df


def feature_row(track_id: str, raw: bytes) -> Optional[List[float]]:
    """
    Decode one stored feature-vector record into a row.

    Returns None for the "unavailable" marker.
    """
    try:
        features: Any = json.loads(raw)
    except ValueError as e:
        raise CorruptRecordError(f"feature vector of {track_id!r} is not valid JSON: {e}") from e
    if features is None:
        return None
    if not isinstance(features, dict):
        raise CorruptRecordError(f"feature vector of {track_id!r} is not an object")
    try:
        return [float(features[name]) for name in FEATURE_NAMES]
    except (KeyError, TypeError, ValueError) as e:
        raise CorruptRecordError(f"feature vector of {track_id!r} is malformed: {e!r}") from e


def _matrix(rows: List[List[float]]) -> np.ndarray:
    return np.asarray(rows, dtype=np.float32).reshape(len(rows), len(FEATURE_NAMES))


def build_fitting_dataset(store: CatalogStore, feature_name: str) -> Dataset:
    labels = store.label_tree(feature_name)
    features = store.features
    rows: List[List[float]] = []
    targets: List[bool] = []
    for track_id, rating in labels.iter():
        raw = features.get(track_id)
        if raw is None:
            continue
        row = feature_row(track_id, raw)
        if row is None:
            continue
        if len(rating) != 1:
            raise CorruptRecordError(f"label of {track_id!r} for {feature_name!r} is {len(rating)} bytes")
        rows.append(row)
        targets.append(rating[0] > 0)

    dataset = Dataset(_matrix(rows), np.asarray(targets, dtype=bool), target_name=feature_name)
    log.info("Fitting dataset for %r: dim=%s", feature_name, dataset.dim)
    return dataset


def build_prediction_dataset(store: CatalogStore) -> Dataset:
    rows: List[List[float]] = []
    track_ids: List[str] = []
    for track_id, raw in store.features.iter():
        row = feature_row(track_id, raw)
        if row is None:
            continue
        rows.append(row)
        track_ids.append(track_id)

    dataset = Dataset(_matrix(rows), np.asarray(track_ids, dtype=object), target_name="track_id")
    log.info("Prediction dataset: dim=%s", dataset.dim)
    return dataset
