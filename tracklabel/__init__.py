"""
tracklabel: label Spotify tracks against binary features and build datasets for training.
"""

from tracklabel.datasets import (
    FEATURE_NAMES,
    Dataset,
    build_fitting_dataset,
    build_prediction_dataset,
)
from tracklabel.errors import (
    ConfigError,
    CorruptRecordError,
    InsufficientLabelsError,
    InvalidRatingError,
    NoMoreTracksError,
    RemoteApiError,
    StoreError,
    TrackLabelError,
    UnknownFeatureError,
)
from tracklabel.labeling import create_feature, list_features, next_untrained, record_rating
from tracklabel.signals import CompletionSlot, SignalInvariantError, Waiter
from tracklabel.store import Atomicity, CatalogStore

__all__ = [
    "FEATURE_NAMES",
    "Dataset",
    "build_fitting_dataset",
    "build_prediction_dataset",
    "ConfigError",
    "CorruptRecordError",
    "InsufficientLabelsError",
    "InvalidRatingError",
    "NoMoreTracksError",
    "RemoteApiError",
    "StoreError",
    "TrackLabelError",
    "UnknownFeatureError",
    "create_feature",
    "list_features",
    "next_untrained",
    "record_rating",
    "CompletionSlot",
    "SignalInvariantError",
    "Waiter",
    "Atomicity",
    "CatalogStore",
]
