"""
Fit a per-feature classifier on labeled tracks and score the whole catalog.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import joblib
import numpy as np
import pandas as pd
from sklearn.base import ClassifierMixin
from sklearn.pipeline import Pipeline, make_pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.tree import DecisionTreeClassifier

from tracklabel.datasets import Dataset
from tracklabel.errors import InsufficientLabelsError

log = logging.getLogger("tracklabel.learning")


def default_predictor(random_state: int = 42) -> Pipeline:
    return make_pipeline(
        StandardScaler(),
        DecisionTreeClassifier(max_depth=6, min_samples_leaf=2, random_state=random_state),
    )


def fit_predictor(dataset: Dataset, estimator: Optional[ClassifierMixin] = None) -> ClassifierMixin:
    """Fit ``estimator`` (default: scaler + decision tree) on a fitting dataset."""
    if len(dataset) == 0:
        raise InsufficientLabelsError(f"no labeled tracks with audio features for {dataset.target_name!r}")
    estimator = estimator if estimator is not None else default_predictor()
    estimator.fit(dataset.records, dataset.targets)
    positives = int(np.count_nonzero(dataset.targets))
    log.info(
        "Fitted predictor for %r on %d rows (%d positive)",
        dataset.target_name, len(dataset), positives,
    )
    return estimator


def score_catalog(predictor: ClassifierMixin, dataset: Dataset) -> pd.DataFrame:
    """
    Probability of the positive class for every row of a prediction dataset,
    sorted from most to least likely.
    """
    if len(dataset) == 0:
        return pd.DataFrame({"track_id": pd.Series(dtype=object), "score": pd.Series(dtype=float)})

    proba = predictor.predict_proba(dataset.records)
    classes = list(predictor.classes_)
    if True in classes:
        scores = proba[:, classes.index(True)]
    else:
        scores = np.zeros(len(dataset))

    df = pd.DataFrame({"track_id": dataset.targets, "score": scores.astype(float)})
    return df.sort_values("score", ascending=False, kind="mergesort").reset_index(drop=True)


def save_predictor(predictor: ClassifierMixin, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(predictor, path)
    log.info("Saved predictor to %s", path)
    return path


def load_predictor(path: Union[str, Path]) -> ClassifierMixin:
    return joblib.load(Path(path))
