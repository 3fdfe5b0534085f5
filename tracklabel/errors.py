"""
Error taxonomy for tracklabel.

Every store and remote-API failure is reported as a TrackLabelError so the web
service can render it as a plain-text response with a fitting status code.
"""

from __future__ import annotations

# -----------------------------------------------------------------------------
# Report type
# -----------------------------------------------------------------------------


class TrackLabelError(Exception):
    """Base error report; ``status_code`` is used when rendered over HTTP."""

    status_code = 500


# -----------------------------------------------------------------------------
# Infrastructure errors
# -----------------------------------------------------------------------------


class StoreError(TrackLabelError):
    """The catalog store could not complete an operation."""


class CorruptRecordError(StoreError):
    """A stored record could not be deserialized (schema drift or corruption)."""


class RemoteApiError(TrackLabelError):
    """Spotify API call failed (network, rate limit, auth)."""

    status_code = 502


# -----------------------------------------------------------------------------
# User-input errors
# -----------------------------------------------------------------------------


class UnknownFeatureError(TrackLabelError):
    """Feature name was never declared."""

    status_code = 404

    def __init__(self, feature_name: str):
        super().__init__(f"unknown feature: {feature_name!r}")
        self.feature_name = feature_name


class NoMoreTracksError(TrackLabelError):
    """Every eligible track is already labeled for the feature."""

    status_code = 404

    def __init__(self, message: str = "no more tracks"):
        super().__init__(message)


class InvalidRatingError(TrackLabelError, ValueError):
    """Rating does not fit in an unsigned byte."""

    status_code = 400


class InsufficientLabelsError(TrackLabelError, ValueError):
    """Not enough labeled rows to fit a predictor."""

    status_code = 400


class ConfigError(ValueError):
    """Required configuration missing from the environment."""
