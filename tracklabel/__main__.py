#!/usr/bin/env python3
"""
tracklabel command line.

Usage:
  # Log in, refresh the catalog and open the labeling UI:
  python -m tracklabel serve

  # Refresh the catalog only:
  python -m tracklabel populate

  # Export the labeled rows of a feature:
  python -m tracklabel dataset energetic --out energetic.csv

  # Fit a classifier for a feature and score every track:
  python -m tracklabel train energetic --model models/energetic.joblib --out scores.csv
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from tracklabel.config import Settings
from tracklabel.datasets import build_fitting_dataset, build_prediction_dataset
from tracklabel.errors import ConfigError, TrackLabelError
from tracklabel.kickstart import acquire
from tracklabel.learning import fit_predictor, save_predictor, score_catalog
from tracklabel.populate import populate
from tracklabel.store import CatalogStore
from tracklabel.web import web_interface

log = logging.getLogger("tracklabel")


def _serve(settings: Settings, args: argparse.Namespace) -> int:
    client = acquire(settings)
    with CatalogStore.open(settings.db_path) as store:
        if settings.skip_populate:
            log.info("TRACKLABEL_SKIP_POPULATE set, skipping catalog population")
        else:
            populate(client, store, settings.playlist_id)
        web_interface(
            store,
            client.access_token,
            settings.market,
            host=settings.host,
            port=settings.port,
        )
    return 0


def _populate(settings: Settings, args: argparse.Namespace) -> int:
    client = acquire(settings)
    with CatalogStore.open(settings.db_path) as store:
        summary = populate(client, store, settings.playlist_id)
    print(f"Stored {summary.tracks} tracks, fetched {summary.features_fetched} feature vectors "
          f"({summary.features_unavailable} unavailable)")
    return 0


def _dataset(settings: Settings, args: argparse.Namespace) -> int:
    with CatalogStore.open(settings.db_path) as store:
        dataset = build_fitting_dataset(store, args.feature)
    df = dataset.to_frame()
    if args.out:
        df.to_csv(args.out, index=False)
        print(f"Wrote {len(df)} rows to {args.out}")
    else:
        print(df.to_string(index=False))
    return 0


def _train(settings: Settings, args: argparse.Namespace) -> int:
    with CatalogStore.open(settings.db_path) as store:
        fitting = build_fitting_dataset(store, args.feature)
        prediction = build_prediction_dataset(store)
    predictor = fit_predictor(fitting)
    if args.model:
        save_predictor(predictor, args.model)
    scores = score_catalog(predictor, prediction)
    if args.out:
        scores.to_csv(args.out, index=False)
        print(f"Scored {len(scores)} tracks, wrote {args.out}")
    else:
        print(scores.head(args.top).to_string(index=False))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tracklabel",
        description="Label Spotify tracks against binary features and build training datasets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Log in, populate the catalog and run the labeling UI (default)")
    serve.set_defaults(handler=_serve)

    pop = sub.add_parser("populate", help="Log in and refresh the catalog only")
    pop.set_defaults(handler=_populate)

    ds = sub.add_parser("dataset", help="Export the fitting dataset of a feature")
    ds.add_argument("feature", help="Feature name")
    ds.add_argument("--out", type=str, default=None, help="CSV output path (default: print)")
    ds.set_defaults(handler=_dataset)

    tr = sub.add_parser("train", help="Fit a classifier for a feature and score the catalog")
    tr.add_argument("feature", help="Feature name")
    tr.add_argument("--model", type=str, default=None, help="Save the fitted predictor (joblib)")
    tr.add_argument("--out", type=str, default=None, help="CSV output path for scores (default: print)")
    tr.add_argument("--top", type=int, default=20, help="Rows to print when --out is not given")
    tr.set_defaults(handler=_train)

    parser.set_defaults(handler=_serve)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s - %(message)s",
    )

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 2

    try:
        return args.handler(settings, args)
    except TrackLabelError as e:
        log.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
