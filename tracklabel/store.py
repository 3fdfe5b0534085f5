"""
Catalog store: an embedded, namespaced key-value store on top of SQLite.

Layout:
    trees              -- one row per namespace ("tree")
    feature_directory  -- one row per declared labeling feature
    entries            -- (tree, key) -> value bytes

Namespaces:
    track_details      -- track id -> JSON track record
    track_features     -- track id -> JSON audio features, or JSON null when
                          Spotify has none ("unavailable" marker)
    input/<feature>    -- track id -> single rating byte

Single writes are atomic per key. Multi-key writes must name their atomicity
scope explicitly via ``Atomicity``.
"""

from __future__ import annotations

import enum
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from tracklabel.errors import StoreError, UnknownFeatureError

log = logging.getLogger("tracklabel.store")

DETAILS_TREE = "track_details"
FEATURES_TREE = "track_features"
LABEL_TREE_PREFIX = "input/"

# JSON null: feature vector known to be unavailable for the track
UNAVAILABLE = b"null"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS trees (
    name TEXT PRIMARY KEY
);
CREATE TABLE IF NOT EXISTS feature_directory (
    name TEXT PRIMARY KEY,
    tree TEXT NOT NULL REFERENCES trees(name),
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE TABLE IF NOT EXISTS entries (
    tree TEXT NOT NULL,
    key TEXT NOT NULL,
    value BLOB NOT NULL,
    PRIMARY KEY (tree, key)
);
"""


class Atomicity(enum.Enum):
    """Atomicity scope of a multi-key write."""

    PER_KEY = "per_key"  # each key committed on its own
    BATCH = "batch"      # all keys in one transaction


def label_tree_name(feature_name: str) -> str:
    return LABEL_TREE_PREFIX + feature_name


class Tree:
    """Handle on one namespace of a CatalogStore."""

    def __init__(self, store: "CatalogStore", name: str):
        self._store = store
        self.name = name

    def __repr__(self) -> str:
        return f"Tree({self.name!r})"

    def get(self, key: str) -> Optional[bytes]:
        row = self._store._fetchone(
            "SELECT value FROM entries WHERE tree = ? AND key = ?", (self.name, key)
        )
        return None if row is None else bytes(row[0])

    def contains_key(self, key: str) -> bool:
        row = self._store._fetchone(
            "SELECT 1 FROM entries WHERE tree = ? AND key = ?", (self.name, key)
        )
        return row is not None

    def insert(self, key: str, value: bytes) -> None:
        """Insert or overwrite one key."""
        self._store._write_many(
            "INSERT OR REPLACE INTO entries (tree, key, value) VALUES (?, ?, ?)",
            [(self.name, key, sqlite3.Binary(value))],
            Atomicity.PER_KEY,
        )

    def insert_batch(self, items: Iterable[Tuple[str, bytes]], *, atomicity: Atomicity) -> int:
        """Insert or overwrite many keys; returns the number written."""
        rows = [(self.name, key, sqlite3.Binary(value)) for key, value in items]
        self._store._write_many(
            "INSERT OR REPLACE INTO entries (tree, key, value) VALUES (?, ?, ?)",
            rows,
            atomicity,
        )
        return len(rows)

    def missing_keys(self, keys: Iterable[str]) -> List[str]:
        """Keys from ``keys`` that have no entry in this tree, input order kept."""
        return [key for key in keys if not self.contains_key(key)]

    def iter(self) -> Iterator[Tuple[str, bytes]]:
        """Iterate (key, value) pairs in key order over a snapshot of the tree."""
        rows = self._store._fetchall(
            "SELECT key, value FROM entries WHERE tree = ? ORDER BY key", (self.name,)
        )
        for key, value in rows:
            yield key, bytes(value)

    def __iter__(self) -> Iterator[Tuple[str, bytes]]:
        return self.iter()

    def __len__(self) -> int:
        row = self._store._fetchone("SELECT COUNT(*) FROM entries WHERE tree = ?", (self.name,))
        return int(row[0])


class CatalogStore:
    """
    SQLite-backed namespaced store shared by the populator, the web service
    and the dataset builder.

    One connection is shared between threads and every statement runs under
    a re-entrant lock, so single-key reads and writes are linearizable.
    """

    def __init__(self, path: Union[str, Path] = ":memory:"):
        self.path = str(path)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
            with self._conn:
                self._conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise StoreError(f"cannot open catalog store at {self.path}: {e}") from e
        self._ensure_tree(DETAILS_TREE)
        self._ensure_tree(FEATURES_TREE)
        log.debug("Opened catalog store at %s", self.path)

    @classmethod
    def open(cls, path: Union[str, Path]) -> "CatalogStore":
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return cls(path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "CatalogStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Namespaces
    # -------------------------------------------------------------------------

    @property
    def details(self) -> Tree:
        return Tree(self, DETAILS_TREE)

    @property
    def features(self) -> Tree:
        return Tree(self, FEATURES_TREE)

    def tree_names(self) -> List[str]:
        rows = self._fetchall("SELECT name FROM trees ORDER BY name", ())
        return [name for (name,) in rows]

    def declare_feature(self, feature_name: str) -> Tree:
        """
        Create the label namespace for ``feature_name`` and record it in the
        feature directory, both in one transaction. Idempotent.
        """
        tree = label_tree_name(feature_name)
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute("INSERT OR IGNORE INTO trees (name) VALUES (?)", (tree,))
                    cur = self._conn.execute(
                        "INSERT OR IGNORE INTO feature_directory (name, tree) VALUES (?, ?)",
                        (feature_name, tree),
                    )
            except sqlite3.Error as e:
                raise StoreError(f"cannot declare feature {feature_name!r}: {e}") from e
        if cur.rowcount:
            log.info("Declared feature %r", feature_name)
        return Tree(self, tree)

    def declared_features(self) -> List[str]:
        rows = self._fetchall("SELECT name FROM feature_directory ORDER BY created_at, name", ())
        return [name for (name,) in rows]

    def has_feature(self, feature_name: str) -> bool:
        row = self._fetchone("SELECT 1 FROM feature_directory WHERE name = ?", (feature_name,))
        return row is not None

    def label_tree(self, feature_name: str) -> Tree:
        """Label namespace of a declared feature."""
        if not self.has_feature(feature_name):
            raise UnknownFeatureError(feature_name)
        return Tree(self, label_tree_name(feature_name))

    # -------------------------------------------------------------------------
    # SQLite plumbing
    # -------------------------------------------------------------------------

    def _ensure_tree(self, name: str) -> None:
        self._write_many("INSERT OR IGNORE INTO trees (name) VALUES (?)", [(name,)], Atomicity.BATCH)

    def _fetchone(self, sql: str, params: tuple):
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def _fetchall(self, sql: str, params: tuple) -> list:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def _write_many(self, sql: str, rows: list, atomicity: Atomicity) -> None:
        if not isinstance(atomicity, Atomicity):
            raise TypeError(f"atomicity must be an Atomicity, got {atomicity!r}")
        if not rows:
            return
        with self._lock:
            try:
                if atomicity is Atomicity.BATCH:
                    with self._conn:
                        self._conn.executemany(sql, rows)
                else:
                    for row in rows:
                        with self._conn:
                            self._conn.execute(sql, row)
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e
