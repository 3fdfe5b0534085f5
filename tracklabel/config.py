"""
Runtime configuration, read from the process environment (and a .env file if present).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from tracklabel.errors import ConfigError

DEFAULT_REDIRECT_URI = "http://127.0.0.1:3000/api/callback"
DEFAULT_DB_PATH = "catalog.sqlite3"
DEFAULT_MARKET = "PL"
DEFAULT_PLAYLIST_ID = "6CmOKM7D0nvMM1h1GQTl1L"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    client_id: str
    client_secret: str
    redirect_uri: str = DEFAULT_REDIRECT_URI
    db_path: Path = Path(DEFAULT_DB_PATH)
    token_dir: Path = Path(".")
    market: str = DEFAULT_MARKET
    playlist_id: str = DEFAULT_PLAYLIST_ID
    skip_populate: bool = False
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Loads ``.env`` first when reading the real process environment.
        Raises ConfigError if the Spotify client credentials are missing.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        client_id = environ.get("SPOTIPY_CLIENT_ID", "").strip()
        client_secret = environ.get("SPOTIPY_CLIENT_SECRET", "").strip()
        if not client_id or not client_secret:
            raise ConfigError(
                "Spotify credentials not found. Please set SPOTIPY_CLIENT_ID and "
                "SPOTIPY_CLIENT_SECRET in your environment or .env file."
            )

        try:
            port = int(environ.get("TRACKLABEL_PORT", DEFAULT_PORT))
        except ValueError as e:
            raise ConfigError(f"TRACKLABEL_PORT must be an integer: {e}") from e

        return cls(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=environ.get("SPOTIPY_REDIRECT_URI", DEFAULT_REDIRECT_URI),
            db_path=Path(environ.get("TRACKLABEL_DB", DEFAULT_DB_PATH)),
            token_dir=Path(environ.get("TRACKLABEL_TOKEN_DIR", ".")),
            market=environ.get("TRACKLABEL_MARKET", DEFAULT_MARKET).upper(),
            playlist_id=environ.get("TRACKLABEL_PLAYLIST_ID", DEFAULT_PLAYLIST_ID),
            skip_populate=environ.get("TRACKLABEL_SKIP_POPULATE", "").strip().lower() in _TRUTHY,
            host=environ.get("TRACKLABEL_HOST", DEFAULT_HOST),
            port=port,
        )

    @property
    def token_cache_path(self) -> Path:
        """Token cache file, keyed by client id."""
        return self.token_dir / f".cache-tracklabel-{self.client_id}"

    @property
    def callback_address(self) -> tuple:
        """(host, port) the OAuth redirect URI points at."""
        parsed = urlparse(self.redirect_uri)
        if not parsed.hostname:
            raise ConfigError(f"redirect URI has no host: {self.redirect_uri!r}")
        return parsed.hostname, parsed.port or (443 if parsed.scheme == "https" else 80)

    @property
    def callback_path(self) -> str:
        return urlparse(self.redirect_uri).path or "/"

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}/"
