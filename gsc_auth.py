# gsc_auth.py
import json
import os
import threading
from typing import Dict, Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from config import Settings
from logging_config import logger

SCOPES = ["https://www.googleapis.com/auth/webmasters.readonly"]
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

ACCESS_TOKEN_KEY = "GOOGLE_ACCESS_TOKEN"
REFRESH_TOKEN_KEY = "GOOGLE_REFRESH_TOKEN"


class TokenError(Exception):
    """Raised when no usable Google credential can be produced."""


class TokenStore:
    """
    Small key-value store for OAuth tokens, persisted as a JSON object on disk.

    Without a path the store only lives in memory, so refreshed tokens are
    lost on restart and the environment stays the source of truth.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = threading.Lock()
        self._data: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not self.path or not os.path.exists(self.path):
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable token store %s: %s", self.path, e)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)} if isinstance(data, dict) else {}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
            if not self.path:
                return
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(self._data, f)


class TokenProvider:
    """
    Supplies valid Google credentials for the Search Console API.

    The access token comes from the environment first, then from the token
    store. When there is none, or it has expired, it is refreshed with the
    refresh token (environment first, then store) and the new access token is
    written back to the store.
    """

    def __init__(self, settings: Settings, store: Optional[TokenStore] = None):
        self.settings = settings
        self.store = store if store is not None else TokenStore(settings.token_store_path)
        self._lock = threading.Lock()
        self._creds: Optional[Credentials] = None
        self._persisted_token: Optional[str] = None

    def _load_refresh_token(self) -> Optional[str]:
        return self.settings.refresh_token or self.store.get(REFRESH_TOKEN_KEY)

    def _build_credentials(self) -> Credentials:
        access_token = self.settings.access_token or self.store.get(ACCESS_TOKEN_KEY)
        self._persisted_token = access_token
        return Credentials(
            token=access_token,
            refresh_token=self._load_refresh_token(),
            client_id=self.settings.client_id,
            client_secret=self.settings.client_secret,
            token_uri=GOOGLE_TOKEN_URI,
            scopes=SCOPES,
        )

    def get_credentials(self) -> Credentials:
        with self._lock:
            if self._creds is None:
                self._creds = self._build_credentials()
            if not self._creds.valid:
                self._refresh_locked()
            return self._creds

    def _refresh_locked(self) -> None:
        creds = self._creds
        if not creds.refresh_token:
            raise TokenError(
                "Refresh token not found. Please set GOOGLE_REFRESH_TOKEN in the environment "
                "or store it in the token store (see get_refresh_token.py)."
            )
        try:
            creds.refresh(Request())
        except RefreshError as e:
            raise TokenError(f"Failed to refresh token: {e}") from e
        logger.info("Refreshed Google access token")
        self._persist_locked()

    def sync(self) -> None:
        """Persist the access token if the HTTP layer refreshed it behind our back."""
        with self._lock:
            self._persist_locked()

    def _persist_locked(self) -> None:
        if self._creds is None or not self._creds.token:
            return
        if self._creds.token != self._persisted_token:
            self.store.put(ACCESS_TOKEN_KEY, self._creds.token)
            self._persisted_token = self._creds.token
