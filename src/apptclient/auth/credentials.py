"""Persistent storage for API tokens.

Two storage backends are defined here:

* :class:`MemoryStorage`: a plain dict, for tests and short-lived
  processes.
* :class:`JsonFileStorage`: a JSON file stored under
  ``~/.config/apptclient/`` with permissions restricted to the owner
  (0o600).

:class:`TokenStore` sits on top of either backend and implements the
:class:`~apptclient.auth.interfaces.CredentialStore` contract: reads never
raise, writes and clears raise
:class:`~apptclient.core.exceptions.CredentialStoreError`.
"""

import json
import logging
from pathlib import Path

from apptclient.auth.interfaces import CredentialStore, KeyValueStorage
from apptclient.core.config import DEFAULT_CREDENTIALS_FILE
from apptclient.core.exceptions import CredentialStoreError, StorageError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"

# Exceptions a backend may raise when the medium is unavailable.
_STORAGE_ERRORS = (StorageError, OSError, ValueError)


# ---------------------------------------------------------------------------
# Storage backends
# ---------------------------------------------------------------------------


class MemoryStorage(KeyValueStorage):
    """Dict-backed storage.  Contents are lost when the process exits."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileStorage(KeyValueStorage):
    """Key/value pairs persisted as a single JSON object on disk.

    The parent directory is created on first write and the file is
    restricted to the owner.  A missing file reads as empty.

    Args:
        path: Location of the JSON file.  Defaults to
            ``~/.config/apptclient/credentials.json``.
    """

    def __init__(self, path: Path | None = None):
        self._path = path or DEFAULT_CREDENTIALS_FILE

    @property
    def path(self) -> Path:
        """Return the path to the backing JSON file."""
        return self._path

    def get_item(self, key: str) -> str | None:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        items = self._read()
        items[key] = value
        self._write(items)

    def remove_item(self, key: str) -> None:
        items = self._read()
        if key not in items:
            return
        del items[key]
        if items:
            self._write(items)
        else:
            self._path.unlink(missing_ok=True)

    # -------------------------
    # Internal helpers
    # -------------------------

    def _read(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt credentials file {self._path}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Corrupt credentials file {self._path}")
        return data

    def _write(self, items: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(items, indent=2), encoding="utf-8")
        self._path.chmod(0o600)


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


class TokenStore(CredentialStore):
    """Stores the access and refresh tokens in a :class:`KeyValueStorage`.

    Args:
        storage: The backing key/value storage.  Defaults to
            :class:`MemoryStorage`.
        access_key: Storage key for the access token.
        refresh_key: Storage key for the refresh token.
    """

    def __init__(
        self,
        storage: KeyValueStorage | None = None,
        access_key: str = ACCESS_TOKEN_KEY,
        refresh_key: str = REFRESH_TOKEN_KEY,
    ):
        self.storage = storage if storage is not None else MemoryStorage()
        self._access_key = access_key
        self._refresh_key = refresh_key

    def get_access_token(self) -> str | None:
        return self._get(self._access_key)

    def get_refresh_token(self) -> str | None:
        return self._get(self._refresh_key)

    def set_tokens(self, access_token: str, refresh_token: str | None) -> None:
        try:
            self.storage.set_item(self._access_key, access_token)
            if refresh_token is not None:
                self.storage.set_item(self._refresh_key, refresh_token)
        except _STORAGE_ERRORS as e:
            logger.error("Failed to store tokens: %s", e)
            raise CredentialStoreError(
                "Unable to store authentication tokens"
            ) from e

    def clear_tokens(self) -> None:
        try:
            self.storage.remove_item(self._access_key)
            self.storage.remove_item(self._refresh_key)
        except _STORAGE_ERRORS as e:
            logger.error("Failed to remove tokens: %s", e)
            raise CredentialStoreError(
                "Unable to clear authentication tokens"
            ) from e

    def _get(self, key: str) -> str | None:
        try:
            value = self.storage.get_item(key)
        except _STORAGE_ERRORS as e:
            logger.warning("Failed to retrieve %s from storage: %s", key, e)
            return None
        return value or None
