"""Abstract interfaces for the authentication layer.

This module defines the contracts for token persistence.  It is
intentionally free of transport details so that a file, the system
keyring, or an in-memory dict can back the credentials without changing
the interceptors that consume them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class Credentials:
    """Access and refresh tokens.  Either may be absent.

    Attributes:
        access_token: Bearer token sent with every request.
        refresh_token: Long-lived token exchanged for a new access token.
    """

    access_token: str | None = None
    refresh_token: str | None = None


class KeyValueStorage(ABC):
    """Durable string key/value storage with no business logic.

    Implementations raise :class:`~apptclient.core.exceptions.StorageError`
    (or :class:`OSError`) when the medium cannot be accessed.
    """

    @abstractmethod
    def get_item(self, key: str) -> str | None:
        """Return the value stored under *key*, or ``None``."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove *key*.  Removing a missing key is not an error."""


class CredentialStore(ABC):
    """Owner of the persisted :class:`Credentials`.

    Example usage::

        store = TokenStore(JsonFileStorage())
        service = InterceptorService(transport, store, refresh)
    """

    @abstractmethod
    def get_access_token(self) -> str | None:
        """Return the stored access token.

        This method must not raise; a storage failure is reported as
        ``None``.
        """

    @abstractmethod
    def get_refresh_token(self) -> str | None:
        """Return the stored refresh token.

        This method must not raise; a storage failure is reported as
        ``None``.
        """

    @abstractmethod
    def set_tokens(self, access_token: str, refresh_token: str | None) -> None:
        """Persist a new token pair.

        Args:
            access_token: The new access token.
            refresh_token: The new refresh token.  ``None`` keeps the
                currently stored refresh token.

        Raises:
            CredentialStoreError: If the tokens cannot be written.
        """

    @abstractmethod
    def clear_tokens(self) -> None:
        """Remove both tokens.

        Raises:
            CredentialStoreError: If the tokens cannot be removed.
        """

    def load(self) -> Credentials:
        """Return both tokens as a :class:`Credentials` instance."""
        return Credentials(
            access_token=self.get_access_token(),
            refresh_token=self.get_refresh_token(),
        )

    def has_access_token(self) -> bool:
        """Return ``True`` if an access token is stored."""
        return self.get_access_token() is not None

    def has_refresh_token(self) -> bool:
        """Return ``True`` if a refresh token is stored."""
        return self.get_refresh_token() is not None
