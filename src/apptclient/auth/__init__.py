"""Authentication layer: interfaces, token storage and refresh."""

from apptclient.auth.interfaces import Credentials, CredentialStore, KeyValueStorage

__all__ = ["CredentialStore", "Credentials", "KeyValueStorage"]
