"""Wiring of transport, credential store and interceptors into one client."""

from dataclasses import dataclass
from typing import Callable

from apptclient.auth.credentials import JsonFileStorage, TokenStore
from apptclient.auth.interfaces import CredentialStore
from apptclient.auth.refresh import RefreshEndpoint
from apptclient.core.config import ClientSettings
from apptclient.services.auth_service import AuthService
from apptclient.services.interceptor_service import InterceptorService
from apptclient.transport.client import Transport
from apptclient.transport.engine import HttpEngine


@dataclass
class ApiClient:
    """A fully wired client.

    Attributes:
        transport: Transport with the auth and recovery interceptors
            installed.  Use its verb methods for API calls.
        store: The credential store shared by every component.
        interceptors: The service owning the refresh single-flight state.
        auth: Login/logout operations.
    """

    transport: Transport
    store: CredentialStore
    interceptors: InterceptorService
    auth: AuthService

    async def close(self) -> None:
        """Close the shared engine."""
        await self.transport.close()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


def build_client(
    settings: ClientSettings | None = None,
    store: CredentialStore | None = None,
    on_session_expired: Callable[[], None] | None = None,
    engine: HttpEngine | None = None,
) -> ApiClient:
    """Build an :class:`ApiClient` with interceptors initialized.

    All transports share one engine.  The refresh and auth calls use a
    transport without interceptors.

    Args:
        settings: Client settings.  Defaults to
            :meth:`ClientSettings.from_env`.
        store: Credential store.  Defaults to a :class:`TokenStore` backed
            by the JSON file named in *settings*.
        on_session_expired: Hook fired when a refresh fails.
        engine: HTTP engine override (tests, custom sessions).

    Returns:
        A ready-to-use :class:`ApiClient`.
    """
    settings = settings or ClientSettings.from_env()
    if store is None:
        store = TokenStore(JsonFileStorage(settings.credentials_file))

    transport = Transport.from_settings(settings, engine=engine)
    bare = Transport.from_settings(settings, engine=transport.engine)

    interceptors = InterceptorService(
        transport,
        store,
        RefreshEndpoint(bare, path=settings.refresh_path),
        on_session_expired=on_session_expired,
    )
    interceptors.initialize_interceptors()

    return ApiClient(
        transport=transport,
        store=store,
        interceptors=interceptors,
        auth=AuthService(bare, store),
    )
