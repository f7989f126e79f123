"""Authentication and error-recovery interceptors.

:class:`InterceptorService` installs one request interceptor (bearer token
injection) and one response interceptor (error recovery) on a
:class:`~apptclient.transport.client.Transport`.

Recovery, per failed request::

    classify ─┬─ UNAUTHORIZED ─ join/start refresh ─┬─ ok     ─ replay once
              │                                     └─ failed ─ clear tokens,
              │                                                 signal expiry,
              │                                                 reject
              ├─ RATE_LIMITED ─ sleep(retry-after) ─ replay once
              └─ anything else ─ reject

Only one refresh runs at a time per service instance.  Every 401 observed
while it is in flight awaits the same future and settles with its outcome.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from apptclient.auth.interfaces import CredentialStore
from apptclient.auth.refresh import RefreshFunc
from apptclient.core.classifier import classify_error
from apptclient.core.exceptions import (
    ClientError,
    CredentialStoreError,
    TransportFailure,
)
from apptclient.core.models import ErrorKind, RequestConfig, Response
from apptclient.transport.client import InterceptorHandle, Transport

logger = logging.getLogger(__name__)

# RequestConfig.metadata markers; each recovery runs at most once per request.
AUTH_RETRY_FLAG = "auth_retried"
RATE_LIMIT_RETRY_FLAG = "rate_limit_retried"

REQUEST_TIME_HEADER = "X-Request-Time"

_NOT_RECOVERABLE = frozenset({
    ErrorKind.NETWORK,
    ErrorKind.TIMEOUT,
    ErrorKind.CLIENT_FAULT,
    ErrorKind.SERVER_FAULT,
    ErrorKind.UNKNOWN,
})


class InterceptorService:
    """Owns the auth interceptors and the refresh single-flight state.

    Args:
        transport: The transport to install interceptors on.
        store: Source of the access and refresh tokens.
        refresh: Async callable exchanging a refresh token for new
            :class:`~apptclient.auth.interfaces.Credentials`, typically a
            :class:`~apptclient.auth.refresh.RefreshEndpoint`.
        on_session_expired: Zero-argument hook invoked once per failed
            refresh, after the credentials have been cleared.
        sleep: Coroutine function used to wait out rate limits.
    """

    def __init__(
        self,
        transport: Transport,
        store: CredentialStore,
        refresh: RefreshFunc,
        on_session_expired: Callable[[], None] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._transport = transport
        self._store = store
        self._refresh = refresh
        self._on_session_expired = on_session_expired
        self._sleep = sleep
        self._request_handle: InterceptorHandle | None = None
        self._response_handle: InterceptorHandle | None = None
        self._refresh_future: asyncio.Future | None = None

    @property
    def is_initialized(self) -> bool:
        return self._request_handle is not None

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_future is not None

    # -------------------------
    # Registration
    # -------------------------

    def initialize_interceptors(self) -> None:
        """Install the auth and recovery interceptors.

        Calling this again before :meth:`remove_interceptors` does nothing.
        """
        if self.is_initialized:
            logger.debug("Interceptors already initialized")
            return
        self._request_handle = self._transport.add_request_interceptor(
            self._inject_auth
        )
        self._response_handle = self._transport.add_response_interceptor(
            self._on_response, self._recover
        )

    def remove_interceptors(self) -> None:
        """Uninstall both interceptors.  Safe to call when not initialized."""
        if self._request_handle is not None:
            self._transport.remove_request_interceptor(self._request_handle)
            self._request_handle = None
        if self._response_handle is not None:
            self._transport.remove_response_interceptor(self._response_handle)
            self._response_handle = None

    # -------------------------
    # Request side
    # -------------------------

    def _inject_auth(self, config: RequestConfig) -> RequestConfig:
        try:
            token = self._store.get_access_token()
        except Exception as e:
            # Storage trouble must not fail the call; it goes out unauthenticated.
            logger.warning("Failed to read access token: %s", e)
            token = None
        if token:
            config.headers["Authorization"] = f"Bearer {token}"
        config.headers[REQUEST_TIME_HEADER] = datetime.now(timezone.utc).isoformat()
        return config

    # -------------------------
    # Response side
    # -------------------------

    def _on_response(self, response: Response) -> Response:
        if response.request is not None:
            logger.debug(
                "API Response [%s]: %s", response.status_code, response.request.url
            )
        return response

    async def _recover(self, error: Exception) -> Response:
        client_error = classify_error(error)
        config = error.request if isinstance(error, TransportFailure) else None

        if config is not None:
            if client_error.kind is ErrorKind.UNAUTHORIZED:
                return await self._recover_unauthorized(config, client_error)
            if client_error.kind is ErrorKind.RATE_LIMITED:
                return await self._recover_rate_limited(config, client_error)

        if client_error.kind in _NOT_RECOVERABLE:
            logger.debug(
                "%s %s failed: %s (%s)",
                client_error.method,
                client_error.url,
                client_error.message,
                client_error.kind.value,
            )
        if client_error is error:
            raise client_error
        raise client_error from error

    async def _recover_unauthorized(
        self, config: RequestConfig, client_error: ClientError
    ) -> Response:
        if config.metadata.get(AUTH_RETRY_FLAG):
            logger.warning(
                "%s %s was rejected again after a token refresh",
                config.method,
                config.url,
            )
            raise client_error
        config.metadata[AUTH_RETRY_FLAG] = True

        if self._refresh_future is None:
            self._refresh_future = asyncio.ensure_future(self._run_refresh())
        try:
            # A cancelled waiter must not cancel the refresh the others share.
            access_token = await asyncio.shield(self._refresh_future)
        except Exception as e:
            raise ClientError(
                ErrorKind.UNAUTHORIZED,
                "Session expired. Please login again.",
                status_code=client_error.status_code,
                url=config.url,
                method=config.method,
                details=client_error.details,
                cause=e,
            ) from e

        config.headers["Authorization"] = f"Bearer {access_token}"
        return await self._transport.send(config)

    async def _recover_rate_limited(
        self, config: RequestConfig, client_error: ClientError
    ) -> Response:
        if config.metadata.get(RATE_LIMIT_RETRY_FLAG):
            raise client_error
        config.metadata[RATE_LIMIT_RETRY_FLAG] = True

        delay = client_error.retry_after_seconds or 0.0
        logger.info(
            "Rate limited. Retrying %s %s after %.1fs",
            config.method,
            config.url,
            delay,
        )
        await self._sleep(delay)
        return await self._transport.send(config)

    # -------------------------
    # Refresh
    # -------------------------

    async def _run_refresh(self) -> str:
        """Perform the one shared refresh and return the new access token."""
        logger.info("Access token rejected; refreshing")
        try:
            try:
                credentials = await self._refresh(self._store.get_refresh_token())
                self._store.set_tokens(
                    credentials.access_token, credentials.refresh_token
                )
            except Exception as e:
                logger.error("Token refresh failed: %s", e)
                clear_error = self._expire_session()
                if clear_error is not None:
                    raise clear_error from e
                raise
            logger.info("Access token refreshed")
            return credentials.access_token
        finally:
            self._refresh_future = None

    def _expire_session(self) -> CredentialStoreError | None:
        clear_error = None
        try:
            self._store.clear_tokens()
        except CredentialStoreError as e:
            logger.error("Failed to clear credentials after refresh failure: %s", e)
            clear_error = e
        logger.warning("User session expired - login required")
        if self._on_session_expired is not None:
            self._on_session_expired()
        return clear_error
