"""Client for the token refresh endpoint."""

from typing import Awaitable, Callable

from apptclient.auth.interfaces import Credentials
from apptclient.core.config import DEFAULT_REFRESH_PATH, ClientSettings
from apptclient.core.exceptions import ClientError
from apptclient.core.models import ErrorKind
from apptclient.transport.client import Transport
from apptclient.transport.engine import HttpEngine

# Any async callable with this shape can stand in for RefreshEndpoint.
RefreshFunc = Callable[[str | None], Awaitable[Credentials]]


class RefreshEndpoint:
    """Exchanges a refresh token for a new token pair.

    The call goes through its own transport with no interceptors, so a
    401 from the refresh endpoint is reported as a plain failure instead
    of triggering another refresh.

    Args:
        transport: A transport with no interceptors registered.
        path: Path (or absolute URL) of the refresh endpoint.
    """

    def __init__(self, transport: Transport, path: str = DEFAULT_REFRESH_PATH):
        self._transport = transport
        self.path = path

    @classmethod
    def from_settings(
        cls, settings: ClientSettings, engine: HttpEngine | None = None
    ) -> "RefreshEndpoint":
        """Build an endpoint client that shares *engine* with the main transport."""
        return cls(
            Transport.from_settings(settings, engine=engine),
            path=settings.refresh_path,
        )

    async def __call__(self, refresh_token: str | None) -> Credentials:
        """Request a new access token.

        Args:
            refresh_token: The stored refresh token.

        Returns:
            The new :class:`Credentials`.  ``refresh_token`` is ``None`` when
            the server did not rotate it.

        Raises:
            ClientError: If no refresh token is available, the endpoint
                answers with a non-2xx status, or the response carries no
                access token.
        """
        if not refresh_token:
            raise ClientError(
                ErrorKind.UNAUTHORIZED,
                "No refresh token available",
                method="POST",
                url=self.path,
            )

        body = await self._transport.post(
            self.path, {"refreshToken": refresh_token}
        )

        access_token = body.get("accessToken") if isinstance(body, dict) else None
        if not isinstance(access_token, str) or not access_token:
            raise ClientError(
                ErrorKind.UNAUTHORIZED,
                "Token refresh failed: no access token in response",
                method="POST",
                url=self.path,
                details=body,
            )
        new_refresh = body.get("refreshToken")
        return Credentials(
            access_token=access_token,
            refresh_token=new_refresh if isinstance(new_refresh, str) and new_refresh else None,
        )
