"""Login and logout against the authentication endpoints."""

import logging

from apptclient.auth.interfaces import CredentialStore
from apptclient.core.exceptions import ClientError
from apptclient.core.models import ErrorKind
from apptclient.transport.client import Transport

logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"
LOGOUT_PATH = "/auth/logout"


class AuthService:
    """Writes and erases credentials through the login/logout endpoints.

    The transport passed here should have no auth interceptors: a 401 from
    the login endpoint means bad credentials, not an expired session.

    Args:
        transport: A transport with no interceptors registered.
        store: The credential store to populate and clear.
        login_path: Path of the login endpoint.
        logout_path: Path of the logout endpoint.
    """

    def __init__(
        self,
        transport: Transport,
        store: CredentialStore,
        login_path: str = LOGIN_PATH,
        logout_path: str = LOGOUT_PATH,
    ):
        self.transport = transport
        self.store = store
        self.login_path = login_path
        self.logout_path = logout_path

    async def login(self, username: str, password: str) -> dict:
        """Authenticate and persist the returned tokens.

        Args:
            username: Account user name or e-mail.
            password: Account password.

        Returns:
            The decoded login response (tokens and user profile).

        Raises:
            ClientError: If the server rejects the login or the response
                carries no access token.
            CredentialStoreError: If the tokens cannot be stored.
        """
        body = await self.transport.post(
            self.login_path, {"username": username, "password": password}
        )
        access_token = body.get("accessToken") if isinstance(body, dict) else None
        if not isinstance(access_token, str) or not access_token:
            raise ClientError(
                ErrorKind.UNKNOWN,
                "Login response did not include an access token",
                method="POST",
                url=self.login_path,
                details=body,
            )
        self.store.set_tokens(access_token, body.get("refreshToken") or None)
        logger.info("Logged in as %s", username)
        return body

    async def logout(self) -> None:
        """Invalidate the server-side session and clear local tokens.

        Local tokens are cleared even when the logout call fails; the
        :class:`ClientError` is re-raised afterwards.

        Raises:
            ClientError: If the logout endpoint call fails.
            CredentialStoreError: If the local tokens cannot be cleared.
        """
        headers = {}
        token = self.store.get_access_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            await self.transport.post(self.logout_path, config={"headers": headers})
        finally:
            self.store.clear_tokens()
            logger.info("Local credentials cleared")

    def is_authenticated(self) -> bool:
        """Return ``True`` if a refresh token is stored."""
        return self.store.has_refresh_token()
