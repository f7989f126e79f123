"""Client settings resolved from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from apptclient.core.exceptions import ConfigurationError

_ENV_BASE_URL = "APPTCLIENT_BASE_URL"
_ENV_TIMEOUT = "APPTCLIENT_TIMEOUT"
_ENV_REFRESH_PATH = "APPTCLIENT_REFRESH_PATH"
_ENV_CREDENTIALS_FILE = "APPTCLIENT_CREDENTIALS_FILE"
_ENV_ENGINE = "APPTCLIENT_ENGINE"

DEFAULT_BASE_URL = "http://localhost:8080/api"
DEFAULT_TIMEOUT = 30.0
DEFAULT_REFRESH_PATH = "/auth/refresh"
DEFAULT_CREDENTIALS_FILE = (
    Path.home() / ".config" / "apptclient" / "credentials.json"
)
ENGINES = ("requests", "httpx")


@dataclass
class ClientSettings:
    """Connection settings shared by the transport and the refresh call.

    Attributes:
        base_url: Prefix for relative request URLs.
        timeout: Default request timeout in seconds.
        refresh_path: Path (or absolute URL) of the token refresh endpoint.
        credentials_file: JSON file used by the default credential store.
        engine: Name of the HTTP engine, ``"requests"`` or ``"httpx"``.
    """

    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    refresh_path: str = DEFAULT_REFRESH_PATH
    credentials_file: Path = field(
        default_factory=lambda: DEFAULT_CREDENTIALS_FILE
    )
    engine: str = "requests"

    @classmethod
    def from_env(cls) -> "ClientSettings":
        """Build settings from ``APPTCLIENT_*`` environment variables.

        Unset variables fall back to the module defaults.

        Returns:
            A populated :class:`ClientSettings`.

        Raises:
            ConfigurationError: If ``APPTCLIENT_TIMEOUT`` is not a positive
                number or ``APPTCLIENT_ENGINE`` names an unknown engine.
        """
        raw_timeout = os.getenv(_ENV_TIMEOUT)
        timeout = DEFAULT_TIMEOUT
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError:
                raise ConfigurationError(
                    f"{_ENV_TIMEOUT} must be a number, got {raw_timeout!r}"
                ) from None
            if timeout <= 0:
                raise ConfigurationError(
                    f"{_ENV_TIMEOUT} must be positive, got {raw_timeout!r}"
                )

        engine = (os.getenv(_ENV_ENGINE) or "requests").strip().lower()
        if engine not in ENGINES:
            raise ConfigurationError(
                f"{_ENV_ENGINE} must be one of {', '.join(ENGINES)}, "
                f"got {engine!r}"
            )

        credentials_file = os.getenv(_ENV_CREDENTIALS_FILE)
        return cls(
            base_url=os.getenv(_ENV_BASE_URL) or DEFAULT_BASE_URL,
            timeout=timeout,
            refresh_path=os.getenv(_ENV_REFRESH_PATH) or DEFAULT_REFRESH_PATH,
            credentials_file=(
                Path(credentials_file).expanduser()
                if credentials_file
                else DEFAULT_CREDENTIALS_FILE
            ),
            engine=engine,
        )
