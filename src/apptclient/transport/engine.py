"""Pluggable HTTP engines used by :class:`~apptclient.transport.client.Transport`.

An engine performs exactly one network call and knows nothing about
interceptors, authentication or retries.  Library-specific exceptions are
translated into :class:`~apptclient.core.exceptions.TransportFailure` with
an engine-neutral ``code`` so that the classifier never has to import
``requests`` or ``httpx``.

Two implementations are defined here:

* :class:`RequestsEngine`: a :class:`requests.Session` driven from a
  worker thread via :func:`asyncio.to_thread`.  The default.
* :class:`HttpxEngine`: a native :class:`httpx.AsyncClient`.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any

import httpx
import requests
from requests.structures import CaseInsensitiveDict

from apptclient.core.exceptions import TransportFailure
from apptclient.core.models import FormData, RequestConfig, Response

DEFAULT_TIMEOUT = 30.0

# Engine-neutral error codes understood by the classifier.
CODE_TIMEOUT = "ETIMEDOUT"
CODE_NETWORK = "ERR_NETWORK"
CODE_REQUEST = "ERR_REQUEST"


class HttpEngine(ABC):
    """Abstract base class for HTTP engines."""

    @abstractmethod
    async def send(self, config: RequestConfig) -> Response:
        """Send *config* over the network and return the decoded response.

        Non-2xx responses are returned, not raised.

        Args:
            config: The fully prepared request.

        Returns:
            The decoded :class:`~apptclient.core.models.Response`.

        Raises:
            TransportFailure: If no response could be obtained (DNS
                failure, refused connection, timeout, ...).
        """

    async def close(self) -> None:
        """Release pooled connections.  The default does nothing."""


# ---------------------------------------------------------------------------
# requests
# ---------------------------------------------------------------------------


class RequestsEngine(HttpEngine):
    """Engine backed by a :class:`requests.Session`.

    Each call runs in the default thread pool so that the event loop keeps
    serving other requests while this one is on the wire.

    Args:
        session: An existing session to reuse.  A new one is created when
            omitted.
        timeout: Default timeout in seconds for requests that do not set
            their own.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.session = session or requests.Session()
        self.timeout = timeout

    async def send(self, config: RequestConfig) -> Response:
        return await asyncio.to_thread(self._send, config)

    async def close(self) -> None:
        self.session.close()

    def _send(self, config: RequestConfig) -> Response:
        kwargs: dict[str, Any] = {}
        data = config.data
        if isinstance(data, FormData):
            kwargs["data"] = data.fields
            kwargs["files"] = data.files
        elif isinstance(data, (str, bytes)):
            kwargs["data"] = data
        elif data is not None:
            kwargs["json"] = data

        try:
            r = self.session.request(
                config.method,
                config.url,
                headers=_wire_headers(config),
                params=config.params,
                timeout=config.timeout or self.timeout,
                **kwargs,
            )
        # ConnectTimeout is both a Timeout and a ConnectionError.
        except requests.Timeout as e:
            raise TransportFailure(
                f"Request timed out: {e}", code=CODE_TIMEOUT, request=config
            ) from e
        except requests.ConnectionError as e:
            raise TransportFailure(
                f"Network error: {e}", code=CODE_NETWORK, request=config
            ) from e
        except requests.RequestException as e:
            raise TransportFailure(
                f"Request failed: {e}", code=CODE_REQUEST, request=config
            ) from e

        return Response(
            status_code=r.status_code,
            headers=CaseInsensitiveDict(r.headers),
            body=_decode_body(r.headers.get("Content-Type", ""), r.text),
            request=config,
        )


# ---------------------------------------------------------------------------
# httpx
# ---------------------------------------------------------------------------


class HttpxEngine(HttpEngine):
    """Engine backed by an :class:`httpx.AsyncClient`.

    Args:
        client: An existing client to reuse.  A new one is created when
            omitted.
        timeout: Default timeout in seconds for a newly created client.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, config: RequestConfig) -> Response:
        kwargs: dict[str, Any] = {}
        data = config.data
        if isinstance(data, FormData):
            kwargs["data"] = data.fields
            kwargs["files"] = data.files
        elif isinstance(data, (str, bytes)):
            kwargs["content"] = data
        elif data is not None:
            kwargs["json"] = data
        if config.timeout is not None:
            kwargs["timeout"] = config.timeout

        try:
            r = await self.client.request(
                config.method,
                config.url,
                headers=_wire_headers(config),
                params=config.params,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise TransportFailure(
                f"Request timed out: {e}", code=CODE_TIMEOUT, request=config
            ) from e
        except httpx.NetworkError as e:
            raise TransportFailure(
                f"Network error: {e}", code=CODE_NETWORK, request=config
            ) from e
        except httpx.HTTPError as e:
            raise TransportFailure(
                f"Request failed: {e}", code=CODE_REQUEST, request=config
            ) from e

        return Response(
            status_code=r.status_code,
            headers=CaseInsensitiveDict(r.headers.items()),
            body=_decode_body(r.headers.get("Content-Type", ""), r.text),
            request=config,
        )

    async def close(self) -> None:
        await self.client.aclose()


# -------------------------
# Internal helpers
# -------------------------


def _wire_headers(config: RequestConfig) -> dict[str, str]:
    """Return the headers to put on the wire for *config*.

    A ``multipart/form-data`` content type without a boundary is dropped so
    the HTTP library can generate one together with the body.
    """
    headers = dict(config.headers)
    for name in list(headers):
        if name.lower() != "content-type":
            continue
        value = headers[name].lower()
        if isinstance(config.data, FormData) or (
            value.startswith("multipart/form-data") and "boundary=" not in value
        ):
            del headers[name]
    return headers


def _decode_body(content_type: str, text: str) -> Any:
    if not text:
        return None
    if "json" in content_type.lower():
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text
