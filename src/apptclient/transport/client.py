"""Async HTTP transport with an ordered, mutable interceptor chain.

The transport performs the network call and lets other components observe
or rewrite requests and responses.  It has no knowledge of authentication,
retries or token refresh; those live in interceptors registered by
:class:`~apptclient.services.interceptor_service.InterceptorService`.

Pipeline for every request::

    request interceptors  ->  engine  ->  status check  ->  response interceptors

Each stage receives either the running value or the running error.  A
handler's return value becomes the new value; a raised exception becomes
the new error; an ``on_rejected`` handler may recover by returning a value.
"""

import inspect
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable

from requests.structures import CaseInsensitiveDict

from apptclient.core.classifier import classify_error
from apptclient.core.config import ClientSettings
from apptclient.core.exceptions import ClientError, TransportFailure
from apptclient.core.models import FormData, RequestConfig, Response
from apptclient.transport.engine import (
    DEFAULT_TIMEOUT,
    HttpEngine,
    HttpxEngine,
    RequestsEngine,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}

Handler = Callable[[Any], Any]


class InterceptorHandle:
    """Opaque token identifying one interceptor registration.

    Handles compare by identity: two handles are equal only when they
    refer to the same registration.
    """

    __slots__ = ("_id",)
    _counter = itertools.count(1)

    def __init__(self):
        self._id = next(InterceptorHandle._counter)

    def __repr__(self) -> str:
        return f"<InterceptorHandle #{self._id}>"


@dataclass(frozen=True)
class _Interceptor:
    handle: InterceptorHandle
    on_fulfilled: Handler | None
    on_rejected: Handler | None


class Transport:
    """Thin async wrapper around a pluggable :class:`HttpEngine`.

    Callers receive either the decoded response body (verb methods) or a
    :class:`~apptclient.core.exceptions.ClientError`; raw engine exceptions
    never escape.

    Args:
        engine: The HTTP engine.  Defaults to
            :class:`~apptclient.transport.engine.RequestsEngine`.
        base_url: Prefix joined to relative request URLs.
        headers: Extra default headers merged over
            :data:`DEFAULT_HEADERS`.
        timeout: Default timeout in seconds.
    """

    def __init__(
        self,
        engine: HttpEngine | None = None,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.engine = engine or RequestsEngine(timeout=timeout)
        self.base_url = base_url
        self.timeout = timeout
        self.headers = CaseInsensitiveDict(DEFAULT_HEADERS)
        self.headers.update(headers or {})
        self._request_interceptors: list[_Interceptor] = []
        self._response_interceptors: list[_Interceptor] = []

    @classmethod
    def from_settings(
        cls, settings: ClientSettings, engine: HttpEngine | None = None
    ) -> "Transport":
        """Build a transport from :class:`ClientSettings`.

        Args:
            settings: Resolved client settings.
            engine: Engine to share with another transport.  When omitted,
                the engine named by ``settings.engine`` is created.

        Returns:
            A new :class:`Transport` without interceptors.
        """
        if engine is None:
            if settings.engine == "httpx":
                engine = HttpxEngine(timeout=settings.timeout)
            else:
                engine = RequestsEngine(timeout=settings.timeout)
        return cls(
            engine=engine, base_url=settings.base_url, timeout=settings.timeout
        )

    # -------------------------
    # Interceptor chain
    # -------------------------

    def add_request_interceptor(
        self,
        on_fulfilled: Handler | None,
        on_rejected: Handler | None = None,
    ) -> InterceptorHandle:
        """Register a hook that runs before the network call.

        Args:
            on_fulfilled: Receives the outgoing :class:`RequestConfig` and
                returns it (possibly mutated) or a replacement.
            on_rejected: Receives an error raised by an earlier request
                interceptor.

        Returns:
            A handle for :meth:`remove_request_interceptor`.
        """
        return self._register(self._request_interceptors, on_fulfilled, on_rejected)

    def add_response_interceptor(
        self,
        on_fulfilled: Handler | None = None,
        on_rejected: Handler | None = None,
    ) -> InterceptorHandle:
        """Register a hook that runs after the network call.

        Args:
            on_fulfilled: Receives a successful :class:`Response`.  Omit for
                pass-through.
            on_rejected: Receives any failure.  Returning a value recovers
                the request; raising keeps it failed.

        Returns:
            A handle for :meth:`remove_response_interceptor`.
        """
        return self._register(self._response_interceptors, on_fulfilled, on_rejected)

    def remove_request_interceptor(self, handle: InterceptorHandle) -> None:
        """Deregister a request interceptor.  Unknown handles are ignored."""
        self._unregister(self._request_interceptors, handle)

    def remove_response_interceptor(self, handle: InterceptorHandle) -> None:
        """Deregister a response interceptor.  Unknown handles are ignored."""
        self._unregister(self._response_interceptors, handle)

    @property
    def request_interceptor_count(self) -> int:
        return len(self._request_interceptors)

    @property
    def response_interceptor_count(self) -> int:
        return len(self._response_interceptors)

    # -------------------------
    # Requests
    # -------------------------

    def build_config(
        self,
        method: str,
        url: str,
        data: Any = None,
        config: dict | None = None,
    ) -> RequestConfig:
        """Merge defaults and per-call options into a :class:`RequestConfig`.

        Args:
            method: HTTP method.
            url: Absolute URL, or a path joined to :attr:`base_url`.
            data: Request body.
            config: Optional per-call options: ``headers``, ``params``,
                ``timeout`` and ``metadata``.

        Returns:
            A new :class:`RequestConfig`.
        """
        config = config or {}
        headers = CaseInsensitiveDict(self.headers)
        headers.update(config.get("headers") or {})
        return RequestConfig(
            method=method,
            url=self._resolve_url(url),
            headers=headers,
            params=config.get("params"),
            data=data,
            timeout=config.get("timeout", self.timeout),
            metadata=dict(config.get("metadata") or {}),
        )

    async def request(
        self,
        method: str,
        url: str,
        data: Any = None,
        config: dict | None = None,
    ) -> Response:
        """Send a request through the interceptor chain.

        Returns:
            The :class:`Response`, or whatever a response interceptor
            recovered the request into.

        Raises:
            ClientError: If the request failed and no interceptor
                recovered it.
        """
        return await self.send(self.build_config(method, url, data, config))

    async def send(self, config: RequestConfig) -> Response:
        """Run an already built *config* through the full chain.

        Used directly to replay a request after recovery.

        Raises:
            ClientError: If the request failed and no interceptor
                recovered it.
        """
        value, error = await _run_chain(
            list(self._request_interceptors), config, None
        )
        if error is None:
            try:
                value = await self._dispatch(value)
            except Exception as e:
                value, error = None, e
        value, error = await _run_chain(
            list(self._response_interceptors), value, error
        )
        if error is not None:
            if isinstance(error, ClientError):
                raise error
            raise classify_error(error) from error
        return value

    async def get(
        self,
        url: str,
        data: Any = None,
        config: dict | None = None,
        *,
        params: dict | None = None,
    ) -> Any:
        """Send a GET request and return the response body.

        Query parameters go in ``params`` (keyword only) or in
        ``config["params"]``; the keyword wins when both are given.
        """
        config = dict(config or {})
        if params is not None:
            config["params"] = params
        return _body(await self.request("GET", url, data, config))

    async def post(
        self, url: str, data: Any = None, config: dict | None = None
    ) -> Any:
        """Send a POST request and return the response body."""
        return _body(await self.request("POST", url, data, config))

    async def put(
        self, url: str, data: Any = None, config: dict | None = None
    ) -> Any:
        """Send a PUT request and return the response body."""
        return _body(await self.request("PUT", url, data, config))

    async def patch(
        self, url: str, data: Any = None, config: dict | None = None
    ) -> Any:
        """Send a PATCH request and return the response body."""
        return _body(await self.request("PATCH", url, data, config))

    async def delete(
        self, url: str, data: Any = None, config: dict | None = None
    ) -> Any:
        """Send a DELETE request and return the response body."""
        return _body(await self.request("DELETE", url, data, config))

    async def upload(
        self, url: str, form_data: FormData, config: dict | None = None
    ) -> Any:
        """POST a multipart form and return the response body.

        ``Content-Type`` is forced to ``multipart/form-data``; the engine
        adds the boundary.
        """
        config = dict(config or {})
        headers = CaseInsensitiveDict(config.get("headers") or {})
        headers["Content-Type"] = "multipart/form-data"
        config["headers"] = headers
        return _body(await self.request("POST", url, form_data, config))

    async def close(self) -> None:
        """Close the underlying engine."""
        await self.engine.close()

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # -------------------------
    # Internal helpers
    # -------------------------

    @staticmethod
    def _register(
        chain: list[_Interceptor],
        on_fulfilled: Handler | None,
        on_rejected: Handler | None,
    ) -> InterceptorHandle:
        handle = InterceptorHandle()
        chain.append(_Interceptor(handle, on_fulfilled, on_rejected))
        return handle

    @staticmethod
    def _unregister(chain: list[_Interceptor], handle: InterceptorHandle) -> None:
        chain[:] = [entry for entry in chain if entry.handle is not handle]

    def _resolve_url(self, url: str) -> str:
        if url.startswith(("http://", "https://")) or not self.base_url:
            return url
        return self.base_url.rstrip("/") + "/" + url.lstrip("/")

    async def _dispatch(self, config: RequestConfig) -> Response:
        logger.debug("%s %s", config.method, config.url)
        response = await self.engine.send(config)
        if not response.ok:
            raise TransportFailure(
                f"Request failed with status code {response.status_code}",
                code=(
                    "ERR_BAD_RESPONSE"
                    if response.status_code >= 500
                    else "ERR_BAD_REQUEST"
                ),
                request=config,
                response=response,
            )
        return response


async def _run_chain(
    chain: list[_Interceptor], value: Any, error: Exception | None
) -> tuple[Any, Exception | None]:
    """Fold *value* / *error* through *chain* in registration order."""
    for entry in chain:
        handler = entry.on_rejected if error is not None else entry.on_fulfilled
        if handler is None:
            continue
        try:
            result = handler(error if error is not None else value)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            value, error = None, e
        else:
            value, error = result, None
    return value, error


def _body(response: Any) -> Any:
    return response.body if isinstance(response, Response) else response
