"""Shared fixtures: an in-memory HTTP engine with scripted responses."""

import asyncio
from urllib.parse import urlsplit

import pytest

from apptclient.auth.credentials import MemoryStorage, TokenStore
from apptclient.core.exceptions import TransportFailure
from apptclient.core.models import RequestConfig, Response
from apptclient.transport.client import Transport
from apptclient.transport.engine import HttpEngine

BASE_URL = "https://api.test"


class FakeEngine(HttpEngine):
    """Engine that answers from per-route scripts instead of the network.

    A script entry is a ``(status, body)`` or ``(status, body, headers)``
    tuple, an exception to raise, or a callable receiving the
    :class:`RequestConfig` and returning one of those.  Entries are consumed
    in order; the last one repeats.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list] = {}
        self.calls: list[dict] = []
        self.closed = False

    def route(self, method: str, path: str, *script) -> None:
        self.routes[(method.upper(), path)] = list(script)

    def calls_to(self, method: str, path: str) -> list[dict]:
        return [
            c for c in self.calls if c["method"] == method and c["path"] == path
        ]

    async def send(self, config: RequestConfig) -> Response:
        await asyncio.sleep(0)
        path = urlsplit(config.url).path
        self.calls.append({
            "method": config.method,
            "path": path,
            "url": config.url,
            "headers": dict(config.headers),
            "data": config.data,
            "params": config.params,
        })
        script = self.routes.get((config.method, path))
        if not script:
            raise TransportFailure(
                f"No route for {config.method} {path}",
                code="ECONNREFUSED",
                request=config,
            )
        item = script.pop(0) if len(script) > 1 else script[0]
        if callable(item):
            item = item(config)
        if isinstance(item, Exception):
            raise item
        status, body, *rest = item
        headers = rest[0] if rest else {"Content-Type": "application/json"}
        return Response(status, headers, body, request=config)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def engine():
    return FakeEngine()


@pytest.fixture()
def transport(engine):
    return Transport(engine=engine, base_url=BASE_URL)


@pytest.fixture()
def store():
    return TokenStore(MemoryStorage())
