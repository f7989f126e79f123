"""Unit tests for InterceptorService: auth injection and error recovery.

Requests are answered by the FakeEngine from conftest.  The refresh
endpoint is a scripted coroutine and the rate-limit sleep is recorded
instead of waited out.
"""

import asyncio

import pytest

from apptclient.auth.credentials import TokenStore
from apptclient.auth.interfaces import Credentials, CredentialStore
from apptclient.auth.refresh import RefreshEndpoint
from apptclient.core.exceptions import (
    ClientError,
    CredentialStoreError,
    TransportFailure,
)
from apptclient.core.models import ErrorKind
from apptclient.services.interceptor_service import InterceptorService
from apptclient.transport.client import Transport

from conftest import BASE_URL


class FakeRefresh:
    """Scripted refresh endpoint that counts its calls."""

    def __init__(self, result=None, error=None, delay=0.01):
        self.result = result or Credentials("new-access", "new-refresh")
        self.error = error
        self.delay = delay
        self.calls: list[str | None] = []

    async def __call__(self, refresh_token):
        self.calls.append(refresh_token)
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class ExplodingStore(CredentialStore):
    """Store whose reads raise, bypassing the TokenStore safety net."""

    def get_access_token(self):
        raise RuntimeError("localStorage is disabled")

    def get_refresh_token(self):
        raise RuntimeError("localStorage is disabled")

    def set_tokens(self, access_token, refresh_token):
        raise RuntimeError("localStorage is disabled")

    def clear_tokens(self):
        raise CredentialStoreError("Unable to clear authentication tokens")


def _bearer_only(token, body=None):
    """Route handler accepting only ``Bearer <token>``."""

    def handler(config):
        if config.headers.get("Authorization") == f"Bearer {token}":
            return (200, body if body is not None else {"orders": [1, 2]})
        return (401, {"message": "Token expired"})

    return handler


@pytest.fixture()
def refresh():
    return FakeRefresh()


@pytest.fixture()
def expired():
    return []


@pytest.fixture()
def sleep():
    return RecordingSleep()


@pytest.fixture()
def service(transport, store, refresh, expired, sleep):
    svc = InterceptorService(
        transport,
        store,
        refresh,
        on_session_expired=lambda: expired.append(True),
        sleep=sleep,
    )
    svc.initialize_interceptors()
    return svc


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegistration:
    def test_initialize_registers_one_pair(self, service, transport):
        assert transport.request_interceptor_count == 1
        assert transport.response_interceptor_count == 1
        assert service.is_initialized

    def test_initialize_twice_does_not_double_register(self, service, transport):
        service.initialize_interceptors()
        assert transport.request_interceptor_count == 1
        assert transport.response_interceptor_count == 1

    def test_remove_deregisters_both(self, service, transport):
        service.remove_interceptors()
        assert transport.request_interceptor_count == 0
        assert transport.response_interceptor_count == 0
        assert not service.is_initialized

    def test_remove_without_initialize_is_safe(self, transport, store, refresh):
        svc = InterceptorService(transport, store, refresh)
        svc.remove_interceptors()
        svc.remove_interceptors()

    def test_reinitialize_after_remove(self, service, transport):
        service.remove_interceptors()
        service.initialize_interceptors()
        assert transport.request_interceptor_count == 1


# ---------------------------------------------------------------------------
# Auth injection
# ---------------------------------------------------------------------------


class TestAuthInjection:
    def test_bearer_header_when_token_stored(self, service, transport, engine, store):
        store.set_tokens("abc", "r")
        engine.route("GET", "/orders", (200, []))
        asyncio.run(transport.get("/orders"))
        headers = engine.calls[0]["headers"]
        assert headers["Authorization"] == "Bearer abc"
        assert "X-Request-Time" in headers

    def test_no_header_without_token(self, service, transport, engine):
        engine.route("GET", "/orders", (200, []))
        asyncio.run(transport.get("/orders"))
        headers = engine.calls[0]["headers"]
        assert "Authorization" not in headers
        assert "X-Request-Time" in headers

    def test_store_failure_does_not_block_request(self, transport, engine, refresh):
        svc = InterceptorService(transport, ExplodingStore(), refresh)
        svc.initialize_interceptors()
        engine.route("GET", "/orders", (200, {"ok": True}))

        assert asyncio.run(transport.get("/orders")) == {"ok": True}
        assert "Authorization" not in engine.calls[0]["headers"]

    def test_token_read_per_request(self, service, transport, engine, store):
        engine.route("GET", "/orders", (200, []))
        store.set_tokens("one", "r")
        asyncio.run(transport.get("/orders"))
        store.set_tokens("two", "r")
        asyncio.run(transport.get("/orders"))
        assert [c["headers"]["Authorization"] for c in engine.calls] == [
            "Bearer one",
            "Bearer two",
        ]


# ---------------------------------------------------------------------------
# Unauthorized recovery
# ---------------------------------------------------------------------------


class TestUnauthorized:
    def test_expired_token_is_refreshed_and_replayed(
        self, service, transport, engine, store, refresh
    ):
        store.set_tokens("expired", "valid-refresh")
        engine.route("GET", "/orders", _bearer_only("new-access"))

        body = asyncio.run(transport.get("/orders"))

        assert body == {"orders": [1, 2]}
        assert refresh.calls == ["valid-refresh"]
        orders_calls = engine.calls_to("GET", "/orders")
        assert len(orders_calls) == 2
        assert orders_calls[1]["headers"]["Authorization"] == "Bearer new-access"
        assert store.load() == Credentials("new-access", "new-refresh")
        assert not service.refresh_in_flight

    def test_refresh_without_rotated_refresh_token(
        self, service, transport, engine, store, refresh
    ):
        refresh.result = Credentials("new-access", None)
        store.set_tokens("expired", "keep-me")
        engine.route("GET", "/orders", _bearer_only("new-access"))

        asyncio.run(transport.get("/orders"))

        assert store.get_refresh_token() == "keep-me"

    def test_concurrent_401s_share_one_refresh(
        self, service, transport, engine, store, refresh
    ):
        store.set_tokens("expired", "valid-refresh")
        engine.route("GET", "/orders", _bearer_only("new-access"))

        async def run():
            return await asyncio.gather(
                *(transport.get("/orders") for _ in range(5))
            )

        results = asyncio.run(run())

        assert results == [{"orders": [1, 2]}] * 5
        assert len(refresh.calls) == 1
        assert len(engine.calls_to("GET", "/orders")) == 10

    def test_concurrent_401s_all_reject_when_refresh_fails(
        self, service, transport, engine, store, refresh, expired
    ):
        refresh.error = ClientError(ErrorKind.UNAUTHORIZED, "refresh rejected")
        store.set_tokens("expired", "bad-refresh")
        engine.route("GET", "/orders", _bearer_only("new-access"))

        async def run():
            return await asyncio.gather(
                *(transport.get("/orders") for _ in range(4)),
                return_exceptions=True,
            )

        results = asyncio.run(run())

        assert len(refresh.calls) == 1
        assert all(isinstance(r, ClientError) for r in results)
        assert {r.kind for r in results} == {ErrorKind.UNAUTHORIZED}
        assert expired == [True]
        assert store.load() == Credentials()

    def test_failed_refresh_clears_tokens_and_signals_once(
        self, service, transport, engine, store, refresh, expired
    ):
        refresh_error = ClientError(ErrorKind.UNAUTHORIZED, "bad refresh token")
        refresh.error = refresh_error
        store.set_tokens("expired", "invalid")
        engine.route("GET", "/orders", (401, {"message": "Token expired"}))

        with pytest.raises(ClientError) as exc_info:
            asyncio.run(transport.get("/orders"))

        error = exc_info.value
        assert error.kind is ErrorKind.UNAUTHORIZED
        assert error.cause is refresh_error
        assert error.url == f"{BASE_URL}/orders"
        assert store.load() == Credentials()
        assert expired == [True]
        assert not service.refresh_in_flight

    def test_cancelled_waiter_does_not_cancel_shared_refresh(
        self, service, transport, engine, store, refresh
    ):
        refresh.delay = 0.05
        store.set_tokens("expired", "valid-refresh")
        engine.route("GET", "/orders", _bearer_only("new-access", {"ok": True}))

        async def run():
            first = asyncio.ensure_future(transport.get("/orders"))
            second = asyncio.ensure_future(transport.get("/orders"))
            await asyncio.sleep(0.01)
            assert service.refresh_in_flight
            first.cancel()
            body = await second
            return first, body

        first, body = asyncio.run(run())

        assert first.cancelled()
        assert body == {"ok": True}
        assert len(refresh.calls) == 1
        assert store.load() == Credentials("new-access", "new-refresh")
        assert not service.refresh_in_flight

    def test_later_401_starts_a_new_refresh(
        self, service, transport, engine, store, refresh
    ):
        store.set_tokens("expired", "r")
        engine.route("GET", "/orders", _bearer_only("new-access"))
        asyncio.run(transport.get("/orders"))

        store.set_tokens("expired-again", "r2")
        asyncio.run(transport.get("/orders"))

        assert refresh.calls == ["r", "r2"]

    def test_replay_rejected_again_does_not_refresh_twice(
        self, service, transport, engine, store, refresh, expired
    ):
        store.set_tokens("expired", "r")
        engine.route("GET", "/orders", (401, {"message": "Still no"}))

        with pytest.raises(ClientError) as exc_info:
            asyncio.run(transport.get("/orders"))

        assert exc_info.value.kind is ErrorKind.UNAUTHORIZED
        assert len(refresh.calls) == 1
        assert len(engine.calls_to("GET", "/orders")) == 2
        assert expired == []

    def test_clear_failure_is_surfaced_as_cause(
        self, transport, engine, refresh, expired
    ):
        refresh.error = ClientError(ErrorKind.UNAUTHORIZED, "nope")
        svc = InterceptorService(
            transport,
            ExplodingStore(),
            refresh,
            on_session_expired=lambda: expired.append(True),
        )
        svc.initialize_interceptors()
        engine.route("GET", "/orders", (401, None))

        with pytest.raises(ClientError) as exc_info:
            asyncio.run(transport.get("/orders"))

        assert exc_info.value.kind is ErrorKind.UNAUTHORIZED
        assert isinstance(exc_info.value.cause, CredentialStoreError)
        assert expired == [True]


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class TestRateLimited:
    def test_retries_once_after_retry_after(self, service, transport, engine, sleep):
        engine.route(
            "GET",
            "/slots",
            (429, None, {"retry-after": "1"}),
            (200, ["09:00"]),
        )

        assert asyncio.run(transport.get("/slots")) == ["09:00"]
        assert sleep.delays == [1.0]
        assert len(engine.calls_to("GET", "/slots")) == 2

    def test_second_429_rejects_without_more_retries(
        self, service, transport, engine, sleep
    ):
        engine.route("GET", "/slots", (429, None, {"retry-after": "1"}))

        with pytest.raises(ClientError) as exc_info:
            asyncio.run(transport.get("/slots"))

        assert exc_info.value.kind is ErrorKind.RATE_LIMITED
        assert exc_info.value.retry_after_seconds == 1.0
        assert sleep.delays == [1.0]
        assert len(engine.calls_to("GET", "/slots")) == 2

    def test_missing_header_waits_fallback(self, service, transport, engine, sleep):
        engine.route("GET", "/slots", (429, None, {}), (200, []))
        asyncio.run(transport.get("/slots"))
        assert sleep.delays == [1.0]

    def test_replay_failure_is_classified(self, service, transport, engine):
        engine.route("POST", "/bookings", (429, None, {"retry-after": "0"}), (500, None))

        with pytest.raises(ClientError) as exc_info:
            asyncio.run(transport.post("/bookings", {"slot": 1}))

        assert exc_info.value.kind is ErrorKind.SERVER_FAULT

    def test_real_sleep_waits_at_least_retry_after(self, transport, engine, store, refresh):
        svc = InterceptorService(transport, store, refresh)
        svc.initialize_interceptors()
        engine.route("GET", "/slots", (429, None, {"retry-after": "1"}), (200, []))

        async def run():
            loop = asyncio.get_running_loop()
            start = loop.time()
            await transport.get("/slots")
            return loop.time() - start

        assert asyncio.run(run()) >= 0.95


# ---------------------------------------------------------------------------
# Non-recoverable errors
# ---------------------------------------------------------------------------


class TestNotRecovered:
    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (400, ErrorKind.CLIENT_FAULT),
            (403, ErrorKind.CLIENT_FAULT),
            (404, ErrorKind.CLIENT_FAULT),
            (500, ErrorKind.SERVER_FAULT),
            (502, ErrorKind.SERVER_FAULT),
        ],
    )
    def test_rejects_immediately(
        self, service, transport, engine, refresh, sleep, status, kind
    ):
        engine.route("GET", "/orders", (status, None))

        with pytest.raises(ClientError) as exc_info:
            asyncio.run(transport.get("/orders"))

        assert exc_info.value.kind is kind
        assert len(engine.calls) == 1
        assert refresh.calls == []
        assert sleep.delays == []

    def test_network_failure_is_not_retried(self, service, transport, engine):
        engine.route(
            "GET", "/orders", TransportFailure("dns", code="ENOTFOUND")
        )
        with pytest.raises(ClientError) as exc_info:
            asyncio.run(transport.get("/orders"))
        assert exc_info.value.kind is ErrorKind.NETWORK
        assert len(engine.calls) == 1


# ---------------------------------------------------------------------------
# End-to-end with the real refresh endpoint client
# ---------------------------------------------------------------------------


class TestOrdersScenario:
    def _wire(self, engine, store, expired):
        transport = Transport(engine=engine, base_url=BASE_URL)
        bare = Transport(engine=engine, base_url=BASE_URL)
        svc = InterceptorService(
            transport,
            store,
            RefreshEndpoint(bare, "/auth/refresh"),
            on_session_expired=lambda: expired.append(True),
        )
        svc.initialize_interceptors()
        return transport

    def test_valid_refresh_token(self, engine, store):
        expired = []
        transport = self._wire(engine, store, expired)
        store.set_tokens("expired", "valid-refresh")

        def refresh_handler(config):
            if config.data == {"refreshToken": "valid-refresh"}:
                return (200, {"accessToken": "fresh", "refreshToken": "rotated"})
            return (401, {"message": "Invalid refresh token"})

        engine.route("POST", "/auth/refresh", refresh_handler)
        engine.route("GET", "/orders", _bearer_only("fresh", {"orders": ["A-1"]}))

        assert asyncio.run(transport.get("/orders")) == {"orders": ["A-1"]}
        assert len(engine.calls_to("GET", "/orders")) == 2
        assert len(engine.calls_to("POST", "/auth/refresh")) == 1
        assert len(engine.calls) == 3
        assert store.load() == Credentials("fresh", "rotated")
        assert expired == []

    def test_invalid_refresh_token(self, engine, store):
        expired = []
        transport = self._wire(engine, store, expired)
        store.set_tokens("expired", "revoked")
        engine.route("POST", "/auth/refresh", (401, {"message": "Invalid refresh token"}))
        engine.route("GET", "/orders", (401, {"message": "Token expired"}))

        with pytest.raises(ClientError) as exc_info:
            asyncio.run(transport.get("/orders"))

        assert exc_info.value.kind is ErrorKind.UNAUTHORIZED
        assert store.load() == Credentials()
        assert expired == [True]
        assert len(engine.calls_to("POST", "/auth/refresh")) == 1
        # The refresh call itself must not carry the stale bearer token.
        assert "Authorization" not in engine.calls_to("POST", "/auth/refresh")[0]["headers"]

    def test_missing_refresh_token_expires_session(self, engine):
        expired = []
        store = TokenStore()
        transport = self._wire(engine, store, expired)
        store.set_tokens("expired", None)
        engine.route("GET", "/orders", (401, None))

        with pytest.raises(ClientError) as exc_info:
            asyncio.run(transport.get("/orders"))

        assert exc_info.value.kind is ErrorKind.UNAUTHORIZED
        assert engine.calls_to("POST", "/auth/refresh") == []
        assert expired == [True]
