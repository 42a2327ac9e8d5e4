"""Tests for scimrest/transport/client_cache.py: ClientCache."""

import base64

import httpx
import pytest

from scimrest.auth.credentials import CredentialStore
from scimrest.auth.tokens import TokenManager
from scimrest.errors import ConfigurationError, TokenAcquisitionError
from scimrest.transport.client_cache import ClientCache, derive_identity
from scimrest.transport.models import CallerContext, RequestOptions


@pytest.fixture
def tokens(backend, clock):
    return TokenManager(CredentialStore(clock), transport=backend.transport())


@pytest.fixture
async def cache(registry, tokens, backend):
    cache = ClientCache(registry, tokens, transport=backend.transport())
    yield cache
    await cache.aclose()


class TestBuild:

    async def test_no_auth(self, cache):
        handle = await cache.get_client("plain", "GET", "/users")
        assert handle.base_url == "https://api-1.example.com/v1"
        assert handle.base_url_index == 0
        assert "Authorization" not in handle.headers
        assert handle.headers["Accept"] == "application/json"

    async def test_basic_auth(self, cache):
        handle = await cache.get_client("basic", "GET", "/users")
        expected = base64.b64encode(b"svc:s3cret").decode("ascii")
        assert handle.headers["Authorization"] == f"Basic {expected}"

    async def test_oauth_uses_token_manager(self, cache, backend):
        handle = await cache.get_client("graph", "GET", "/users")
        assert handle.headers["Authorization"] == "Bearer token-1"
        assert handle.credential.access_token == "token-1"
        assert backend.token_exchanges == 1

    async def test_endpoint_headers_merged(self, cache):
        handle = await cache.get_client("legacy", "GET", "/users")
        assert handle.headers["X-Tenant"] == "acme"
        assert handle.headers["Authorization"] == "Bearer token-1"

    async def test_memoized(self, cache, backend):
        await cache.get_client("graph", "GET", "/users")
        await cache.get_client("graph", "GET", "/groups")
        assert backend.token_exchanges == 1
        assert cache.cached_keys() == [("graph", None)]

    async def test_unknown_endpoint(self, cache):
        with pytest.raises(ConfigurationError, match="unsupported endpoint"):
            await cache.get_client("nope", "GET", "/users")


class TestCopyOnRead:

    async def test_per_call_headers_do_not_leak(self, cache):
        first = await cache.get_client("plain", "GET", "/users", RequestOptions(headers={"X-Trace": "1"}))
        first.headers["X-Mutated"] = "yes"
        second = await cache.get_client("plain", "GET", "/users")
        assert first.headers["X-Trace"] == "1"
        assert "X-Trace" not in second.headers
        assert "X-Mutated" not in second.headers

    async def test_http_client_shared(self, cache):
        first = await cache.get_client("plain", "GET", "/users")
        second = await cache.get_client("plain", "GET", "/users")
        assert first.http is second.http


class TestRefresh:

    async def test_patches_authorization_inside_margin(self, cache, backend, clock):
        await cache.get_client("graph", "GET", "/users")
        clock.advance(3600 - 29)

        handle = await cache.get_client("graph", "GET", "/users")

        assert handle.headers["Authorization"] == "Bearer token-2"
        assert backend.token_exchanges == 2
        assert cache.cached_keys() == [("graph", None)]

    async def test_no_refresh_outside_margin(self, cache, backend, clock):
        await cache.get_client("graph", "GET", "/users")
        clock.advance(3600 - 31)
        handle = await cache.get_client("graph", "GET", "/users")
        assert handle.headers["Authorization"] == "Bearer token-1"
        assert backend.token_exchanges == 1

    async def test_refresh_failure_drops_handle(self, cache, backend, clock):
        await cache.get_client("graph", "GET", "/users")
        clock.advance(3600)
        backend.token_response = httpx.Response(500, json={"error": "server_error"})

        with pytest.raises(TokenAcquisitionError):
            await cache.get_client("graph", "GET", "/users")
        assert cache.cached_keys() == []


class TestPassthrough:

    async def test_requires_caller_authorization(self, cache):
        with pytest.raises(ConfigurationError, match="passthrough"):
            await cache.get_client("delegated", "GET", "/users")

    async def test_distinct_callers_distinct_handles(self, cache):
        alice = CallerContext(authorization="Basic YWxpY2U6cHc=")
        bob = CallerContext(authorization="Basic Ym9iOnB3")

        a = await cache.get_client("delegated", "GET", "/users", caller=alice)
        b = await cache.get_client("delegated", "GET", "/users", caller=bob)

        assert a.headers["Authorization"] == alice.authorization
        assert b.headers["Authorization"] == bob.authorization
        assert a.identity == derive_identity(alice.authorization)
        assert b.identity == derive_identity(bob.authorization)
        assert cache.cached_keys() == []

    async def test_many_callers_leave_nothing_cached(self, cache):
        for n in range(100):
            caller = CallerContext(authorization=f"Bearer user-{n}")
            handle = await cache.get_client("delegated", "GET", "/users", caller=caller)
            assert handle.headers["Authorization"] == f"Bearer user-{n}"

        assert cache.cached_keys() == []

    async def test_callers_share_one_connection_pool(self, cache):
        a = await cache.get_client("delegated", "GET", "/users", caller=CallerContext(authorization="Bearer a"))
        b = await cache.get_client("delegated", "GET", "/users", caller=CallerContext(authorization="Bearer b"))
        assert a.http is b.http
        assert not a.adhoc

    async def test_identity_is_not_the_secret(self):
        authorization = "Bearer super-secret"
        assert "super-secret" not in derive_identity(authorization)
        assert derive_identity(authorization) == derive_identity(authorization)

    async def test_override_on_non_passthrough_is_per_call(self, cache):
        caller = CallerContext(authorization="Bearer delegated")
        overridden = await cache.get_client("graph", "GET", "/users", caller=caller)
        plain = await cache.get_client("graph", "GET", "/users")

        assert overridden.headers["Authorization"] == "Bearer delegated"
        assert plain.headers["Authorization"] == "Bearer token-1"


class TestAdhoc:

    async def test_absolute_url_is_uncached(self, cache):
        options = RequestOptions(auth=("u", "p"), headers={"X-Extra": "1"})
        handle = await cache.get_client("anything", "GET", "https://other.example.com/api", options)
        try:
            assert handle.adhoc is True
            assert handle.headers["Authorization"].startswith("Basic ")
            assert handle.headers["X-Extra"] == "1"
            assert cache.cached_keys() == []
        finally:
            await handle.http.aclose()


class TestInvalidateAndSelect:

    async def test_invalidate_rebuilds(self, cache, registry, tokens, backend):
        await cache.get_client("graph", "GET", "/users")
        cache.invalidate(registry.get("graph"))
        tokens.invalidate("graph")
        handle = await cache.get_client("graph", "GET", "/users")
        assert handle.headers["Authorization"] == "Bearer token-2"

    async def test_select_base_url_sticks(self, cache, registry):
        await cache.get_client("graph", "GET", "/users")
        cache.select_base_url(registry.get("graph"), None, 2)
        handle = await cache.get_client("graph", "GET", "/users")
        assert handle.base_url_index == 2
        assert handle.base_url == "https://graph-3.example.com/beta"

    async def test_aclose_closes_pools(self, cache):
        handle = await cache.get_client("plain", "GET", "/users")
        await cache.aclose()
        assert handle.http.is_closed
        assert cache.cached_keys() == []
