"""Client cache: lazily built, memoized transport state per endpoint.

Handles are keyed by (endpoint id, caller identity). A handle embeds the
credential it was built with; when that credential gets within the
refresh margin the Authorization header is patched in place, and if the
refresh fails the handle is dropped so the next call rebuilds it.
Passthrough endpoints carry no credential of their own and get a fresh,
uncached handle per call.
"""

import base64
import hashlib

import httpx

from scimrest.auth.tokens import TokenManager
from scimrest.endpoints.models import AuthType, EndpointConfig
from scimrest.endpoints.store import EndpointRegistry
from scimrest.errors import ConfigurationError, ConnectorError
from scimrest.logging.audit import get_audit_logger
from scimrest.transport.http import build_http_client
from scimrest.transport.models import CallerContext, ClientHandle, RequestOptions, is_absolute_url

HandleKey = tuple[str, str | None]


def basic_authorization(username: str, password: str) -> str:
    raw = f"{username}:{password}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def derive_identity(authorization: str) -> str:
    """Stable, non-reversible cache key for a delegated credential."""
    return hashlib.sha256(authorization.encode("utf-8")).hexdigest()[:32]


class ClientCache:

    def __init__(
        self,
        registry: EndpointRegistry,
        tokens: TokenManager,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._registry = registry
        self._tokens = tokens
        self._transport = transport
        self._handles: dict[HandleKey, ClientHandle] = {}
        # Connection pools outlive handle invalidation: proxy/TLS never change
        self._pools: dict[str, httpx.AsyncClient] = {}
        # Passthrough handles are never stored; only their failover position is
        self._passthrough_index: dict[str, int] = {}

    async def get_client(
        self,
        endpoint_id: str,
        method: str,
        path: str,
        options: RequestOptions | None = None,
        caller: CallerContext | None = None,
    ) -> ClientHandle:
        """Return a private copy of the handle for this call.

        Absolute-URL paths get a one-off, uncached handle.
        """
        options = options or RequestOptions()
        if is_absolute_url(path):
            return self._adhoc_handle(endpoint_id, options)

        logger = get_audit_logger()
        endpoint = self._registry.get(endpoint_id)
        key = self.handle_key(endpoint, caller)

        if endpoint.auth.type is AuthType.PASSTHROUGH:
            return await self._passthrough_handle(endpoint, key[1], caller, options)

        handle = self._handles.get(key)

        if handle is None:
            logger.debug(
                "Building client",
                extra={"audit_data": {"endpoint": endpoint_id, "method": method, "path": path}},
            )
            handle = await self._build(endpoint, key[1], caller)
            # A concurrent caller may have finished building first
            handle = self._handles.setdefault(key, handle)
        elif handle.credential is not None and not handle.credential.is_fresh(self._tokens.clock()):
            logger.debug(
                "Access token about to expire, refreshing",
                extra={"audit_data": {
                    "endpoint": endpoint_id,
                    "expires_in": round(handle.credential.valid_until - self._tokens.clock()),
                }},
            )
            try:
                credential = await self._tokens.get_credential(endpoint, key[1])
            except ConnectorError:
                self._handles.pop(key, None)
                raise
            handle.credential = credential
            handle.headers["Authorization"] = credential.authorization

        result = handle.copy()
        # Delegated identity overrides the cached header for this call only
        if caller is not None and caller.authorization and endpoint.auth.type is not AuthType.PASSTHROUGH:
            result.headers["Authorization"] = caller.authorization
        result.headers.update(options.headers)
        return result

    def handle_key(self, endpoint: EndpointConfig, caller: CallerContext | None) -> HandleKey:
        if caller is None:
            return (endpoint.endpoint_id, None)
        if endpoint.auth.type is AuthType.PASSTHROUGH and caller.authorization:
            return (endpoint.endpoint_id, caller.identity or derive_identity(caller.authorization))
        return (endpoint.endpoint_id, caller.identity)

    def select_base_url(self, endpoint: EndpointConfig, caller: CallerContext | None, index: int) -> None:
        """Remember the base URL a failover moved to."""
        if endpoint.auth.type is AuthType.PASSTHROUGH:
            self._passthrough_index[endpoint.endpoint_id] = index
            return
        handle = self._handles.get(self.handle_key(endpoint, caller))
        if handle is not None:
            handle.base_url_index = index
            handle.base_url = endpoint.base_urls[index]

    def invalidate(self, endpoint: EndpointConfig, caller: CallerContext | None = None) -> None:
        """Drop the cached handle; the next call rebuilds credentials from scratch."""
        if self._handles.pop(self.handle_key(endpoint, caller), None) is not None:
            get_audit_logger().debug(
                "Client invalidated", extra={"audit_data": {"endpoint": endpoint.endpoint_id}}
            )

    def cached_keys(self) -> list[HandleKey]:
        return list(self._handles)

    async def aclose(self) -> None:
        for http in self._pools.values():
            await http.aclose()
        self._pools.clear()
        self._handles.clear()
        self._passthrough_index.clear()

    async def _build(
        self, endpoint: EndpointConfig, identity: str | None, caller: CallerContext | None
    ) -> ClientHandle:
        auth = endpoint.auth
        headers = {"Accept": "application/json", **endpoint.headers}
        credential = None

        if auth.type is AuthType.BASIC:
            headers["Authorization"] = basic_authorization(auth.option("username"), auth.option("password"))
        elif auth.type is AuthType.BEARER:
            headers["Authorization"] = f"Bearer {auth.option('token')}"
        elif auth.type.uses_token_grant:
            credential = await self._tokens.get_credential(endpoint, identity)
            headers["Authorization"] = credential.authorization
        elif auth.type is AuthType.PASSTHROUGH:
            if caller is None or not caller.authorization:
                raise ConfigurationError(
                    f"endpoint '{endpoint.endpoint_id}' uses auth passthrough but the caller sent no authorization"
                )
            headers["Authorization"] = caller.authorization

        return ClientHandle(
            endpoint_id=endpoint.endpoint_id,
            base_url=endpoint.base_urls[0],
            base_url_index=0,
            headers=headers,
            http=self._pool(endpoint),
            credential=credential,
            identity=identity,
        )

    async def _passthrough_handle(
        self,
        endpoint: EndpointConfig,
        identity: str | None,
        caller: CallerContext | None,
        options: RequestOptions,
    ) -> ClientHandle:
        """Per-call handle for a delegated identity; never stored."""
        handle = await self._build(endpoint, identity, caller)
        index = self._passthrough_index.get(endpoint.endpoint_id, 0) % len(endpoint.base_urls)
        handle.base_url_index = index
        handle.base_url = endpoint.base_urls[index]
        handle.headers.update(options.headers)
        return handle

    def _pool(self, endpoint: EndpointConfig) -> httpx.AsyncClient:
        http = self._pools.get(endpoint.endpoint_id)
        if http is None or http.is_closed:
            http = build_http_client(endpoint, self._transport)
            self._pools[endpoint.endpoint_id] = http
        return http

    def _adhoc_handle(self, endpoint_id: str, options: RequestOptions) -> ClientHandle:
        try:
            endpoint = self._registry.get(endpoint_id)
        except ConfigurationError:
            endpoint = None  # ad hoc calls do not need a registered endpoint

        headers = {"Accept": "application/json"}
        if options.auth:
            headers["Authorization"] = basic_authorization(*options.auth)
        headers.update(options.headers)
        return ClientHandle(
            endpoint_id=endpoint_id,
            base_url="",
            base_url_index=0,
            headers=headers,
            http=build_http_client(endpoint, self._transport),
            adhoc=True,
        )
