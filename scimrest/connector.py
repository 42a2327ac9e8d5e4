"""RestConnector: the single entry point REST-backed adapters use.

Owns one token manager, one client cache and one cursor tracker, so two
connector instances never share credentials, handles or cursors.
"""

import asyncio
import time
from collections.abc import Callable
from typing import Any

import httpx

from scimrest.auth.credentials import Credential, CredentialStore
from scimrest.auth.tokens import TokenManager
from scimrest.endpoints.factory import get_endpoint_registry
from scimrest.endpoints.store import EndpointRegistry
from scimrest.grants.saml_bearer import AssertionSigner
from scimrest.transport.client_cache import ClientCache
from scimrest.transport.executor import RequestExecutor, Sleep
from scimrest.transport.models import CallerContext, RequestOptions, Response
from scimrest.transport.pagination import CursorTracker


class RestConnector:
    """Resilient outbound REST client for configured endpoints.

    Usage:
        async with RestConnector(registry) as connector:
            response = await connector.execute("entra", "GET", "/users?$top=50")
    """

    def __init__(
        self,
        registry: EndpointRegistry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        saml_signer: AssertionSigner | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Sleep = asyncio.sleep,
    ):
        self.registry = registry or get_endpoint_registry()
        self.tokens = TokenManager(CredentialStore(clock), transport=transport, saml_signer=saml_signer)
        self.clients = ClientCache(self.registry, self.tokens, transport=transport)
        self.cursors = CursorTracker()
        self._executor = RequestExecutor(self.registry, self.clients, self.tokens, self.cursors, sleep=sleep)

    async def execute(
        self,
        endpoint_id: str,
        method: str,
        path: str,
        body: Any = None,
        caller: CallerContext | None = None,
        options: RequestOptions | None = None,
    ) -> Response:
        return await self._executor.execute(endpoint_id, method, path, body, caller, options)

    def next_page_path(self, endpoint_id: str, collection: str, offset: int | None) -> str | None:
        """Path to request for a listing resumed at ``offset``; None means start over."""
        return self.cursors.resolve_page(endpoint_id, collection, offset)

    async def get_credential(self, endpoint_id: str) -> Credential:
        return await self.tokens.get_credential(self.registry.get(endpoint_id))

    async def aclose(self) -> None:
        await self.clients.aclose()

    async def __aenter__(self) -> "RestConnector":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
