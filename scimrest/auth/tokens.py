"""Token manager: one valid credential per endpoint, one token request at a time.

Acquisition is serialized by a single lock per manager (not per
endpoint). Callers that find the cached credential inside the refresh
margin queue on the lock and re-check the cache once they hold it, so a
burst of callers racing on expiry produces exactly one token request.
"""

import asyncio

import httpx

from scimrest.auth.credentials import Credential, CredentialStore
from scimrest.endpoints.models import EndpointConfig
from scimrest.errors import TokenAcquisitionError
from scimrest.grants.base import GrantStrategy
from scimrest.grants.registry import create_strategy
from scimrest.grants.saml_bearer import AssertionSigner
from scimrest.logging.audit import RequestTimer, get_audit_logger
from scimrest.transport.http import build_http_client


class TokenManager:
    """Obtains and caches access credentials for token-grant endpoints.

    Never retries: failures surface as TokenAcquisitionError (or
    ConfigurationError for bad auth options) and the request executor
    decides whether to fail over.
    """

    def __init__(
        self,
        store: CredentialStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        saml_signer: AssertionSigner | None = None,
    ):
        self.store = store or CredentialStore()
        self._transport = transport
        self._saml_signer = saml_signer
        self._lock = asyncio.Lock()
        self._strategies: dict[str, GrantStrategy] = {}

    @property
    def clock(self):
        return self.store.clock

    @property
    def is_acquiring(self) -> bool:
        return self._lock.locked()

    async def get_credential(
        self, endpoint: EndpointConfig, caller_identity: str | None = None
    ) -> Credential:
        """Return a credential valid for at least the refresh margin."""
        cached = self.store.fresh(endpoint.endpoint_id)
        if cached is not None:
            return cached

        async with self._lock:
            # Another caller may have refreshed while we waited
            cached = self.store.fresh(endpoint.endpoint_id)
            if cached is not None:
                return cached

            credential = await self._acquire(endpoint, caller_identity)
            self.store.put(endpoint.endpoint_id, credential)
            return credential

    def invalidate(self, endpoint_id: str) -> None:
        """Drop the cached credential so the next call re-acquires."""
        self.store.invalidate(endpoint_id)

    async def _acquire(self, endpoint: EndpointConfig, caller_identity: str | None) -> Credential:
        logger = get_audit_logger()
        strategy = self._strategy_for(endpoint)

        try:
            with RequestTimer() as timer:
                async with build_http_client(endpoint, self._transport) as http:
                    credential = await strategy.acquire(endpoint, http, self.clock)
        except TokenAcquisitionError as e:
            logger.warning(
                "Token acquisition failed",
                extra={"audit_data": {
                    "endpoint": endpoint.endpoint_id,
                    "auth_type": endpoint.auth.type.value,
                    "error": str(e),
                }},
            )
            raise

        logger.info(
            "Access token retrieved",
            extra={"audit_data": {
                "endpoint": endpoint.endpoint_id,
                "auth_type": endpoint.auth.type.value,
                "caller_identity": caller_identity,
                "expires_in": round(credential.valid_until - self.clock()),
                "latency_ms": timer.elapsed_ms,
            }},
        )
        return credential

    def _strategy_for(self, endpoint: EndpointConfig) -> GrantStrategy:
        auth_type = endpoint.auth.type
        if auth_type.value not in self._strategies:
            self._strategies[auth_type.value] = create_strategy(
                auth_type, endpoint.endpoint_id, saml_signer=self._saml_signer
            )
        return self._strategies[auth_type.value]
