"""SAML 2.0 bearer assertion grant (auth type "oauthSamlBearer")."""

import inspect
import time
from collections.abc import Awaitable, Callable

from scimrest.endpoints.models import EndpointConfig
from scimrest.errors import ConfigurationError
from scimrest.grants.base import GrantStrategy, TokenRequest, read_text

SAML_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:saml2-bearer"
DEFAULT_ASSERTION_LIFETIME = 3600

# (certificate, key, issuer, lifetime, subject, audience) -> base64 signed assertion
AssertionSigner = Callable[[str, str, str, int, str, str], str | Awaitable[str]]


class SamlBearerGrant(GrantStrategy):
    """Exchanges a signed SAML assertion for a token.

    Building and signing the assertion is delegated to an injected signer.
    """

    def __init__(self, signer: AssertionSigner | None = None):
        self._signer = signer

    async def build_request(self, endpoint: EndpointConfig, clock=time.time) -> TokenRequest:
        if self._signer is None:
            raise ConfigurationError(
                f"endpoint '{endpoint.endpoint_id}': auth type 'oauthSamlBearer' requires a SAML assertion signer"
            )
        auth = endpoint.auth
        cert = read_text(auth.option("certificate", "cert"), "certificate")
        key = read_text(auth.option("certificate", "key"), "private key")

        client_id = auth.option("saml_payload", "client_id")
        issuer = auth.option("saml_payload", "issuer", default=client_id)
        audience = auth.option("saml_payload", "audience", default=f"scimrest/{endpoint.endpoint_id}")
        subject = auth.option("saml_payload", "user_id")
        try:
            lifetime = int(auth.option("saml_payload", "lifetime", default=DEFAULT_ASSERTION_LIFETIME))
        except (TypeError, ValueError):
            raise ConfigurationError(f"endpoint '{endpoint.endpoint_id}': saml_payload.lifetime must be an integer")

        assertion = self._signer(cert, key, issuer, lifetime, subject, audience)
        if inspect.isawaitable(assertion):
            assertion = await assertion

        token_url = auth.option("token_url")
        return TokenRequest(
            token_url=token_url,
            form={
                "token_url": token_url,
                "grant_type": SAML_BEARER_GRANT,
                "client_id": client_id,
                "company_id": auth.option("saml_payload", "company_id"),
                "assertion": assertion,
            },
        )
