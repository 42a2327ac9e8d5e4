"""JWT bearer grant (auth type "oauthJwtBearer").

Three flavours, picked from the auth options:
- tenant_id: Entra ID certificate credential (client assertion, x5t header)
- service_account_key_file: Google service account key
- otherwise: generic JWT from explicit token_url, jwt_payload and signing key
"""

import base64
import json
import time
import uuid

import jwt
from cryptography import x509
from cryptography.hazmat.primitives import hashes

from scimrest.endpoints.models import EndpointConfig
from scimrest.errors import ConfigurationError
from scimrest.grants.base import (
    DEFAULT_LOGIN_PROVIDER,
    GrantStrategy,
    TokenRequest,
    origin_of,
    read_text,
)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
ASSERTION_LIFETIME = 3600
CLOCK_SKEW = 60  # iat/nbf are backdated by this much


class JwtBearerGrant(GrantStrategy):

    async def build_request(self, endpoint: EndpointConfig, clock=time.time) -> TokenRequest:
        auth = endpoint.auth
        now = int(clock())
        if auth.option("tenant_id"):
            return self._entra_request(endpoint, now)
        if auth.option("service_account_key_file"):
            return self._service_account_request(endpoint, now)
        return self._generic_request(endpoint, now)

    def _entra_request(self, endpoint: EndpointConfig, now: int) -> TokenRequest:
        auth = endpoint.auth
        tenant_id = auth.option("tenant_id")
        provider = auth.option("provider", default=DEFAULT_LOGIN_PROVIDER)
        client_id = auth.option("client_id")
        private_key = read_text(auth.option("certificate", "key"), "private key")
        cert = read_text(auth.option("certificate", "cert"), "certificate")

        claims = {
            "sub": client_id,
            "iss": client_id,
            "aud": f"https://login.{provider}/{tenant_id}/v2.0",
            "iat": now - CLOCK_SKEW,
            "nbf": now - CLOCK_SKEW,
            "exp": now + ASSERTION_LIFETIME,
            "jti": str(uuid.uuid4()),
        }
        assertion = _sign(endpoint, claims, private_key, {"x5t": certificate_thumbprint(cert)})

        return TokenRequest(
            token_url=f"https://login.{provider}/{tenant_id}/oauth2/v2.0/token",
            form={
                "grant_type": "client_credentials",
                "scope": auth.option("scope", default=origin_of(endpoint.base_urls[0]) + "/.default"),
                "client_id": client_id,
                "client_assertion_type": CLIENT_ASSERTION_TYPE,
                "client_assertion": assertion,
            },
        )

    def _service_account_request(self, endpoint: EndpointConfig, now: int) -> TokenRequest:
        auth = endpoint.auth
        key_file = auth.option("service_account_key_file")
        try:
            key = json.loads(read_text(key_file, "service account key"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"service_account_key_file error: {e}") from e
        for field in ("token_uri", "client_email", "private_key"):
            if not key.get(field):
                raise ConfigurationError(f"service_account_key_file {key_file!r} is missing '{field}'")

        claims = {
            "sub": auth.option("jwt_payload", "subject"),
            "iss": key["client_email"],
            "aud": key["token_uri"],
            "iat": now - CLOCK_SKEW,
            "exp": now + ASSERTION_LIFETIME,
            "scope": auth.option("jwt_payload", "scope"),
        }
        kid = key.get("private_key_id") or key.get("client_id")
        assertion = _sign(endpoint, claims, key["private_key"], {"kid": kid} if kid else {})

        return TokenRequest(
            token_url=key["token_uri"],
            form={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
        )

    def _generic_request(self, endpoint: EndpointConfig, now: int) -> TokenRequest:
        auth = endpoint.auth
        private_key = read_text(auth.option("certificate", "key"), "private key")

        claims = dict(auth.option("jwt_payload"))
        claims.setdefault("iat", now - CLOCK_SKEW)
        claims.setdefault("exp", now + ASSERTION_LIFETIME)

        return TokenRequest(
            token_url=auth.option("token_url"),
            form={
                "grant_type": JWT_BEARER_GRANT,
                "assertion": _sign(endpoint, claims, private_key, {}),
            },
        )


def certificate_thumbprint(pem_cert: str) -> str:
    """Base64url (unpadded) SHA-1 thumbprint of the certificate's DER form."""
    try:
        cert = x509.load_pem_x509_certificate(pem_cert.encode("utf-8"))
    except ValueError as e:
        raise ConfigurationError(f"invalid PEM certificate: {e}") from e
    digest = cert.fingerprint(hashes.SHA1())
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def _sign(endpoint: EndpointConfig, claims: dict, private_key: str, headers: dict) -> str:
    try:
        return jwt.encode(claims, private_key, algorithm="RS256", headers={"typ": "JWT", **headers})
    except (ValueError, TypeError, jwt.PyJWTError) as e:
        raise ConfigurationError(
            f"endpoint '{endpoint.endpoint_id}': cannot sign JWT assertion: {e}"
        ) from e
