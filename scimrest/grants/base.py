"""Abstract base for token grant strategies."""

import json
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from urllib.parse import urlsplit

import httpx

from scimrest.auth.credentials import Credential
from scimrest.endpoints.models import EndpointConfig
from scimrest.errors import ConfigurationError, TokenAcquisitionError

DEFAULT_EXPIRES_IN = 3600  # seconds, when the token endpoint omits expires_in
DEFAULT_LOGIN_PROVIDER = "microsoftonline.com"


@dataclass
class TokenRequest:
    token_url: str
    form: dict[str, str] = field(default_factory=dict)


class GrantStrategy(ABC):
    """Base class for grant implementations.

    Subclasses only describe the token request; posting it and
    normalizing the response is shared.
    """

    # Response fields accepted as the access token, in priority order
    token_fields: tuple[str, ...] = ("access_token",)

    @abstractmethod
    async def build_request(
        self, endpoint: EndpointConfig, clock: Callable[[], float] = time.time
    ) -> TokenRequest:
        """Build the token endpoint URL and form for this grant.

        ``clock`` stamps any assertion this grant signs.

        Raises:
            ConfigurationError: If the auth options cannot produce a request.
        """
        ...

    async def acquire(
        self,
        endpoint: EndpointConfig,
        http: httpx.AsyncClient,
        clock: Callable[[], float],
    ) -> Credential:
        """Exchange the grant for a Credential.

        Raises:
            TokenAcquisitionError: Network failure, error payload or no token.
        """
        request = await self.build_request(endpoint, clock)
        if not request.token_url:
            raise ConfigurationError(f"auth type '{endpoint.auth.type.value}' - missing token_url")

        headers = {
            **endpoint.headers,
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        try:
            response = await http.post(request.token_url, data=request.form, headers=headers)
        except httpx.HTTPError as e:
            raise TokenAcquisitionError(
                f"HTTP error requesting token from {request.token_url}: {e}",
                endpoint.endpoint_id,
            ) from e

        payload = _decode(response, endpoint.endpoint_id, request.token_url)
        return self.normalize(payload, endpoint, response.status_code, clock())

    def normalize(
        self,
        payload: dict,
        endpoint: EndpointConfig,
        status_code: int,
        now: float,
    ) -> Credential:
        """Turn a token endpoint payload into a Credential.

        valid_until is computed from expires_in against our own clock;
        expires_on is ignored since the server's clock may be skewed.
        """
        if payload.get("error"):
            description = payload.get("error_description") or payload["error"]
            raise TokenAcquisitionError(f"Token endpoint error: {description}", endpoint.endpoint_id)
        if not 200 <= status_code <= 299:
            raise TokenAcquisitionError(
                f"Token endpoint returned HTTP {status_code}", endpoint.endpoint_id
            )

        token = next((payload[f] for f in self.token_fields if payload.get(f)), None)
        if not token:
            raise TokenAcquisitionError("Retrieved invalid token response", endpoint.endpoint_id)

        try:
            expires_in = int(payload.get("expires_in", DEFAULT_EXPIRES_IN))
        except (TypeError, ValueError):
            raise TokenAcquisitionError(
                f"Invalid expires_in in token response: {payload.get('expires_in')!r}",
                endpoint.endpoint_id,
            )
        return Credential(access_token=str(token), valid_until=now + expires_in)


def _decode(response: httpx.Response, endpoint_id: str, token_url: str) -> dict:
    if not response.content:
        raise TokenAcquisitionError(f"No data retrieved from: POST {token_url}", endpoint_id)
    try:
        payload = response.json()
    except (ValueError, json.JSONDecodeError) as e:
        raise TokenAcquisitionError(f"Invalid token response format: {e}", endpoint_id) from e
    if not isinstance(payload, dict):
        raise TokenAcquisitionError("Invalid token response format: not an object", endpoint_id)
    return payload


def read_text(path: str, what: str) -> str:
    """Read key/certificate material from disk."""
    try:
        with open(path, encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise ConfigurationError(f"cannot read {what} file {path!r}: {e}") from e
    if not content.strip():
        raise ConfigurationError(f"{what} file {path!r} is empty")
    return content


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"
