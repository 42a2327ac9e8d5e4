"""Request/response value objects shared by the transport layer."""

from dataclasses import dataclass, field, replace
from typing import Any
from urllib.parse import urlsplit

import httpx

from scimrest.auth.credentials import Credential


@dataclass(frozen=True)
class CallerContext:
    """Who a request is made on behalf of.

    authorization: the caller's own Authorization header (auth passthrough)
    identity: explicit tenant/caller key for per-caller client handles
    """

    authorization: str | None = None
    identity: str | None = None


@dataclass
class RequestOptions:
    """Per-call overrides. Never written back to shared configuration."""

    headers: dict[str, str] = field(default_factory=dict)
    abort_timeout: float | None = None  # seconds for a single attempt
    call_timeout: float | None = None  # seconds for the whole call, retries included
    auth: tuple[str, str] | None = None  # basic auth for absolute-URL calls
    collection: str | None = None  # pagination collection, derived from nextLink if unset


@dataclass
class Response:
    status_code: int
    status_message: str
    body: Any


@dataclass
class ClientHandle:
    """Per-(endpoint, identity) transport state.

    The cache hands out copies; ``http`` is shared between copies, headers
    are not.
    """

    endpoint_id: str
    base_url: str
    base_url_index: int
    headers: dict[str, str]
    http: httpx.AsyncClient
    credential: Credential | None = None
    identity: str | None = None
    adhoc: bool = False  # one-off handle for an absolute URL; owns its http client

    def copy(self) -> "ClientHandle":
        return replace(self, headers=dict(self.headers))


def is_absolute_url(path: str) -> bool:
    parts = urlsplit(path or "")
    return bool(parts.scheme and parts.netloc)
