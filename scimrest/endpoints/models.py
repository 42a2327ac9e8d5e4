"""Endpoint configuration models.

An endpoint is one logical backend: an ordered list of base URLs (failover
priority), an auth descriptor, optional proxy and TLS material, extra
headers and an idle timeout. Configs are parsed once and never mutated.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any
from urllib.parse import urlsplit

from scimrest.errors import ConfigurationError
from scimrest.logging.audit import get_audit_logger

GRAPH_URL = "https://graph.microsoft.com/beta"  # beta returns all user attributes without $select
GOOGLE_URL = "https://www.googleapis.com"


class AuthType(str, Enum):
    NONE = "none"
    BASIC = "basic"
    BEARER = "bearer"
    PASSTHROUGH = "passthrough"
    OAUTH = "oauth"  # client-credentials grant
    TOKEN = "token"  # password-style grant
    OAUTH_SAML_BEARER = "oauthSamlBearer"
    OAUTH_JWT_BEARER = "oauthJwtBearer"

    @property
    def is_oauth(self) -> bool:
        return self.value.startswith("oauth")

    @property
    def uses_token_grant(self) -> bool:
        return self in TOKEN_GRANT_TYPES


TOKEN_GRANT_TYPES = frozenset({
    AuthType.OAUTH,
    AuthType.TOKEN,
    AuthType.OAUTH_SAML_BEARER,
    AuthType.OAUTH_JWT_BEARER,
})


@dataclass(frozen=True)
class AuthDescriptor:
    type: AuthType = AuthType.NONE
    options: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def option(self, *path: str, default: Any = None) -> Any:
        """Walk nested options, e.g. option("certificate", "key")."""
        node: Any = self.options
        for key in path:
            if not isinstance(node, Mapping) or key not in node:
                return default
            node = node[key]
        return node if node not in (None, "") else default


@dataclass(frozen=True)
class ProxyConfig:
    host: str  # http://proxy-host:1234
    username: str = ""
    password: str = ""


@dataclass(frozen=True)
class TLSConfig:
    cert: str = ""  # file paths
    key: str = ""
    ca: str = ""
    reject_unauthorized: bool | None = None  # None = library default (verify)


@dataclass(frozen=True)
class EndpointConfig:
    endpoint_id: str
    base_urls: tuple[str, ...]
    auth: AuthDescriptor = field(default_factory=AuthDescriptor)
    proxy: ProxyConfig | None = None
    tls: TLSConfig | None = None
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    idle_timeout: int | None = None

    @property
    def is_oauth(self) -> bool:
        return self.auth.type.is_oauth


def parse_endpoint(endpoint_id: str, data: Mapping[str, Any]) -> EndpointConfig:
    """Build an EndpointConfig from its JSON form.

    Raises:
        ConfigurationError: On any missing or invalid setting.
    """
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"endpoint '{endpoint_id}': configuration must be an object")

    auth = _parse_auth(endpoint_id, data.get("auth") or {})
    base_urls = _parse_base_urls(endpoint_id, data.get("base_urls"), auth)
    _validate_auth_options(endpoint_id, auth)

    headers = data.get("headers") or {}
    if not isinstance(headers, Mapping):
        raise ConfigurationError(f"endpoint '{endpoint_id}': headers must be an object")

    idle_timeout = data.get("idle_timeout")
    if idle_timeout is not None:
        try:
            idle_timeout = int(idle_timeout)
        except (TypeError, ValueError):
            raise ConfigurationError(f"endpoint '{endpoint_id}': idle_timeout must be an integer")
        if idle_timeout < 2:
            raise ConfigurationError(f"endpoint '{endpoint_id}': idle_timeout must be at least 2 seconds")

    return EndpointConfig(
        endpoint_id=endpoint_id,
        base_urls=base_urls,
        auth=auth,
        proxy=_parse_proxy(endpoint_id, data.get("proxy")),
        tls=_parse_tls(endpoint_id, data.get("tls")),
        headers=MappingProxyType({str(k): str(v) for k, v in headers.items()}),
        idle_timeout=idle_timeout,
    )


def parse_endpoints(document: Mapping[str, Any]) -> dict[str, EndpointConfig]:
    """Parse a {"endpoints": {id: {...}}} document."""
    entries = document.get("endpoints") if isinstance(document, Mapping) else None
    if not isinstance(entries, Mapping) or not entries:
        raise ConfigurationError("missing configuration 'endpoints.<name>'")
    return {name: parse_endpoint(name, entry) for name, entry in entries.items()}


def _parse_auth(endpoint_id: str, raw: Mapping[str, Any]) -> AuthDescriptor:
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"endpoint '{endpoint_id}': auth must be an object")
    type_name = raw.get("type") or AuthType.NONE.value
    try:
        auth_type = AuthType(type_name)
    except ValueError:
        raise ConfigurationError(f"endpoint '{endpoint_id}': unknown auth.type '{type_name}'")

    options = raw.get("options") or {}
    if not isinstance(options, Mapping):
        raise ConfigurationError(f"endpoint '{endpoint_id}': auth.options must be an object")
    descriptor = AuthDescriptor(type=auth_type, options=MappingProxyType(dict(options)))

    # "oauth" with certificate or service account key is really a JWT bearer grant
    if auth_type is AuthType.OAUTH:
        if descriptor.option("tenant_id"):
            if (
                descriptor.option("certificate", "cert")
                and descriptor.option("certificate", "key")
                and descriptor.option("client_id")
            ):
                descriptor = AuthDescriptor(type=AuthType.OAUTH_JWT_BEARER, options=descriptor.options)
        elif descriptor.option("service_account_key_file"):
            descriptor = AuthDescriptor(type=AuthType.OAUTH_JWT_BEARER, options=descriptor.options)

    return descriptor


def _parse_base_urls(endpoint_id: str, raw: Any, auth: AuthDescriptor) -> tuple[str, ...]:
    if raw is None or (isinstance(raw, list) and not raw):
        if auth.type in (AuthType.OAUTH, AuthType.OAUTH_JWT_BEARER):
            if auth.option("tenant_id"):
                raw = [GRAPH_URL]
            elif auth.option("service_account_key_file"):
                raw = [GOOGLE_URL]
    if not isinstance(raw, list) or not raw:
        raise ConfigurationError(f"missing configuration endpoints.{endpoint_id}.base_urls")

    urls = []
    for url in raw:
        parts = urlsplit(str(url))
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigurationError(f"endpoint '{endpoint_id}': invalid base URL '{url}'")
        urls.append(str(url).rstrip("/"))
    return tuple(urls)


def _parse_proxy(endpoint_id: str, raw: Any) -> ProxyConfig | None:
    if not raw:
        return None
    if not isinstance(raw, Mapping) or not raw.get("host"):
        raise ConfigurationError(f"endpoint '{endpoint_id}': proxy.host is required")
    return ProxyConfig(
        host=raw["host"],
        username=raw.get("username", "") or "",
        password=raw.get("password", "") or "",
    )


def _parse_tls(endpoint_id: str, raw: Any) -> TLSConfig | None:
    if not raw:
        return None
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"endpoint '{endpoint_id}': tls must be an object")
    reject = raw.get("reject_unauthorized")
    if not isinstance(reject, bool):
        if reject is not None:
            get_audit_logger().warning(
                "Ignoring non-boolean tls.reject_unauthorized",
                extra={"audit_data": {"endpoint": endpoint_id, "value": repr(reject)}},
            )
        reject = None
    return TLSConfig(
        cert=raw.get("cert", "") or "",
        key=raw.get("key", "") or "",
        ca=raw.get("ca", "") or "",
        reject_unauthorized=reject,
    )


def _validate_auth_options(endpoint_id: str, auth: AuthDescriptor) -> None:
    prefix = f"endpoints.{endpoint_id}.auth.options"

    def require(*paths: tuple[str, ...]) -> None:
        missing = [".".join(p) for p in paths if not auth.option(*p)]
        if missing:
            raise ConfigurationError(
                f"auth.type '{auth.type.value}' - missing configuration {prefix}.{'/'.join(missing)}"
            )

    if auth.type is AuthType.BASIC:
        require(("username",), ("password",))
    elif auth.type is AuthType.BEARER:
        require(("token",))
    elif auth.type is AuthType.OAUTH:
        require(("client_id",), ("client_secret",))
        if not auth.option("tenant_id"):
            require(("token_url",))
    elif auth.type is AuthType.TOKEN:
        require(("token_url",), ("password",))
    elif auth.type is AuthType.OAUTH_SAML_BEARER:
        require(
            ("token_url",),
            ("saml_payload", "client_id"),
            ("saml_payload", "company_id"),
            ("saml_payload", "user_id"),
            ("certificate", "cert"),
            ("certificate", "key"),
        )
    elif auth.type is AuthType.OAUTH_JWT_BEARER:
        if auth.option("tenant_id"):
            require(("client_id",), ("certificate", "cert"), ("certificate", "key"))
        elif auth.option("service_account_key_file"):
            require(("jwt_payload", "scope"), ("jwt_payload", "subject"))
        else:
            require(("token_url",), ("certificate", "key"))
            if not isinstance(auth.option("jwt_payload"), Mapping):
                raise ConfigurationError(
                    f"auth.type '{auth.type.value}' - missing configuration {prefix}.jwt_payload"
                )
