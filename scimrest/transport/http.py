"""httpx client construction: proxy and TLS per endpoint."""

import ssl

import httpx

from scimrest.endpoints.models import EndpointConfig, ProxyConfig, TLSConfig
from scimrest.errors import ConfigurationError


def build_ssl_context(tls: TLSConfig | None) -> ssl.SSLContext | bool:
    """Translate TLS material into an httpx ``verify`` value."""
    if tls is None:
        return True
    try:
        context = ssl.create_default_context(cafile=tls.ca or None)
        if tls.cert:
            context.load_cert_chain(tls.cert, tls.key or None)
    except (OSError, ssl.SSLError) as e:
        raise ConfigurationError(f"tls configuration error: {e}") from e
    if tls.reject_unauthorized is False:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def build_proxy(proxy: ProxyConfig | None) -> httpx.Proxy | None:
    if proxy is None:
        return None
    auth = (proxy.username, proxy.password) if proxy.username and proxy.password else None
    return httpx.Proxy(proxy.host, auth=auth)


def build_http_client(
    endpoint: EndpointConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an AsyncClient honouring the endpoint's proxy and TLS settings.

    Request deadlines are enforced by the caller, so no client-level
    timeout is set. An explicit transport (tests) bypasses proxy and TLS.
    """
    if transport is not None:
        return httpx.AsyncClient(transport=transport, timeout=None)
    if endpoint is None:
        return httpx.AsyncClient(timeout=None)
    return httpx.AsyncClient(
        proxy=build_proxy(endpoint.proxy),
        verify=build_ssl_context(endpoint.tls),
        timeout=None,
    )
