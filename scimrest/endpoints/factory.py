"""Factory for the endpoint registry built from settings."""

import os

from scimrest.config.settings import get_settings
from scimrest.endpoints.store import EndpointRegistry, JSONEndpointRegistry
from scimrest.errors import ConfigurationError

_registry: EndpointRegistry | None = None


def get_endpoint_registry() -> EndpointRegistry:
    """Get the registry singleton, loading ENDPOINTS_CONFIG_PATH on first use."""
    global _registry
    if _registry is not None:
        return _registry

    path = get_settings().endpoints_config_path
    if not path or not os.path.isfile(path):
        raise ConfigurationError(f"endpoint configuration file not found: {path!r}")

    _registry = JSONEndpointRegistry(path)
    return _registry
