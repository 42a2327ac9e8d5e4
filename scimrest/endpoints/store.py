"""Endpoint registry abstraction + in-memory and JSON file implementations."""

import json
import os
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from scimrest.endpoints.models import EndpointConfig, parse_endpoint, parse_endpoints
from scimrest.errors import ConfigurationError, UnknownEndpoint


class EndpointRegistry(ABC):
    """Abstract base for endpoint config lookups."""

    @abstractmethod
    def get(self, endpoint_id: str) -> EndpointConfig:
        """Return the config for endpoint_id.

        Raises:
            UnknownEndpoint: If the endpoint is not configured.
        """
        ...

    @abstractmethod
    def endpoint_ids(self) -> list[str]:
        ...


class InMemoryEndpointRegistry(EndpointRegistry):
    """Registry over already-built configs (or their raw JSON form)."""

    def __init__(self, endpoints: Mapping[str, EndpointConfig | Mapping[str, Any]]):
        self._endpoints: dict[str, EndpointConfig] = {}
        for endpoint_id, entry in endpoints.items():
            if not isinstance(entry, EndpointConfig):
                entry = parse_endpoint(endpoint_id, entry)
            self._endpoints[endpoint_id] = entry

    def get(self, endpoint_id: str) -> EndpointConfig:
        try:
            return self._endpoints[endpoint_id]
        except KeyError:
            raise UnknownEndpoint(endpoint_id) from None

    def endpoint_ids(self) -> list[str]:
        return list(self._endpoints)


class JSONEndpointRegistry(EndpointRegistry):
    """File-backed registry. Reloads on mtime change (dev reload)."""

    def __init__(self, path: str):
        self._path = path
        self._endpoints: dict[str, EndpointConfig] = {}
        self._last_mtime: float = 0.0
        self._load()

    def _load(self) -> None:
        """Load endpoints from the JSON file."""
        try:
            mtime = os.path.getmtime(self._path)
        except OSError as e:
            raise ConfigurationError(f"cannot read endpoint configuration {self._path}: {e}") from e

        if mtime == self._last_mtime and self._endpoints:
            return

        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"invalid endpoint configuration {self._path}: {e}") from e

        self._endpoints = parse_endpoints(data)
        self._last_mtime = mtime

    def get(self, endpoint_id: str) -> EndpointConfig:
        self._load()  # reload if file changed
        try:
            return self._endpoints[endpoint_id]
        except KeyError:
            raise UnknownEndpoint(endpoint_id) from None

    def endpoint_ids(self) -> list[str]:
        self._load()
        return list(self._endpoints)
