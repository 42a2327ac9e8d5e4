"""Proxy handler: process-wide connector used by the HTTP front."""

from typing import Any

from scimrest.connector import RestConnector
from scimrest.transport.models import CallerContext, RequestOptions, Response

_connector: RestConnector | None = None


def get_connector() -> RestConnector:
    """Get the connector singleton, building it from settings on first use."""
    global _connector
    if _connector is None:
        _connector = RestConnector()
    return _connector


async def forward_request(
    endpoint_id: str,
    method: str,
    path: str,
    body: Any = None,
    authorization: str | None = None,
    headers: dict[str, str] | None = None,
    collection: str | None = None,
) -> Response:
    """Route a front-end request to the configured endpoint."""
    connector = get_connector()
    caller = CallerContext(authorization=authorization) if authorization else None
    options = RequestOptions(headers=headers or {}, collection=collection)
    return await connector.execute(endpoint_id, method, path, body, caller, options)


def resume_path(endpoint_id: str, collection: str, start_index: int | None) -> str | None:
    return get_connector().next_page_path(endpoint_id, collection, start_index)


async def close_connector() -> None:
    """Gracefully close pooled HTTP clients on shutdown."""
    global _connector
    if _connector is not None:
        await _connector.aclose()
        _connector = None
