"""scimrest HTTP front: FastAPI application entry point.

Exposes configured REST endpoints under /api/{endpoint_id}/..., forwarding
each call through the resilient connector and returning the backend's
status and body as is.
"""

from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import quote, urlencode

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from scimrest.errors import (
    ConfigurationError,
    ConnectorError,
    RequestError,
    TokenAcquisitionError,
    TransientNetworkError,
    UnknownEndpoint,
)
from scimrest.logging.audit import (
    RequestTimer,
    generate_request_id,
    get_audit_logger,
    request_id_var,
    setup_logging,
)
from scimrest.proxy.handler import close_connector, forward_request, resume_path
from scimrest.security.auth import verify_api_key

VERSION = "0.1.0"

# Query parameters consumed here, never forwarded to the backend
PAGING_PARAMS = ("startIndex", "collection")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    setup_logging()
    get_audit_logger().info("Connector started")
    yield
    await close_connector()
    get_audit_logger().info("Connector stopped")


app = FastAPI(
    title="scimrest",
    description="Resilient REST connector for provisioning adapters",
    version=VERSION,
    lifespan=lifespan,
)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION}


@app.api_route("/api/{endpoint_id}/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def api_passthrough(
    endpoint_id: str,
    path: str,
    request: Request,
    api_client: str = Depends(verify_api_key),
):
    """Forward one call to a configured endpoint.

    GET listings may pass startIndex (and collection) to resume an OData
    paged listing from the continuation marker stored for that offset.
    """
    logger = get_audit_logger()
    rid = generate_request_id()
    request_id_var.set(rid)

    target = "/" + path
    query = [(k, v) for k, v in request.query_params.multi_items() if k not in PAGING_PARAMS]
    if query:
        target += "?" + urlencode(query, quote_via=quote, safe="$'(),")

    collection = request.query_params.get("collection") or path.split("/", 1)[0]
    if request.method == "GET":
        start_index = _int_param(request.query_params.get("startIndex"))
        try:
            continuation = resume_path(endpoint_id, collection, start_index)
        except ConnectorError as e:
            return _error_response(e, rid)
        if continuation:
            target = continuation

    body, headers = await _read_body(request)

    try:
        with RequestTimer() as timer:
            result = await forward_request(
                endpoint_id,
                request.method,
                target,
                body=body,
                authorization=request.headers.get("Authorization"),
                headers=headers,
                collection=collection,
            )
    except ConnectorError as e:
        logger.warning(
            "Passthrough failed",
            extra={"audit_data": {
                "api_client": api_client,
                "endpoint": endpoint_id,
                "method": request.method,
                "error_type": type(e).__name__,
            }},
        )
        return _error_response(e, rid)

    logger.info(
        "Request proxied",
        extra={"audit_data": {
            "api_client": api_client,
            "endpoint": endpoint_id,
            "method": request.method,
            "path": target.split("?", 1)[0],
            "upstream_status": result.status_code,
            "latency_ms": timer.elapsed_ms,
        }},
    )
    return _to_response(result.status_code, result.body, rid)


async def _read_body(request: Request) -> tuple[Any, dict[str, str]]:
    """Decode the incoming body; non-JSON bodies keep their content type."""
    raw = await request.body()
    if not raw:
        return None, {}
    content_type = request.headers.get("Content-Type", "")
    if "json" in content_type.lower():
        try:
            return await request.json(), {}
        except ValueError:
            pass
    return raw.decode("utf-8", errors="replace"), {"Content-Type": content_type or "text/plain"}


def _int_param(value: str | None) -> int | None:
    try:
        return int(value) if value else None
    except ValueError:
        return None


def _to_response(status_code: int, body: Any, rid: str) -> Response:
    headers = {"X-Request-Id": rid}
    if body is None:
        return Response(status_code=status_code, headers=headers)
    if isinstance(body, str):
        return PlainTextResponse(body, status_code=status_code, headers=headers)
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _error_response(error: ConnectorError, rid: str) -> Response:
    if isinstance(error, RequestError):
        return _to_response(error.status_code, error.body, rid)
    if isinstance(error, TransientNetworkError):
        status = 504 if error.timed_out else 502
    elif isinstance(error, TokenAcquisitionError):
        status = 502
    elif isinstance(error, UnknownEndpoint):
        status = 404
    elif isinstance(error, ConfigurationError):
        status = 500
    else:
        status = 502
    return JSONResponse(status_code=status, content={"error": str(error)}, headers={"X-Request-Id": rid})
