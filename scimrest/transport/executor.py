"""Request executor: one logical call, end to end.

PREPARE (client handle, body encoding, deadline) -> SEND -> SUCCESS,
RETRY or FAIL. Retries only happen for registered endpoints. The first
attempt goes to the sticky base URL, later ones walk the remaining base
URLs in configured order; one attempt per base URL, except that an
endpoint with a single base URL retries it once after throttling or a
rejected OAuth token. Client setup (including any token exchange) and
the send share one attempt timeout.
"""

import asyncio
import json
import time
from collections.abc import Awaitable, Callable, Mapping
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import urlencode

import httpx

from scimrest.auth.tokens import TokenManager
from scimrest.config.settings import get_settings
from scimrest.endpoints.models import EndpointConfig
from scimrest.endpoints.store import EndpointRegistry
from scimrest.errors import (
    ConnectorError,
    RequestError,
    ThrottleError,
    TokenAcquisitionError,
    TransientNetworkError,
)
from scimrest.logging.audit import RequestTimer, generate_request_id, get_audit_logger, request_id_var
from scimrest.transport.client_cache import ClientCache
from scimrest.transport.models import CallerContext, ClientHandle, RequestOptions, Response, is_absolute_url
from scimrest.transport.pagination import CursorTracker

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"

Sleep = Callable[[float], Awaitable[Any]]


class RequestExecutor:

    def __init__(
        self,
        registry: EndpointRegistry,
        clients: ClientCache,
        tokens: TokenManager,
        cursors: CursorTracker,
        sleep: Sleep = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self._clients = clients
        self._tokens = tokens
        self._cursors = cursors
        self._sleep = sleep
        self._monotonic = monotonic

    async def execute(
        self,
        endpoint_id: str,
        method: str,
        path: str,
        body: Any = None,
        caller: CallerContext | None = None,
        options: RequestOptions | None = None,
    ) -> Response:
        """Perform one logical request.

        Raises:
            ConfigurationError: Unknown endpoint or invalid auth options.
            TokenAcquisitionError: Credential could not be obtained.
            TransientNetworkError: Every base URL failed at the network level.
            ThrottleError: Still throttled after the last attempt.
            RequestError: Any other non-2xx response (404 is returned, not raised).
        """
        token = request_id_var.set(request_id_var.get() or generate_request_id())
        try:
            return await self._execute(endpoint_id, method.upper(), path, body, caller, options or RequestOptions())
        finally:
            request_id_var.reset(token)

    async def _execute(
        self,
        endpoint_id: str,
        method: str,
        path: str,
        body: Any,
        caller: CallerContext | None,
        options: RequestOptions,
    ) -> Response:
        logger = get_audit_logger()
        adhoc = is_absolute_url(path)
        if not adhoc and path and not path.startswith("/"):
            path = "/" + path

        try:
            endpoint = None if adhoc else self._registry.get(endpoint_id)
        except ConnectorError as e:
            self._log_failure(endpoint_id, method, path, e)
            raise

        attempts = 1 if endpoint is None else len(endpoint.base_urls)
        # A single base URL still gets one more try after throttling or a stale token
        max_attempts = 2 if endpoint is not None and attempts == 1 else attempts
        deadline = None if options.call_timeout is None else self._monotonic() + options.call_timeout
        order: list[int] | None = None

        for attempt in range(max_attempts):
            try:
                timeout = self._attempt_timeout(endpoint, options, deadline)
                attempt_deadline = self._monotonic() + timeout
                handle = await self._prepare(endpoint_id, method, path, options, caller, timeout)
                if order is None:
                    # Resume from the base URL the last failover settled on
                    order = failover_order(handle.base_url_index if attempt == 0 else 0, attempts)
                index = order[attempt % attempts]
                try:
                    return await self._send(handle, endpoint, index, method, path, body, options, attempt_deadline)
                finally:
                    if handle.adhoc:
                        await handle.http.aclose()
            except ConnectorError as e:
                delay = None if endpoint is None else self._retry_delay(e, endpoint, caller)
                exhausted = attempt == max_attempts - 1 or (
                    attempt >= attempts - 1 and not self._retries_same_url(e, endpoint)
                )
                if delay is None or exhausted:
                    self._log_failure(endpoint_id, method, path, e)
                    raise
                if deadline is not None and self._monotonic() + delay >= deadline:
                    self._log_failure(endpoint_id, method, path, e)
                    raise

                next_index = (order or failover_order(0, attempts))[(attempt + 1) % attempts]
                logger.warning(
                    "Request failed, retrying",
                    extra={"audit_data": {
                        "endpoint": endpoint_id,
                        "method": method,
                        "path": path,
                        "attempt": attempt + 1,
                        "max_attempts": max_attempts,
                        "error": str(e),
                        "retry_after": delay,
                        "next_base_url": endpoint.base_urls[next_index],
                    }},
                )
                self._clients.select_base_url(endpoint, caller, next_index)
                if delay > 0:
                    await self._sleep(delay)

        # max_attempts >= 1 and every iteration returns or raises
        raise AssertionError("unreachable")

    async def _prepare(
        self,
        endpoint_id: str,
        method: str,
        path: str,
        options: RequestOptions,
        caller: CallerContext | None,
        timeout: float,
    ) -> ClientHandle:
        """Client handle for one attempt; a token exchange shares the attempt's timeout."""
        try:
            return await asyncio.wait_for(self._clients.get_client(endpoint_id, method, path, options, caller), timeout)
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(
                f"{method} {path}: client setup aborted after {timeout}s", timed_out=True
            ) from e

    @staticmethod
    def _retries_same_url(error: ConnectorError, endpoint: EndpointConfig | None) -> bool:
        if endpoint is None:
            return False
        if isinstance(error, ThrottleError):
            return True
        return isinstance(error, RequestError) and error.status_code == 401 and endpoint.is_oauth

    def _retry_delay(
        self, error: ConnectorError, endpoint: EndpointConfig, caller: CallerContext | None
    ) -> float | None:
        """Seconds to wait before failing over, or None when not retryable."""
        if isinstance(error, TransientNetworkError):
            return 0
        if isinstance(error, ThrottleError):
            return error.retry_after
        if isinstance(error, TokenAcquisitionError):
            return 0 if isinstance(error.__cause__, httpx.TransportError) else None
        if isinstance(error, RequestError) and error.status_code == 401:
            self._clients.invalidate(endpoint, caller)
            if endpoint.is_oauth:
                # Stale token: the retry must run a fresh exchange
                self._tokens.invalidate(endpoint.endpoint_id)
                return 0
        return None

    async def _send(
        self,
        handle: ClientHandle,
        endpoint: EndpointConfig | None,
        index: int,
        method: str,
        path: str,
        body: Any,
        options: RequestOptions,
        deadline: float | None,
    ) -> Response:
        logger = get_audit_logger()
        base_url = "" if handle.adhoc else endpoint.base_urls[index]
        url = path if handle.adhoc else base_url + path

        headers = httpx.Headers(handle.headers)
        content = None
        if body is not None:
            content_type = headers.get("Content-Type") or JSON_CONTENT_TYPE
            content = encode_body(body, content_type)
            headers["Content-Type"] = content_type
            headers["Content-Length"] = str(len(content))

        timeout = self._attempt_timeout(endpoint, options, deadline)
        request = handle.http.build_request(method, url, headers=headers, content=content)
        try:
            with RequestTimer() as timer:
                response = await asyncio.wait_for(handle.http.send(request), timeout)
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(f"{method} {url} aborted after {timeout}s", url, timed_out=True) from e
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"{method} {url} timed out: {e}", url, timed_out=True) from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method} {url} failed: {e!r}", url) from e
        except httpx.HTTPError as e:
            raise ConnectorError(f"{method} {url} failed: {e}") from e

        result = Response(
            status_code=response.status_code,
            status_message=response.reason_phrase,
            body=decode_body(response),
        )
        audit = {
            "endpoint": handle.endpoint_id,
            "method": method,
            "url": url,
            "status_code": result.status_code,
            "latency_ms": timer.elapsed_ms,
        }

        if response.is_success:
            logger.debug("Request completed", extra={"audit_data": audit})
            if endpoint is not None:
                self._cursors.record_next_page(endpoint.endpoint_id, options.collection, result.body, base_url)
            return result

        if response.status_code == 404:
            # Expected outcome for lookups; the caller decides what it means
            logger.debug("Resource not found", extra={"audit_data": audit})
            return result

        raise response_error(response, result, url)

    def _attempt_timeout(
        self, endpoint: EndpointConfig | None, options: RequestOptions, deadline: float | None
    ) -> float:
        if options.abort_timeout:
            timeout = float(options.abort_timeout)
        else:
            idle = (endpoint.idle_timeout if endpoint else None) or get_settings().idle_timeout
            timeout = float(max(idle - 1, 1))
        if deadline is not None:
            remaining = deadline - self._monotonic()
            if remaining <= 0:
                raise TransientNetworkError("call deadline exceeded", timed_out=True)
            timeout = min(timeout, remaining)
        return timeout

    def _log_failure(self, endpoint_id: str, method: str, path: str, error: Exception) -> None:
        data = {
            "endpoint": endpoint_id,
            "method": method,
            "path": path,
            "error_type": type(error).__name__,
            "error": str(error),
        }
        if isinstance(error, RequestError):
            data["status_code"] = error.status_code
        get_audit_logger().error("Request failed", extra={"audit_data": data})


def encode_body(body: Any, content_type: str) -> bytes:
    """Form bodies use query-string encoding, everything else JSON."""
    if isinstance(body, bytes):
        return body
    if content_type.lower().startswith(FORM_CONTENT_TYPE):
        text = urlencode(body, doseq=True) if isinstance(body, Mapping) else str(body)
    elif isinstance(body, str):
        text = body
    else:
        text = json.dumps(body, ensure_ascii=False)
    return text.encode("utf-8")


def decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    content_type = response.headers.get("Content-Type", "").lower()
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            pass
    return response.text


def response_error(response: httpx.Response, result: Response, url: str) -> RequestError:
    """Map a non-2xx response to RequestError, or ThrottleError when throttled."""
    settings = get_settings()
    if response.status_code == 429:
        retry_after = _parse_retry_after(response.headers.get("Retry-After"))
        delay = retry_after + 1 if retry_after is not None else settings.default_retry_after
        return ThrottleError(response.status_code, delay, result.body, result.status_message, url)

    text = result.body if isinstance(result.body, str) else json.dumps(result.body, default=str)
    if "ratelimit" in text.lower():
        return ThrottleError(
            response.status_code, settings.ratelimit_retry_after, result.body, result.status_message, url
        )
    return RequestError(response.status_code, result.body, result.status_message, url)


def _parse_retry_after(value: str | None) -> float | None:
    """Retry-After as delta-seconds or HTTP date."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(when.timestamp() - time.time(), 0.0)


def failover_order(start: int, count: int) -> list[int]:
    """Sticky base URL first, then the rest in configured order."""
    return [start] + [i for i in range(count) if i != start]
