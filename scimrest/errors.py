"""Connector error taxonomy.

Every failure surfaced by the connector derives from ConnectorError and
keeps the underlying exception as ``__cause__``.
"""

from typing import Any


class ConnectorError(Exception):
    """Base exception for all connector failures."""

    pass


class ConfigurationError(ConnectorError):
    """Missing or invalid endpoint configuration. Never retried."""

    pass


class UnsupportedAuthType(ConfigurationError):
    """The endpoint's auth type has no token grant strategy."""

    def __init__(self, auth_type: str, endpoint_id: str = ""):
        self.auth_type = auth_type
        self.endpoint_id = endpoint_id
        where = f" (endpoint '{endpoint_id}')" if endpoint_id else ""
        super().__init__(f"Unsupported auth type '{auth_type}'{where}")


class TokenAcquisitionError(ConnectorError):
    """Grant exchange failed or returned an unusable payload."""

    def __init__(self, message: str, endpoint_id: str = ""):
        self.endpoint_id = endpoint_id
        super().__init__(message)


class TransientNetworkError(ConnectorError):
    """Connection refused/not found, timeout or abort.

    Attributes:
        url: Request URL that failed
        timed_out: True when the request deadline expired
    """

    def __init__(self, message: str, url: str = "", timed_out: bool = False):
        self.url = url
        self.timed_out = timed_out
        super().__init__(message)


class RequestError(ConnectorError):
    """Non-2xx response from the backend.

    Attributes:
        status_code: HTTP status code
        status_message: HTTP reason phrase
        body: Decoded response body (dict, list, str or None)
        url: Request URL
    """

    def __init__(
        self,
        status_code: int,
        body: Any = None,
        status_message: str = "",
        url: str = "",
    ):
        self.status_code = status_code
        self.status_message = status_message
        self.body = body
        self.url = url
        super().__init__(f"[{status_code}] {url}: {_summarize(body) or status_message}")


class ThrottleError(RequestError):
    """Backend asked us to slow down (HTTP 429 or a rate-limit message)."""

    def __init__(
        self,
        status_code: int,
        retry_after: float,
        body: Any = None,
        status_message: str = "",
        url: str = "",
    ):
        self.retry_after = retry_after
        super().__init__(status_code, body, status_message, url)


def _summarize(body: Any, limit: int = 500) -> str:
    if body is None:
        return ""
    text = body if isinstance(body, str) else repr(body)
    return text if len(text) <= limit else text[:limit] + "..."


class PaginationBrokenChain(ConnectorError):
    """Resume offset does not match a stored continuation marker.

    Handled inside the cursor tracker by restarting the listing; callers
    never see it.
    """

    def __init__(self, collection: str, offset: int):
        self.collection = collection
        self.offset = offset
        super().__init__(f"No continuation marker for {collection} at offset {offset}")


class UnknownEndpoint(ConfigurationError):
    """No endpoint with this id is configured."""

    def __init__(self, endpoint_id: str):
        self.endpoint_id = endpoint_id
        super().__init__(f"unsupported endpoint: {endpoint_id}")
