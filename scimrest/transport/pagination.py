"""OData-style pagination cursors.

Callers page with a plain integer offset (SCIM startIndex); the server
hands back opaque ``@odata.nextLink`` URLs. The tracker maps one to the
other, keeping a single chain per (endpoint, collection).
"""

import re
from typing import Any
from urllib.parse import urlsplit

from scimrest.errors import PaginationBrokenChain
from scimrest.logging.audit import get_audit_logger

NEXT_LINK = "@odata.nextLink"

_TOP_PATTERN = re.compile(r"(?:^|&)\$?top=(\d+)", re.IGNORECASE)


class CursorTracker:

    def __init__(self):
        # endpoint id -> collection -> {offset: continuation path}
        self._chains: dict[str, dict[str, dict[int, str]]] = {}

    def record_next_page(
        self,
        endpoint_id: str,
        collection: str | None,
        body: Any,
        base_url: str = "",
    ) -> int | None:
        """Store the continuation marker carried by a response body.

        Returns the client-visible offset the next page resumes at, or None
        when the body has no marker. A marker identical to one already
        stored is not re-recorded, so a server repeating itself cannot
        create an endless chain.
        """
        if not isinstance(body, dict) or not body.get(NEXT_LINK):
            return None

        next_link = str(body[NEXT_LINK])
        parts = urlsplit(next_link)
        collection = (collection or parts.path.rstrip("/").rsplit("/", 1)[-1]).lower()
        path = _continuation_path(next_link, base_url)

        chains = self._chains.setdefault(endpoint_id, {})
        current = chains.get(collection) or {}
        prior_offset = None
        for offset, stored in current.items():
            if stored == path:
                get_audit_logger().debug(
                    "Repeated continuation marker ignored",
                    extra={"audit_data": {"endpoint": endpoint_id, "collection": collection, "offset": offset}},
                )
                return offset
            prior_offset = offset

        top = _page_size(parts.query, body)
        next_offset = top + 1 if prior_offset is None else prior_offset + top + 1
        chains[collection] = {next_offset: path}
        return next_offset

    def resolve_page(self, endpoint_id: str, collection: str, offset: int | None) -> str | None:
        """Continuation path for ``offset``, or None to (re)start the listing."""
        collection = collection.lower()
        if not offset or offset < 2:
            self.clear(endpoint_id, collection)
            return None
        try:
            return self._lookup(endpoint_id, collection, offset)
        except PaginationBrokenChain as e:
            get_audit_logger().debug(
                "Pagination chain broken, restarting listing",
                extra={"audit_data": {"endpoint": endpoint_id, "collection": e.collection, "offset": e.offset}},
            )
            self.clear(endpoint_id, collection)
            return None

    def clear(self, endpoint_id: str, collection: str | None = None) -> None:
        if collection is None:
            self._chains.pop(endpoint_id, None)
        else:
            self._chains.get(endpoint_id, {}).pop(collection.lower(), None)

    def snapshot(self, endpoint_id: str) -> dict[str, dict[int, str]]:
        """Copy of the stored chains for one endpoint."""
        return {name: dict(chain) for name, chain in self._chains.get(endpoint_id, {}).items()}

    def _lookup(self, endpoint_id: str, collection: str, offset: int) -> str:
        path = self._chains.get(endpoint_id, {}).get(collection, {}).get(offset)
        if path is None:
            raise PaginationBrokenChain(collection, offset)
        return path


def _continuation_path(next_link: str, base_url: str) -> str:
    """nextLink relative to the base URL, so failover can replay it anywhere."""
    if base_url and next_link.startswith(base_url):
        return next_link[len(base_url):] or "/"
    parts = urlsplit(next_link)
    if not parts.netloc:
        return next_link
    segment = parts.path.rstrip("/").rsplit("/", 1)[-1]
    return f"/{segment}?{parts.query}" if parts.query else f"/{segment}"


def _page_size(query: str, body: dict) -> int:
    match = _TOP_PATTERN.search(query)
    if match:
        return int(match.group(1))
    value = body.get("value")
    return len(value) if isinstance(value, list) else 0
