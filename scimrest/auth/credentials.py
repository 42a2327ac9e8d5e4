"""Access credentials and the per-endpoint credential store."""

import time
from collections.abc import Callable
from dataclasses import dataclass

# Refresh this many seconds before a credential expires
REFRESH_MARGIN = 30.0


@dataclass(frozen=True)
class Credential:
    """An access token and the absolute time (unix seconds) it stops being valid.

    Never mutated; a refresh replaces the whole object.
    """

    access_token: str
    valid_until: float

    def is_fresh(self, now: float, margin: float = REFRESH_MARGIN) -> bool:
        return self.valid_until >= now + margin

    @property
    def authorization(self) -> str:
        return f"Bearer {self.access_token}"


class CredentialStore:
    """In-memory credential per endpoint id, owned by one TokenManager."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._credentials: dict[str, Credential] = {}

    def get(self, endpoint_id: str) -> Credential | None:
        return self._credentials.get(endpoint_id)

    def fresh(self, endpoint_id: str) -> Credential | None:
        """Return the stored credential only if it is outside the refresh margin."""
        credential = self._credentials.get(endpoint_id)
        if credential is not None and credential.is_fresh(self.clock()):
            return credential
        return None

    def put(self, endpoint_id: str, credential: Credential) -> None:
        self._credentials[endpoint_id] = credential

    def invalidate(self, endpoint_id: str) -> None:
        self._credentials.pop(endpoint_id, None)

    def clear(self) -> None:
        self._credentials.clear()
