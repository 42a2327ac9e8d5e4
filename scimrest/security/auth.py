"""API key authentication for front-end callers.

Validates the X-API-Key header against the configured gateway keys.
"""

import hmac

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from scimrest.config.settings import get_settings

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str | None = Security(api_key_header)) -> str:
    """FastAPI dependency returning a loggable id for the accepted key."""
    if api_key is None:
        raise HTTPException(status_code=401, detail="Missing API key")

    for valid_key in get_settings().api_keys_list:
        if hmac.compare_digest(api_key, valid_key):
            return f"key-{valid_key[:8]}"

    raise HTTPException(status_code=403, detail="Invalid API key")
