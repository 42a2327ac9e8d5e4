"""Resource-owner password-style grant (auth type "token")."""

import time

from scimrest.endpoints.models import EndpointConfig
from scimrest.grants.base import GrantStrategy, TokenRequest


class PasswordGrant(GrantStrategy):
    """POSTs username/password to a configured token URL.

    Such APIs often name the token field differently, so "token" and
    "accessToken" are accepted as well.
    """

    token_fields = ("access_token", "token", "accessToken")

    async def build_request(self, endpoint: EndpointConfig, clock=time.time) -> TokenRequest:
        auth = endpoint.auth
        return TokenRequest(
            token_url=auth.option("token_url", default=""),
            form={
                "username": auth.option("username", default=""),
                "password": auth.option("password"),
            },
        )
