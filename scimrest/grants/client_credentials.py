"""Client-credentials grant (auth type "oauth")."""

import time

from scimrest.endpoints.models import EndpointConfig
from scimrest.grants.base import DEFAULT_LOGIN_PROVIDER, GrantStrategy, TokenRequest, origin_of


class ClientCredentialsGrant(GrantStrategy):
    """POSTs client id/secret to the token endpoint.

    With a tenant_id the endpoint is derived from the login provider
    (https://login.{provider}/{tenant}/oauth2/token) and the resource
    defaults to the origin of the first base URL.
    """

    async def build_request(self, endpoint: EndpointConfig, clock=time.time) -> TokenRequest:
        auth = endpoint.auth
        tenant_id = auth.option("tenant_id")
        resource = auth.option("resource")

        if tenant_id:
            provider = auth.option("provider", default=DEFAULT_LOGIN_PROVIDER)
            token_url = f"https://login.{provider}/{tenant_id}/oauth2/token"
            resource = resource or origin_of(endpoint.base_urls[0])
        else:
            token_url = auth.option("token_url", default="")

        form = {
            "grant_type": "client_credentials",
            "client_id": auth.option("client_id"),
            "client_secret": auth.option("client_secret"),
        }
        if auth.option("scope"):
            form["scope"] = auth.option("scope")
        if resource:
            form["resource"] = resource

        return TokenRequest(token_url=token_url, form=form)
