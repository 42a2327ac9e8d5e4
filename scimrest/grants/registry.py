"""Grant registry: auth type -> strategy class."""

from scimrest.endpoints.models import AuthType
from scimrest.errors import UnsupportedAuthType
from scimrest.grants.base import GrantStrategy
from scimrest.grants.client_credentials import ClientCredentialsGrant
from scimrest.grants.jwt_bearer import JwtBearerGrant
from scimrest.grants.password import PasswordGrant
from scimrest.grants.saml_bearer import AssertionSigner, SamlBearerGrant


def create_strategy(
    auth_type: AuthType,
    endpoint_id: str = "",
    saml_signer: AssertionSigner | None = None,
) -> GrantStrategy:
    """Create the grant strategy for a token-based auth type."""
    if auth_type is AuthType.OAUTH:
        return ClientCredentialsGrant()
    if auth_type is AuthType.TOKEN:
        return PasswordGrant()
    if auth_type is AuthType.OAUTH_SAML_BEARER:
        return SamlBearerGrant(signer=saml_signer)
    if auth_type is AuthType.OAUTH_JWT_BEARER:
        return JwtBearerGrant()
    raise UnsupportedAuthType(getattr(auth_type, "value", str(auth_type)), endpoint_id)
