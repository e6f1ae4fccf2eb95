"""Portal and gateway authenticators."""

from .base import (
    GatewayAuthenticator,
    GatewayAuthenticatorFactory,
    PortalAuthenticator,
    PortalAuthenticatorFactory,
)
from .globalprotect import (
    GPGatewayAuthenticator,
    GPPortalAuthenticator,
    gateway_factory,
    portal_factory,
)

__all__ = [
    "GatewayAuthenticator",
    "GatewayAuthenticatorFactory",
    "PortalAuthenticator",
    "PortalAuthenticatorFactory",
    "GPGatewayAuthenticator",
    "GPPortalAuthenticator",
    "gateway_factory",
    "portal_factory",
]
