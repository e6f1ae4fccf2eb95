"""Authenticator capability definitions."""

from typing import Callable, Protocol, runtime_checkable

from PyQt6.QtCore import pyqtBoundSignal

from gpclient.models import GatewayAuthParams


@runtime_checkable
class PortalAuthenticator(Protocol):
    """One portal login attempt.

    Constructed from (portal_address, clientos). Exactly one of the
    outcome signals is emitted per attempt:

        success(PortalConfig, region)
        fail(message)
        prelogin_failed(message)
        portal_config_failed(message)
    """

    success: pyqtBoundSignal
    fail: pyqtBoundSignal
    prelogin_failed: pyqtBoundSignal
    portal_config_failed: pyqtBoundSignal

    def authenticate(self) -> None:
        """Start the attempt. Returns immediately."""
        ...

    def cancel(self) -> None:
        """Abandon the attempt. No further outcome is expected."""
        ...


@runtime_checkable
class GatewayAuthenticator(Protocol):
    """One gateway login attempt.

    Constructed from (gateway_address, GatewayAuthParams). Emits
    success(auth_cookie) or fail(message).
    """

    success: pyqtBoundSignal
    fail: pyqtBoundSignal

    def authenticate(self) -> None:
        """Start the attempt. Returns immediately."""
        ...

    def cancel(self) -> None:
        """Abandon the attempt. No further outcome is expected."""
        ...


PortalAuthenticatorFactory = Callable[[str, str], PortalAuthenticator]
GatewayAuthenticatorFactory = Callable[[str, GatewayAuthParams], GatewayAuthenticator]
