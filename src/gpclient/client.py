"""Client controller: wires authentication, connection and settings."""

import logging
from typing import Optional

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

from gpclient.auth_manager import AuthenticationManager
from gpclient.authenticators import globalprotect
from gpclient.authenticators.base import GatewayAuthenticatorFactory, PortalAuthenticatorFactory
from gpclient.backend.base import VPN
from gpclient.connection_manager import ConnectionManager
from gpclient.constants import APP_NAME, AUTO_CONNECT_DELAY_MS
from gpclient.models import (
    AuthState,
    ConnectionState,
    Gateway,
    GatewayAuthParams,
    PortalConfig,
    gateway_addresses,
)
from gpclient.settings import Settings, get_credentials

log = logging.getLogger(__name__)

STATUS_TEXT = {
    ConnectionState.DISCONNECTED: "Not Connected",
    ConnectionState.CONNECTING: "Connecting...",
    ConnectionState.CONNECTED: "Connected",
    ConnectionState.DISCONNECTING: "Disconnecting...",
    ConnectionState.ERROR: "Connection Error",
}


class GPClient(QObject):
    """Main client controller.

    Starts authentication from the saved portal or gateway, hands the
    resulting cookie to the connection manager, and keeps the gateway list
    and selection in settings. Reconnecting after a gateway switch is done
    here once the old tunnel reports disconnected.
    """

    # Signals
    notification = pyqtSignal(str, str)  # title, message
    status_changed = pyqtSignal(str)  # status text
    quit_requested = pyqtSignal()

    def __init__(
        self,
        backend: Optional[VPN],
        settings: Settings,
        portal_factory: Optional[PortalAuthenticatorFactory] = None,
        gateway_factory: Optional[GatewayAuthenticatorFactory] = None,
        parent: Optional[QObject] = None,
    ):
        """Initialize the client.

        Args:
            backend: Tunnel backend
            settings: Persisted settings
            portal_factory: Portal authenticator factory (default GlobalProtect)
            gateway_factory: Gateway authenticator factory (default GlobalProtect)
            parent: Parent QObject
        """
        super().__init__(parent)
        self.settings = settings
        self.backend = backend

        self.auth = AuthenticationManager(
            portal_factory or globalprotect.portal_factory(get_credentials),
            gateway_factory or globalprotect.gateway_factory(get_credentials),
            clientos=settings.client_os,
            parent=self,
        )
        self.connection = ConnectionManager(backend, parent=self)

        self._current_portal = ""
        self._available_gateways: list[Gateway] = []
        self._current_gateway = Gateway()
        self._pending_switch = False
        self._is_quitting = False
        self._status = STATUS_TEXT[ConnectionState.DISCONNECTED]

        self._auto_connect_timer = QTimer(self)
        self._auto_connect_timer.setSingleShot(True)
        self._auto_connect_timer.setInterval(AUTO_CONNECT_DELAY_MS)
        self._auto_connect_timer.timeout.connect(self._on_auto_connect_timeout)

        self._setup_connections()

    def _setup_connections(self) -> None:
        # Connection manager
        self.connection.state_changed.connect(self._on_connection_state_changed)
        self.connection.error.connect(self._on_connection_error)
        self.connection.disconnected.connect(self._on_disconnected)
        self.connection.gateway_switched.connect(self._on_gateway_switched)
        self.connection.log_available.connect(self._on_log_available)

        # Authentication manager
        self.auth.state_changed.connect(self._on_auth_state_changed)
        self.auth.authentication_progress.connect(self._on_auth_progress)
        self.auth.portal_authentication_succeeded.connect(self._on_portal_auth_succeeded)
        self.auth.gateway_authentication_succeeded.connect(self._on_gateway_auth_succeeded)
        self.auth.authentication_failed.connect(self._on_authentication_failed)

    # Accessors

    @property
    def current_portal(self) -> str:
        return self._current_portal

    @property
    def current_gateway(self) -> Gateway:
        return self._current_gateway

    @property
    def available_gateways(self) -> list[Gateway]:
        return list(self._available_gateways)

    @property
    def status(self) -> str:
        return self._status

    # Setup

    def initialize_from_settings(self) -> None:
        """Restore portal and gateways; schedule auto-connect if enabled."""
        portal = self.settings.portal_address
        if portal:
            self.set_portal_address(portal)

        if self.settings.auto_connect and self._current_portal and not self._current_gateway.is_empty():
            log.info("Auto-connect enabled, will connect shortly")
            self._auto_connect_timer.start()

    def set_portal_address(self, address: str) -> None:
        """Switch to a portal and load its saved gateways."""
        portal = address.strip()
        if portal == self._current_portal:
            return
        self._current_portal = portal

        if portal:
            self._available_gateways = self.settings.gateways(portal)
            self._current_gateway = self.settings.current_gateway(portal)
            if self._available_gateways:
                self.connection.set_gateways(self._available_gateways)
                if not self._current_gateway.is_empty():
                    self.connection.set_current_gateway(self._current_gateway)
        else:
            self._available_gateways = []
            self._current_gateway = Gateway()

    def set_current_gateway(self, gateway: Gateway) -> None:
        self._remember_gateway(gateway)
        self.connection.set_current_gateway(gateway)

    def _remember_gateway(self, gateway: Gateway) -> None:
        self._current_gateway = gateway
        if self._current_portal:
            self.settings.set_current_gateway(self._current_portal, gateway)

    # Actions

    def connect_vpn(self) -> None:
        """Authenticate and connect using the saved portal/gateway."""
        portal = self._current_portal
        if not portal:
            log.warning("No portal address configured")
            self.notification.emit(APP_NAME, "Enter a portal address first")
            return

        self.settings.set_portal_address(portal)

        if self.auth.is_busy():
            log.warning("Authentication already in progress")
            return

        if self.auth.current_state in (AuthState.AUTHENTICATED, AuthState.FAILED):
            self.auth.reset()

        if not self._current_gateway.is_empty():
            log.info(f"Quick connect to saved gateway: {self._current_gateway.name}")
            params = GatewayAuthParams(clientos=self.settings.client_os)
            self.auth.authenticate_gateway(self._current_gateway.address, params)
        else:
            log.info("Starting portal authentication")
            self.auth.authenticate_portal(portal)

    def disconnect_vpn(self) -> None:
        self._pending_switch = False
        self.connection.disconnect()

    def change_gateway(self, gateway: Gateway) -> None:
        """Select another gateway, switching the live tunnel if there is one."""
        if gateway.same_as(self._current_gateway):
            return

        if self.connection.is_connected():
            self._pending_switch = True
            self._remember_gateway(gateway)
            self.connection.switch_gateway(gateway)
        else:
            self.set_current_gateway(gateway)

    def reset(self) -> None:
        """Forget the portal, its gateways and any session."""
        log.info("Resetting client state")

        if self.connection.is_connected():
            self.disconnect_vpn()

        self.auth.reset()

        self._current_portal = ""
        self._available_gateways = []
        self._current_gateway = Gateway()
        self.settings.set_portal_address("")

    def quit(self) -> None:
        self._is_quitting = True
        self._auto_connect_timer.stop()

        if self.connection.is_connected():
            self.connection.disconnect()

        self.quit_requested.emit()

    # Authentication events

    def _on_auth_state_changed(self, state: AuthState) -> None:
        if state in (AuthState.AUTHENTICATING_PORTAL, AuthState.AUTHENTICATING_GATEWAY):
            self._set_status("Authenticating...")
        elif state in (AuthState.FAILED, AuthState.IDLE):
            self._set_status(STATUS_TEXT[self.connection.current_state])

    def _on_auth_progress(self, message: str) -> None:
        log.info(f"Auth progress: {message}")
        self._set_status(message)

    def _on_portal_auth_succeeded(self, config: PortalConfig, region: str) -> None:
        self._available_gateways = config.all_gateways()
        self.connection.set_gateways(self._available_gateways)

        if self._current_portal:
            self.settings.set_gateways(self._current_portal, self._available_gateways)

        if self._current_gateway.is_empty() and self._available_gateways:
            self.set_current_gateway(self.auth.selected_gateway)

    def _on_gateway_auth_succeeded(self, auth_cookie: str, username: str) -> None:
        log.info(f"Gateway authentication succeeded for user: {username}")

        gateway = self._current_gateway
        if gateway.is_empty():
            gateway = self.auth.selected_gateway

        addresses = gateway_addresses(self._available_gateways) or [gateway.address]
        self.connection.connect(gateway.address, addresses, username, auth_cookie)

    def _on_authentication_failed(self, message: str) -> None:
        log.error(f"Authentication failed: {message}")
        self.notification.emit("Authentication Failed", message)

    # Connection events

    def _on_connection_state_changed(self, state: ConnectionState) -> None:
        text = STATUS_TEXT[state]
        if state == ConnectionState.CONNECTED and not self._current_gateway.is_empty():
            text = f"Connected to {self._current_gateway.name}"
        self._set_status(text)

        if state == ConnectionState.CONNECTED:
            self.notification.emit(APP_NAME, "Connected successfully")
        elif state == ConnectionState.DISCONNECTED and not self._is_quitting:
            self.notification.emit(APP_NAME, "Disconnected")

    def _on_connection_error(self, message: str) -> None:
        log.error(f"Connection error: {message}")
        self.notification.emit("Connection Failed", message)

    def _on_disconnected(self) -> None:
        if not self._pending_switch or self._is_quitting:
            return
        self._pending_switch = False
        log.info(f"Reconnecting to switched gateway: {self._current_gateway.name}")
        self.auth.reset()
        self.connect_vpn()

    def _on_gateway_switched(self, gateway: Gateway) -> None:
        self.notification.emit(APP_NAME, f"Switched to gateway {gateway.name}")

    def _on_log_available(self, line: str) -> None:
        log.info(f"[vpn] {line}")

    def _on_auto_connect_timeout(self) -> None:
        if self._current_portal and not self._current_gateway.is_empty():
            log.info("Starting auto-connect")
            self.connect_vpn()

    def _set_status(self, text: str) -> None:
        if text != self._status:
            self._status = text
            self.status_changed.emit(text)
