"""Tunnel connection lifecycle state machine."""

import logging
from enum import Enum
from typing import Optional

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

from gpclient.backend.base import VPN
from gpclient.constants import CONNECTION_TIMEOUT_MS
from gpclient.errors import BackendUnavailable, ConnectionTimeout
from gpclient.models import ConnectionState, Gateway

log = logging.getLogger(__name__)


class Trigger(Enum):
    """Events that drive the connection state machine."""
    CONNECT_REQUESTED = "connect_requested"
    DISCONNECT_REQUESTED = "disconnect_requested"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


# (state, trigger) -> next state. Pairs not listed leave the state unchanged.
TRANSITIONS = {
    (ConnectionState.DISCONNECTED, Trigger.CONNECT_REQUESTED): ConnectionState.CONNECTING,
    (ConnectionState.CONNECTING, Trigger.CONNECTED): ConnectionState.CONNECTED,
    (ConnectionState.CONNECTING, Trigger.ERROR): ConnectionState.ERROR,
    (ConnectionState.CONNECTED, Trigger.DISCONNECT_REQUESTED): ConnectionState.DISCONNECTING,
    (ConnectionState.CONNECTED, Trigger.ERROR): ConnectionState.ERROR,
    (ConnectionState.DISCONNECTING, Trigger.DISCONNECTED): ConnectionState.DISCONNECTED,
    (ConnectionState.ERROR, Trigger.DISCONNECTED): ConnectionState.DISCONNECTED,
    # Cancelling a pending connect, or the tunnel dropping on its own
    (ConnectionState.CONNECTING, Trigger.DISCONNECT_REQUESTED): ConnectionState.DISCONNECTING,
    (ConnectionState.CONNECTING, Trigger.DISCONNECTED): ConnectionState.DISCONNECTED,
    (ConnectionState.CONNECTED, Trigger.DISCONNECTED): ConnectionState.DISCONNECTED,
}


def next_state(state: ConnectionState, trigger: Trigger) -> ConnectionState:
    return TRANSITIONS.get((state, trigger), state)


class ConnectionManager(QObject):
    """Drives the tunnel backend through connect/disconnect cycles.

    The backend is held for the manager's whole lifetime. A connect attempt
    is only accepted from DISCONNECTED and is bounded by a single-shot timer.
    """

    # Signals
    state_changed = pyqtSignal(object)  # ConnectionState
    connected = pyqtSignal()
    disconnected = pyqtSignal()
    error = pyqtSignal(str)  # error message
    log_available = pyqtSignal(str)  # backend log line
    gateway_switched = pyqtSignal(object)  # Gateway

    def __init__(
        self,
        backend: Optional[VPN],
        timeout_ms: int = CONNECTION_TIMEOUT_MS,
        parent: Optional[QObject] = None,
    ):
        """Initialize the connection manager.

        Args:
            backend: Tunnel backend, or None if none is available
            timeout_ms: Time budget for a connect attempt
            parent: Parent QObject
        """
        super().__init__(parent)
        self._backend = backend
        self._state = ConnectionState.DISCONNECTED
        self._current_gateway = Gateway()
        self._gateways: list[Gateway] = []
        self._switching_gateway = False
        self._last_error = ""

        self._connection_timer = QTimer(self)
        self._connection_timer.setSingleShot(True)
        self._connection_timer.setInterval(timeout_ms)
        self._connection_timer.timeout.connect(self._on_connection_timeout)

        if self._backend is not None:
            self._backend.connected.connect(self._on_vpn_connected)
            self._backend.disconnected.connect(self._on_vpn_disconnected)
            self._backend.error.connect(self._on_vpn_error)
            self._backend.log_available.connect(self._on_vpn_log_available)

    # Accessors

    @property
    def current_state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def current_gateway(self) -> Gateway:
        return self._current_gateway

    @property
    def available_gateways(self) -> list[Gateway]:
        return list(self._gateways)

    @property
    def last_error(self) -> str:
        return self._last_error

    @property
    def is_switching_gateway(self) -> bool:
        return self._switching_gateway

    @property
    def timeout_active(self) -> bool:
        return self._connection_timer.isActive()

    # Bookkeeping

    def set_gateways(self, gateways: list[Gateway]) -> None:
        self._gateways = list(gateways)
        log.info(f"Updated gateway list with {len(gateways)} gateways")

    def set_current_gateway(self, gateway: Gateway) -> None:
        self._current_gateway = gateway
        log.info(f"Current gateway set to: {gateway.name} ({gateway.address})")

    # Public operations

    def connect(
        self,
        gateway_address: str,
        all_gateways: list[str],
        username: str,
        auth_cookie: str,
    ) -> None:
        """Bring the tunnel up through the backend."""
        if self._backend is None:
            log.error("VPN backend is not available")
            self._emit_error(str(BackendUnavailable("VPN backend not available")))
            return

        if self._state != ConnectionState.DISCONNECTED:
            log.warning("Attempted to connect while not in disconnected state")
            return

        log.info(f"Connecting to VPN gateway: {gateway_address}")
        self._fire(Trigger.CONNECT_REQUESTED)
        self._connection_timer.start()

        try:
            self._backend.connect(gateway_address, list(all_gateways), username, auth_cookie)
        except Exception as e:
            self._connection_timer.stop()
            message = f"Failed to connect: {e}"
            log.error(message)
            self._last_error = message
            self._emit_error(message)

    def disconnect(self) -> None:
        """Take the tunnel down."""
        if self._backend is None:
            log.error("VPN backend is not available")
            self._emit_disconnected()
            return

        if self._state == ConnectionState.DISCONNECTED:
            log.warning("Attempted to disconnect while already disconnected")
            return

        log.info("Disconnecting from VPN")
        self._fire(Trigger.DISCONNECT_REQUESTED)
        self._connection_timer.stop()

        try:
            self._backend.disconnect()
        except Exception as e:
            log.warning(f"Failed to disconnect cleanly: {e}")
            # Still report disconnected so local state does not wedge
            self._emit_disconnected()

    def switch_gateway(self, gateway: Gateway) -> None:
        """Record a new gateway and drop the current tunnel if it is up.

        Reconnecting to the new gateway is the caller's job once
        ``disconnected`` fires.
        """
        if gateway.same_as(self._current_gateway):
            log.info(f"Already connected to gateway: {gateway.name}")
            return

        log.info(f"Switching gateway from {self._current_gateway.name} to {gateway.name}")
        self._switching_gateway = True
        self.set_current_gateway(gateway)

        if self._state == ConnectionState.CONNECTED:
            self.disconnect()

    # State machine

    def _fire(self, trigger: Trigger) -> None:
        new_state = next_state(self._state, trigger)
        if new_state != self._state:
            self._state = new_state
            log.info(f"Connection state changed to: {new_state.value}")
            self.state_changed.emit(new_state)

    def _emit_error(self, message: str) -> None:
        self._fire(Trigger.ERROR)
        self.error.emit(message)

    def _emit_disconnected(self) -> None:
        self._switching_gateway = False
        self._fire(Trigger.DISCONNECTED)
        self.disconnected.emit()

    # Backend events

    def _on_vpn_connected(self) -> None:
        self._connection_timer.stop()
        self._last_error = ""
        self._fire(Trigger.CONNECTED)

        if self._switching_gateway:
            self._switching_gateway = False
            self.gateway_switched.emit(self._current_gateway)
        else:
            self.connected.emit()

    def _on_vpn_disconnected(self) -> None:
        self._connection_timer.stop()
        self._emit_disconnected()

    def _on_vpn_error(self, message: str) -> None:
        self._connection_timer.stop()
        self._last_error = message
        log.error(f"VPN Error: {message}")
        self._emit_error(message)

    def _on_vpn_log_available(self, line: str) -> None:
        self.log_available.emit(line)

    def _on_connection_timeout(self) -> None:
        timeout = ConnectionTimeout("Connection timeout")
        log.error("Connection timeout occurred")
        self._last_error = str(timeout)
        # Enter ERROR first so a synchronous disconnected takes ERROR -> DISCONNECTED
        self._emit_error(str(timeout))
        if self._backend is not None:
            try:
                self._backend.disconnect()
            except Exception as e:
                log.warning(f"Cleanup disconnect after timeout failed: {e}")
