"""Tunnel backend capability definition."""

from typing import Protocol, runtime_checkable

from PyQt6.QtCore import pyqtBoundSignal


@runtime_checkable
class VPN(Protocol):
    """Privileged tunnel backend interface.

    All backends must implement this interface. Outcomes are reported
    asynchronously through the signals; connect() and disconnect() only
    raise when the request itself cannot be issued.
    """

    connected: pyqtBoundSignal
    disconnected: pyqtBoundSignal
    error: pyqtBoundSignal  # (message)
    log_available: pyqtBoundSignal  # (text)

    def connect(
        self,
        preferred_server: str,
        servers: list[str],
        username: str,
        passwd: str
    ) -> None:
        """Request a tunnel.

        Args:
            preferred_server: Gateway address to use first
            servers: All known gateway addresses
            username: Login username
            passwd: Session cookie from gateway authentication
        """
        ...

    def disconnect(self) -> None:
        """Request tunnel teardown."""
        ...

    def status(self) -> int:
        """Current backend status (constants.VPN_STATUS_*)."""
        ...
