"""Backend that prints the handshake result as JSON instead of tunneling.

Useful for scripting: the caller feeds the cookie to openconnect itself.
"""

import json
import logging
import sys
from typing import Optional, TextIO

from PyQt6.QtCore import QObject, pyqtSignal

from gpclient.constants import VPN_STATUS_CONNECTED, VPN_STATUS_DISCONNECTED

log = logging.getLogger(__name__)


class JsonVPN(QObject):
    """Writes one JSON object per connect request to a stream."""

    connected = pyqtSignal()
    disconnected = pyqtSignal()
    error = pyqtSignal(str)
    log_available = pyqtSignal(str)

    def __init__(self, stream: Optional[TextIO] = None, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._stream = stream if stream is not None else sys.stdout
        self._status = VPN_STATUS_DISCONNECTED

    def connect(self, preferred_server: str, servers: list[str], username: str, passwd: str) -> None:
        payload = {
            "server": preferred_server,
            "gateways": list(servers),
            "username": username,
            "cookie": passwd,
        }
        self._stream.write(json.dumps(payload) + "\n")
        self._stream.flush()
        log.info(f"Wrote handshake result for {preferred_server}")
        self._status = VPN_STATUS_CONNECTED
        self.connected.emit()

    def disconnect(self) -> None:
        self._status = VPN_STATUS_DISCONNECTED
        self.disconnected.emit()

    def status(self) -> int:
        return self._status
