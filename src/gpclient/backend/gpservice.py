"""Backend that drives the privileged GPService over the system bus."""

import logging
from functools import partial
from typing import Optional

from PyQt6.QtCore import QMetaType, QObject, pyqtSignal, pyqtSlot
from PyQt6.QtDBus import (
    QDBusArgument,
    QDBusConnection,
    QDBusInterface,
    QDBusMessage,
    QDBusPendingCallWatcher,
)

from gpclient.constants import (
    DBUS_INTERFACE,
    DBUS_PATH,
    DBUS_SERVICE,
    VPN_STATUS_ERROR,
)
from gpclient.errors import BackendUnavailable

log = logging.getLogger(__name__)


def _string_list(values: list[str]) -> QDBusArgument:
    """Marshal a Python list as a D-Bus string array (as)."""
    return QDBusArgument(list(values), QMetaType.Type.QStringList.value)


class DBusVPN(QObject):
    """Tunnel backend talking to com.qt.GPService.

    Method calls are asynchronous; a failed call is reported through the
    ``error`` signal. If the service cannot be reached at all, connect()
    raises BackendUnavailable.
    """

    connected = pyqtSignal()
    disconnected = pyqtSignal()
    error = pyqtSignal(str)
    log_available = pyqtSignal(str)

    def __init__(
        self,
        bus: Optional[QDBusConnection] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self._bus = bus if bus is not None else QDBusConnection.systemBus()
        self._iface = QDBusInterface(DBUS_SERVICE, DBUS_PATH, DBUS_INTERFACE, self._bus, self)
        self._watchers: set = set()

        if not self._bus.isConnected():
            log.warning("Cannot connect to the D-Bus system bus")
            return

        for name, slot in (
            ("connected", self._on_connected),
            ("disconnected", self._on_disconnected),
            ("error", self._on_error),
            ("logAvailable", self._on_log_available),
        ):
            if not self._bus.connect(DBUS_SERVICE, DBUS_PATH, DBUS_INTERFACE, name, slot):
                log.warning(f"Cannot subscribe to {DBUS_SERVICE}.{name}")

    def is_available(self) -> bool:
        return self._bus.isConnected() and self._iface.isValid()

    def _require_service(self) -> None:
        if not self.is_available():
            raise BackendUnavailable(
                f"{DBUS_SERVICE} is not running. Start it with: sudo systemctl start gpservice"
            )

    def _call(self, method: str, *args) -> None:
        pending = self._iface.asyncCall(method, *args)
        watcher = QDBusPendingCallWatcher(pending, self)
        self._watchers.add(watcher)
        watcher.finished.connect(partial(self._on_call_finished, method, watcher))

    def _on_call_finished(self, method: str, watcher: QDBusPendingCallWatcher, *_args) -> None:
        self._watchers.discard(watcher)
        if watcher.isError():
            message = f"{method} failed: {watcher.error().message()}"
            log.error(message)
            self.error.emit(message)
        watcher.deleteLater()

    def connect(self, preferred_server: str, servers: list[str], username: str, passwd: str) -> None:
        self._require_service()
        log.info(f"Requesting tunnel to {preferred_server}")
        self._call("connect", preferred_server, _string_list(servers), username, passwd)

    def disconnect(self) -> None:
        self._require_service()
        log.info("Requesting tunnel teardown")
        self._call("disconnect")

    def status(self) -> int:
        if not self.is_available():
            return VPN_STATUS_ERROR
        reply = self._iface.call("status")
        if reply.type() == QDBusMessage.MessageType.ErrorMessage:
            log.warning(f"status failed: {reply.errorMessage()}")
            return VPN_STATUS_ERROR
        args = reply.arguments()
        return int(args[0]) if args else VPN_STATUS_ERROR

    # Service signals

    @pyqtSlot()
    def _on_connected(self) -> None:
        self.connected.emit()

    @pyqtSlot()
    def _on_disconnected(self) -> None:
        self.disconnected.emit()

    @pyqtSlot(str)
    def _on_error(self, message: str) -> None:
        self.error.emit(message)

    @pyqtSlot(str)
    def _on_log_available(self, text: str) -> None:
        self.log_available.emit(text)
