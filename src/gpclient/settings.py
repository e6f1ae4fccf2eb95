"""Persisted client settings and keyring-backed credentials.

Plain settings live in a JSON file; usernames and passwords go to the
system keyring. The authentication and connection managers never read
these directly; the client controller injects the values they need.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from gpclient.constants import (
    DEFAULT_CLIENT_OS,
    DEFAULT_LOG_FILE,
    KEYRING_SERVICE,
    SETTINGS_FILE,
)
from gpclient.models import Gateway, find_gateway

log = logging.getLogger(__name__)

CREDENTIALS_KEY = "credentials"

DEFAULTS = {
    "portal": "",
    "client_os": DEFAULT_CLIENT_OS,
    "os_version": "",
    "auto_connect": False,
    "log_level": "INFO",
    "log_to_file": False,
    "log_file": str(DEFAULT_LOG_FILE),
}


def _portal_key(portal: str) -> str:
    return portal.replace("/", "_")


class Settings:
    """Client settings stored as JSON."""

    def __init__(self, path: Optional[Path] = None):
        """Load settings from path, filling in defaults.

        Args:
            path: Settings file (default ~/.config/gpclient/settings.json)
        """
        self.path = Path(path) if path else SETTINGS_FILE
        self._data: dict = {}
        self._load()

    def _load(self) -> None:
        data = {}
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text())
            except (OSError, json.JSONDecodeError) as e:
                log.warning(f"Ignoring unreadable settings file {self.path}: {e}")
                data = {}
        if not isinstance(data, dict):
            data = {}
        for key, value in DEFAULTS.items():
            data.setdefault(key, value)
        data.setdefault("gateways", {})
        self._data = data
        log.info(f"Settings initialized with file: {self.path}")

    def sync(self) -> bool:
        """Write settings to disk."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self._data, indent=2))
            return True
        except OSError as e:
            log.error(f"Cannot write settings to {self.path}: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, DEFAULTS.get(key, default))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self.sync()

    # Common values

    @property
    def portal_address(self) -> str:
        return self.get("portal", "")

    def set_portal_address(self, address: str) -> bool:
        """Store the portal address. Returns True if it changed."""
        if self.portal_address == address:
            return False
        self.set("portal", address)
        return True

    @property
    def client_os(self) -> str:
        return self.get("client_os") or DEFAULT_CLIENT_OS

    @property
    def auto_connect(self) -> bool:
        return bool(self.get("auto_connect"))

    @property
    def log_file(self) -> Optional[Path]:
        """Log file path if file logging is enabled."""
        if not self.get("log_to_file"):
            return None
        return Path(self.get("log_file"))

    # Gateways per portal

    def _portal_entry(self, portal: str) -> dict:
        return self._data["gateways"].setdefault(_portal_key(portal), {})

    def gateways(self, portal: str) -> list[Gateway]:
        entry = self._data["gateways"].get(_portal_key(portal), {})
        return Gateway.parse_list(entry.get("list", ""))

    def set_gateways(self, portal: str, gateways: list[Gateway]) -> None:
        self._portal_entry(portal)["list"] = Gateway.serialize_list(gateways)
        self.sync()
        log.info(f"Stored {len(gateways)} gateways for portal: {portal}")

    def current_gateway(self, portal: str) -> Gateway:
        """Selected gateway for portal, or the empty gateway."""
        entry = self._data["gateways"].get(_portal_key(portal), {})
        name = entry.get("selected", "")
        if not name:
            return Gateway()
        return find_gateway(self.gateways(portal), name) or Gateway()

    def set_current_gateway(self, portal: str, gateway: Gateway) -> None:
        self._portal_entry(portal)["selected"] = gateway.name
        self.sync()
        log.info(f"Selected gateway for {portal}: {gateway.name}")


# Credentials (keyring)

def store_credentials(username: str, password: str) -> bool:
    """Save login credentials to the system keyring."""
    try:
        keyring.set_password(
            KEYRING_SERVICE,
            CREDENTIALS_KEY,
            json.dumps({"username": username, "password": password}),
        )
        return True
    except KeyringError as e:
        log.error(f"Cannot store credentials: {e}")
        return False


def get_credentials(address: str = "") -> Optional[tuple]:
    """Load stored credentials.

    Args:
        address: Portal or gateway asking (credentials are shared)

    Returns:
        (username, password) or None
    """
    try:
        data = keyring.get_password(KEYRING_SERVICE, CREDENTIALS_KEY)
    except KeyringError as e:
        log.error(f"Cannot read credentials: {e}")
        return None
    if not data:
        return None
    try:
        creds = json.loads(data)
    except json.JSONDecodeError:
        log.warning("Stored credentials are corrupt")
        return None
    username = creds.get("username", "")
    password = creds.get("password", "")
    if not username or not password:
        return None
    return username, password


def has_credentials() -> bool:
    return get_credentials() is not None


def stored_username() -> str:
    creds = get_credentials()
    return creds[0] if creds else ""


def clear_credentials() -> bool:
    """Delete stored credentials."""
    try:
        keyring.delete_password(KEYRING_SERVICE, CREDENTIALS_KEY)
        return True
    except PasswordDeleteError:
        return True
    except KeyringError as e:
        log.error(f"Cannot clear credentials: {e}")
        return False
