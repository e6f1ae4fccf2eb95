"""Constants and configuration for the GlobalProtect client."""

import os
from pathlib import Path

# Application info
APP_NAME = "GlobalProtect"
APP_ID = "com.qt.gpclient"
VERSION = "2.0.0"

# Paths (XDG)
CONFIG_DIR = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")) / "gpclient"
SETTINGS_FILE = CONFIG_DIR / "settings.json"
LOGS_DIR = Path.home() / ".local" / "share" / "gpclient" / "logs"
DEFAULT_LOG_FILE = LOGS_DIR / "gpclient.log"

# Keyring
KEYRING_SERVICE = "gpclient"

# Client identification sent to portal/gateway
DEFAULT_CLIENT_OS = "Linux"
CLIENT_VERSION = "4100"

# Timeouts (milliseconds)
AUTH_TIMEOUT_MS = 60000
CONNECTION_TIMEOUT_MS = 30000
AUTO_CONNECT_DELAY_MS = 2000

# HTTP timeout for a single portal/gateway request (seconds)
HTTP_TIMEOUT = 20

# Tunnel service on the system bus
DBUS_SERVICE = "com.qt.GPService"
DBUS_PATH = "/"
DBUS_INTERFACE = "com.qt.GPService"

# Backend status codes
VPN_STATUS_DISCONNECTED = 0
VPN_STATUS_CONNECTING = 1
VPN_STATUS_CONNECTED = 2
VPN_STATUS_DISCONNECTING = 3
VPN_STATUS_ERROR = 4

# Progress messages
MSG_AUTH_PORTAL = "Authenticating with portal..."
MSG_AUTH_GATEWAY = "Authenticating with gateway..."
