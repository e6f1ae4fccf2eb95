"""Value types shared by the authentication and connection managers."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .constants import DEFAULT_CLIENT_OS


class AuthState(Enum):
    """Authentication manager states."""
    IDLE = "idle"
    AUTHENTICATING_PORTAL = "authenticating_portal"
    AUTHENTICATING_GATEWAY = "authenticating_gateway"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class ConnectionState(Enum):
    """Connection manager states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    ERROR = "error"


@dataclass(frozen=True)
class Gateway:
    """A VPN gateway advertised by a portal.

    Gateways are identified by name; two entries with the same name are
    the same gateway even if their addresses differ.
    """
    name: str = ""
    address: str = ""

    def is_empty(self) -> bool:
        return not self.name and not self.address

    def same_as(self, other: "Gateway") -> bool:
        return self.name == other.name

    def to_dict(self) -> dict:
        return {"name": self.name, "address": self.address}

    @classmethod
    def from_dict(cls, data: dict) -> "Gateway":
        return cls(name=data.get("name", ""), address=data.get("address", ""))

    @staticmethod
    def serialize_list(gateways: list["Gateway"]) -> str:
        """Serialize a gateway list to the JSON form used in settings."""
        return json.dumps([gw.to_dict() for gw in gateways])

    @classmethod
    def parse_list(cls, data: str) -> list["Gateway"]:
        """Parse a JSON gateway list, skipping malformed entries."""
        if not data:
            return []
        try:
            items = json.loads(data)
        except json.JSONDecodeError:
            return []
        if not isinstance(items, list):
            return []
        return [cls.from_dict(item) for item in items if isinstance(item, dict)]


@dataclass(frozen=True)
class PortalConfig:
    """Parsed result of a successful portal login."""
    gateways: tuple = ()
    username: str = ""
    user_auth_cookie: str = ""
    prelogon_user_auth_cookie: str = ""

    def all_gateways(self) -> list[Gateway]:
        return list(self.gateways)


@dataclass(frozen=True)
class GatewayAuthParams:
    """Everything a gateway login attempt needs besides the address."""
    clientos: str = DEFAULT_CLIENT_OS
    user_auth_cookie: str = ""
    prelogon_user_auth_cookie: str = ""
    input_str: str = ""
    username: str = ""
    password: str = field(default="", repr=False)

    @classmethod
    def from_portal_config(
        cls,
        config: PortalConfig,
        clientos: str = DEFAULT_CLIENT_OS,
    ) -> "GatewayAuthParams":
        """Carry the portal cookies and username forward to the gateway."""
        return cls(
            clientos=clientos,
            user_auth_cookie=config.user_auth_cookie,
            prelogon_user_auth_cookie=config.prelogon_user_auth_cookie,
            username=config.username,
        )


@dataclass(frozen=True)
class SessionResult:
    """Cookie and username from one successful authentication cycle."""
    auth_cookie: str
    username: str


def gateway_addresses(gateways: list[Gateway]) -> list[str]:
    """Addresses of all gateways, in list order."""
    return [gw.address for gw in gateways]


def find_gateway(gateways: list[Gateway], name: str) -> Optional[Gateway]:
    """First gateway with the given name, or None."""
    for gw in gateways:
        if gw.name == name:
            return gw
    return None
