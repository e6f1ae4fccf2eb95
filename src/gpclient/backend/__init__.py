"""Backend module - provides the tunnel backend implementations."""

from typing import TYPE_CHECKING, Optional, TextIO

if TYPE_CHECKING:
    from .base import VPN


def get_backend(json_output: bool = False, stream: Optional[TextIO] = None) -> "VPN":
    """Create the tunnel backend chosen at startup.

    Args:
        json_output: Print the handshake result as JSON instead of tunneling
        stream: Output stream for the JSON backend (default stdout)

    Returns:
        JsonVPN or DBusVPN instance
    """
    if json_output:
        from .json_stdout import JsonVPN
        return JsonVPN(stream)

    from .gpservice import DBusVPN
    return DBusVPN()
