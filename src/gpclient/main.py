"""Command line entry point."""

import argparse
import getpass
import logging
import signal
import sys
from typing import Optional

from PyQt6.QtCore import QCoreApplication, QTimer

from gpclient.backend import get_backend
from gpclient.client import GPClient
from gpclient.constants import APP_ID, APP_NAME, VERSION
from gpclient.logging_config import setup_logging
from gpclient.models import Gateway
from gpclient.settings import (
    Settings,
    clear_credentials,
    has_credentials,
    store_credentials,
    stored_username,
)

log = logging.getLogger(__name__)

QUIT_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gpclient",
        description="GlobalProtect VPN client (portal/gateway login, tunnel via GPService)",
    )
    parser.add_argument("server", nargs="?", help="The URL of the VPN portal")
    parser.add_argument("gateway", nargs="?", help="The URL of a specific VPN gateway")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Write the handshake result to stdout as JSON and exit",
    )
    parser.add_argument("--now", action="store_true", help="Connect immediately")
    parser.add_argument("--reset", action="store_true", help="Reset the client's portal and gateways")
    parser.add_argument("--setup", "-s", action="store_true", help="Store login credentials in the keyring")
    parser.add_argument("--delete", action="store_true", help="Delete stored credentials from the keyring")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


def setup_credentials() -> int:
    """Prompt for username/password and save them to the keyring."""
    default = stored_username()
    prompt = f"Username [{default}]: " if default else "Username: "
    username = input(prompt).strip() or default
    password = getpass.getpass("Password: ")
    if not username or not password:
        print("Username and password are required")
        return 1
    if not store_credentials(username, password):
        print("Failed to store credentials in the keyring")
        return 1
    print("Credentials saved")
    return 0


def install_signal_handlers(client: GPClient) -> QTimer:
    """Route termination signals to client.quit().

    Python only runs signal handlers between bytecodes, so a short timer
    keeps the interpreter ticking while Qt's loop is idle.
    """
    def handle(signum, frame):
        log.info(f"Received signal {signum}, shutting down...")
        client.quit()

    for sig in QUIT_SIGNALS:
        signal.signal(sig, handle)

    ticker = QTimer()
    ticker.timeout.connect(lambda: None)
    ticker.start(500)
    return ticker


def main(argv: Optional[list] = None) -> int:
    """Main entry point.

    Returns:
        Exit code
    """
    args = build_parser().parse_args(argv)

    settings = Settings()
    level = logging.DEBUG if args.debug else settings.get("log_level", "INFO")
    setup_logging(level, settings.log_file)
    log.info(f"{APP_NAME} started, version: {VERSION}")

    if args.setup:
        return setup_credentials()

    if args.delete:
        if not clear_credentials():
            print("Failed to delete credentials")
            return 1
        print("Credentials deleted")
        return 0

    if not has_credentials():
        log.warning("No credentials stored, run with --setup first")

    app = QCoreApplication(sys.argv[:1])
    app.setApplicationName(APP_ID)
    app.setApplicationVersion(VERSION)

    backend = get_backend(json_output=args.json)
    client = GPClient(backend, settings)
    client.quit_requested.connect(app.quit)
    client.notification.connect(lambda title, message: log.info(f"{title}: {message}"))

    client.initialize_from_settings()
    if args.server:
        client.set_portal_address(args.server)
    if args.gateway:
        client.set_current_gateway(Gateway(name=args.gateway, address=args.gateway))

    _ticker = install_signal_handlers(client)

    if args.json:
        backend.connected.connect(client.quit)
        client.auth.authentication_failed.connect(lambda _msg: app.exit(1))

    if args.reset:
        client.reset()

    if args.now or args.json:
        QTimer.singleShot(0, client.connect_vpn)

    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
