"""Portal -> gateway authentication state machine."""

import logging
from functools import partial
from typing import Callable, Optional, Union

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

from gpclient.authenticators.base import (
    GatewayAuthenticator,
    GatewayAuthenticatorFactory,
    PortalAuthenticator,
    PortalAuthenticatorFactory,
)
from gpclient.constants import (
    AUTH_TIMEOUT_MS,
    DEFAULT_CLIENT_OS,
    MSG_AUTH_GATEWAY,
    MSG_AUTH_PORTAL,
)
from gpclient.errors import (
    AuthTimeout,
    GatewayAuthFailed,
    GPClientError,
    InitializationFailed,
    PortalAuthFailed,
    RecoverableProtocolMismatch,
)
from gpclient.models import (
    AuthState,
    Gateway,
    GatewayAuthParams,
    PortalConfig,
    SessionResult,
)

log = logging.getLogger(__name__)

IN_FLIGHT_STATES = (AuthState.AUTHENTICATING_PORTAL, AuthState.AUTHENTICATING_GATEWAY)


def filter_preferred_gateway(gateways: list[Gateway], region: str = "") -> Gateway:
    """Pick the gateway to authenticate against.

    1. No gateways: the empty gateway.
    2. One gateway: that gateway.
    3. A region hint: the first gateway whose name contains it, ignoring case.
    4. Otherwise the first gateway.
    """
    if not gateways:
        return Gateway()

    if len(gateways) == 1:
        return gateways[0]

    if region:
        needle = region.casefold()
        for gateway in gateways:
            if needle in gateway.name.casefold():
                log.info(f"Selected gateway by region: {gateway.name}")
                return gateway

    log.info(f"Using first available gateway: {gateways[0].name}")
    return gateways[0]


class AuthenticationManager(QObject):
    """Drives one portal and/or gateway login cycle at a time.

    Only one attempt is in flight; starting a new one requires the manager
    to be IDLE (call reset() after a terminal state). Every attempt gets a
    fresh authenticator tagged with a generation number, and events from an
    authenticator that has since been discarded are ignored.
    """

    # Signals
    state_changed = pyqtSignal(object)  # AuthState
    portal_authentication_succeeded = pyqtSignal(object, str)  # PortalConfig, region
    gateway_authentication_succeeded = pyqtSignal(str, str)  # auth cookie, username
    authentication_failed = pyqtSignal(str)  # error message
    authentication_progress = pyqtSignal(str)  # status message

    def __init__(
        self,
        portal_factory: PortalAuthenticatorFactory,
        gateway_factory: GatewayAuthenticatorFactory,
        clientos: str = DEFAULT_CLIENT_OS,
        timeout_ms: int = AUTH_TIMEOUT_MS,
        parent: Optional[QObject] = None,
    ):
        """Initialize the authentication manager.

        Args:
            portal_factory: (address, clientos) -> PortalAuthenticator
            gateway_factory: (address, params) -> GatewayAuthenticator
            clientos: Client OS string reported to portal and gateway
            timeout_ms: Time budget for each authentication phase
            parent: Parent QObject
        """
        super().__init__(parent)
        self._portal_factory = portal_factory
        self._gateway_factory = gateway_factory
        self._clientos = clientos

        self._state = AuthState.IDLE
        self._portal_address = ""
        self._gateway_address = ""
        self._selected_gateway = Gateway()
        self._auth_cookie = ""
        self._username = ""
        self._portal_config = PortalConfig()
        self._gateway_params: Optional[GatewayAuthParams] = None

        self.last_error: Optional[GPClientError] = None
        self.fallback_reason: Optional[RecoverableProtocolMismatch] = None

        # Current attempt
        self._authenticator: Optional[Union[PortalAuthenticator, GatewayAuthenticator]] = None
        self._generation = 0
        self._connections: list[tuple] = []

        self._timeout_timer = QTimer(self)
        self._timeout_timer.setSingleShot(True)
        self._timeout_timer.setInterval(timeout_ms)
        self._timeout_timer.timeout.connect(self._on_timeout)

    # Accessors

    @property
    def current_state(self) -> AuthState:
        return self._state

    def is_authenticated(self) -> bool:
        return self._state == AuthState.AUTHENTICATED

    def is_busy(self) -> bool:
        return self._state in IN_FLIGHT_STATES

    @property
    def current_auth_cookie(self) -> str:
        return self._auth_cookie

    @property
    def current_username(self) -> str:
        return self._username

    @property
    def portal_config(self) -> PortalConfig:
        return self._portal_config

    @property
    def portal_address(self) -> str:
        return self._portal_address

    @property
    def selected_gateway(self) -> Gateway:
        """Gateway the current (or last) gateway attempt targets."""
        return self._selected_gateway

    @property
    def timeout_active(self) -> bool:
        return self._timeout_timer.isActive()

    def session(self) -> Optional[SessionResult]:
        """Cookie and username of a completed cycle, None otherwise."""
        if self._state != AuthState.AUTHENTICATED:
            return None
        return SessionResult(auth_cookie=self._auth_cookie, username=self._username)

    # Public operations

    def authenticate_portal(self, portal_address: str) -> None:
        """Start a portal-first cycle."""
        if self._state != AuthState.IDLE:
            log.warning("Authentication already in progress")
            return

        log.info(f"Starting portal authentication for: {portal_address}")
        self._portal_address = portal_address
        self._auth_cookie = ""
        self._username = ""
        self._portal_config = PortalConfig()
        self._cleanup_current_auth()

        self._set_state(AuthState.AUTHENTICATING_PORTAL)
        self.authentication_progress.emit(MSG_AUTH_PORTAL)

        try:
            authenticator = self._portal_factory(portal_address, self._clientos)
        except Exception as e:
            self._fail(InitializationFailed(f"Failed to initialize portal authentication: {e}"))
            return

        self._attach(authenticator, {
            "success": self._on_portal_auth_success,
            "fail": self._on_portal_auth_failed,
            "prelogin_failed": self._on_portal_prelogin_failed,
            "portal_config_failed": self._on_portal_config_failed,
        })
        self._start_attempt(authenticator, "portal")

    def authenticate_gateway(self, gateway_address: str, params: GatewayAuthParams) -> None:
        """Start a gateway-only cycle."""
        if self._state != AuthState.IDLE:
            log.warning("Authentication already in progress")
            return

        log.info(f"Starting gateway authentication for: {gateway_address}")
        self._gateway_address = gateway_address
        self._gateway_params = params
        if self._selected_gateway.address != gateway_address:
            self._selected_gateway = Gateway(name=gateway_address, address=gateway_address)
        self._auth_cookie = ""
        self._username = ""
        self._cleanup_current_auth()

        self._set_state(AuthState.AUTHENTICATING_GATEWAY)
        self.authentication_progress.emit(MSG_AUTH_GATEWAY)

        try:
            authenticator = self._gateway_factory(gateway_address, params)
        except Exception as e:
            self._fail(InitializationFailed(f"Failed to initialize gateway authentication: {e}"))
            return

        self._attach(authenticator, {
            "success": self._on_gateway_auth_success,
            "fail": self._on_gateway_auth_failed,
        })
        self._start_attempt(authenticator, "gateway")

    def authenticate_gateway_direct(self, gateway_address: str) -> None:
        """Authenticate against an address as if it were a gateway."""
        log.info("Starting direct gateway authentication (treating portal as gateway)")
        self._selected_gateway = Gateway(name=gateway_address, address=gateway_address)
        params = GatewayAuthParams(clientos=self._clientos)
        self.authenticate_gateway(gateway_address, params)

    def reset(self) -> None:
        """Abandon any attempt and return to IDLE with no session."""
        log.info("Resetting authentication manager")

        self._timeout_timer.stop()
        self._cleanup_current_auth()

        self._portal_address = ""
        self._gateway_address = ""
        self._selected_gateway = Gateway()
        self._auth_cookie = ""
        self._username = ""
        self._portal_config = PortalConfig()
        self._gateway_params = None
        self.last_error = None
        self.fallback_reason = None

        self._set_state(AuthState.IDLE)

    # Attempt bookkeeping

    def _set_state(self, new_state: AuthState) -> None:
        if self._state != new_state:
            self._state = new_state
            log.info(f"Authentication state changed to: {new_state.value}")
            self.state_changed.emit(new_state)

    def _attach(self, authenticator, handlers: dict[str, Callable]) -> None:
        """Make authenticator the current handle and route its signals."""
        self._generation += 1
        generation = self._generation
        self._authenticator = authenticator
        for name, handler in handlers.items():
            signal = getattr(authenticator, name)
            slot = partial(self._deliver, generation, handler)
            signal.connect(slot)
            self._connections.append((signal, slot))

    def _deliver(self, generation: int, handler: Callable, *args) -> None:
        if generation != self._generation or self._authenticator is None:
            log.debug("Ignoring event from a discarded authenticator")
            return
        handler(*args)

    def _start_attempt(self, authenticator, phase: str) -> None:
        self._timeout_timer.start()
        try:
            authenticator.authenticate()
        except Exception as e:
            self._fail(InitializationFailed(f"Failed to initialize {phase} authentication: {e}"))

    def _cleanup_current_auth(self) -> None:
        """Discard the current authenticator; its later events are dropped."""
        for signal, slot in self._connections:
            try:
                signal.disconnect(slot)
            except (TypeError, RuntimeError):
                pass  # Already disconnected or object deleted
        self._connections.clear()

        authenticator = self._authenticator
        self._authenticator = None
        self._generation += 1
        if authenticator is not None:
            try:
                authenticator.cancel()
            except RuntimeError as e:
                log.debug(f"Cancel on discarded authenticator failed: {e}")

    def _fail(self, error: GPClientError) -> None:
        self._timeout_timer.stop()
        log.error(str(error))
        self.last_error = error
        self._cleanup_current_auth()

        generation = self._generation
        self.authentication_failed.emit(str(error))
        if generation != self._generation or self._state not in IN_FLIGHT_STATES:
            log.info("Authentication was restarted during failure handling")
            return
        self._set_state(AuthState.FAILED)

    def _fall_back_to_gateway(self) -> None:
        """Retry the portal address as a gateway within the same cycle."""
        self._cleanup_current_auth()
        self._set_state(AuthState.IDLE)
        self.authenticate_gateway_direct(self._portal_address)

    # Portal events

    def _on_portal_auth_success(self, config: PortalConfig, region: str) -> None:
        self._timeout_timer.stop()

        log.info("Portal authentication succeeded")
        self._portal_config = config

        gateways = config.all_gateways()
        if not gateways:
            log.info("No gateways in portal config, treating portal as gateway")
            self._fall_back_to_gateway()
            return

        preferred = filter_preferred_gateway(gateways, region)
        params = GatewayAuthParams.from_portal_config(config, self._clientos)

        self._cleanup_current_auth()
        self._set_state(AuthState.IDLE)
        self._selected_gateway = preferred

        generation = self._generation
        self.portal_authentication_succeeded.emit(config, region)
        if generation != self._generation or self._state != AuthState.IDLE:
            log.info("Authentication was restarted during portal success handling")
            return

        self.authenticate_gateway(preferred.address, params)

    def _on_portal_auth_failed(self, message: str) -> None:
        self._fail(PortalAuthFailed(f"Portal authentication failed: {message}"))

    def _on_portal_prelogin_failed(self, message: str) -> None:
        self._timeout_timer.stop()
        self.fallback_reason = RecoverableProtocolMismatch(f"Portal prelogin failed: {message}")
        log.info(f"{self.fallback_reason}, treating as gateway")
        self._fall_back_to_gateway()

    def _on_portal_config_failed(self, message: str) -> None:
        self._timeout_timer.stop()
        self.fallback_reason = RecoverableProtocolMismatch(f"Portal config failed: {message}")
        log.info(f"{self.fallback_reason}, treating as gateway")
        self._fall_back_to_gateway()

    # Gateway events

    def _on_gateway_auth_success(self, auth_cookie: str) -> None:
        self._timeout_timer.stop()

        log.info("Gateway authentication succeeded")
        self._auth_cookie = auth_cookie
        if self._portal_config.username:
            self._username = self._portal_config.username
        elif self._gateway_params is not None:
            self._username = self._gateway_params.username

        self._set_state(AuthState.AUTHENTICATED)
        self._cleanup_current_auth()
        self.gateway_authentication_succeeded.emit(auth_cookie, self._username)

    def _on_gateway_auth_failed(self, message: str) -> None:
        self._fail(GatewayAuthFailed(f"Gateway authentication failed: {message}"))

    def _on_timeout(self) -> None:
        if self._state not in IN_FLIGHT_STATES:
            return
        log.error("Authentication timeout occurred")
        self._fail(AuthTimeout("Authentication timeout"))
