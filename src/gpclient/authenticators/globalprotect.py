"""Password-based GlobalProtect portal and gateway authenticators.

Each attempt runs its HTTP exchange on a QThread and reports the outcome
back on the thread that owns the authenticator:

    Portal:   prelogin.esp -> getconfig.esp
    Gateway:  login.esp

SAML-only portals are reported as a prelogin failure so the caller can
fall back to treating the address as a gateway.
"""

import logging
import re
import socket
import ssl
import urllib.error
import urllib.parse
import urllib.request
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

from PyQt6.QtCore import QObject, QThread, pyqtSignal, pyqtSlot

from gpclient.constants import CLIENT_VERSION, DEFAULT_CLIENT_OS, HTTP_TIMEOUT
from gpclient.errors import GatewayAuthFailed, InitializationFailed, PortalAuthFailed
from gpclient.models import Gateway, GatewayAuthParams, PortalConfig

log = logging.getLogger(__name__)

# (address) -> (username, password) or None
CredentialProvider = Callable[[str], Optional[tuple]]

USER_AGENT = "PAN GlobalProtect"

# Hostname or IP, optional port
RE_HOST = re.compile(r'^[a-zA-Z0-9]([-a-zA-Z0-9.]*[a-zA-Z0-9])?(:\d{1,5})?$')

# HTTP codes GlobalProtect uses to reject credentials
REJECTED_HTTP_CODES = {401, 403, 512}

# Exchange outcomes
OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"
OUTCOME_PRELOGIN_FAILED = "prelogin_failed"
OUTCOME_CONFIG_FAILED = "portal_config_failed"


@dataclass(frozen=True)
class PreloginResponse:
    """Fields of interest from prelogin.esp."""
    saml_auth_method: str = ""
    saml_request: str = ""
    region: str = ""

    def requires_saml(self) -> bool:
        return bool(self.saml_auth_method and self.saml_request)


def normalize_address(address: str) -> str:
    """Reduce a user-entered portal/gateway address to host[:port].

    Raises:
        InitializationFailed: If the address is not a usable host
    """
    value = (address or "").strip()
    if "://" in value:
        value = urllib.parse.urlsplit(value).netloc
    value = value.split("/", 1)[0]
    if not value or len(value) > 253 or not RE_HOST.match(value):
        raise InitializationFailed(f"Invalid address: {address!r}")
    return value


def _text(root: ET.Element, tag: str) -> str:
    elem = root.find(f".//{tag}")
    if elem is None or elem.text is None:
        return ""
    return elem.text.strip()


def _parse_xml(body: str) -> ET.Element:
    try:
        return ET.fromstring(body)
    except ET.ParseError as e:
        raise ValueError(f"Invalid XML response: {e}")


def _check_error_response(root: ET.Element, error_cls: type) -> None:
    """Raise error_cls for a <response status="error"> document."""
    if root.tag == "response" and root.get("status", "").lower() == "error":
        message = _text(root, "error") or "Authentication rejected"
        raise error_cls(message)


def parse_prelogin(body: str) -> PreloginResponse:
    """Parse a prelogin.esp response.

    Raises:
        ValueError: If the response is unparsable or reports an error
    """
    root = _parse_xml(body)
    status = _text(root, "status")
    if status and status.lower() != "success":
        raise ValueError(_text(root, "msg") or f"Prelogin status: {status}")
    return PreloginResponse(
        saml_auth_method=_text(root, "saml-auth-method"),
        saml_request=_text(root, "saml-request"),
        region=_text(root, "region"),
    )


def parse_portal_config(body: str, username: str = "") -> PortalConfig:
    """Parse a getconfig.esp response into a PortalConfig.

    Gateway entries carry their address in the ``name`` attribute and a
    display name in ``<description>``.

    Raises:
        PortalAuthFailed: If the portal rejected the login
        ValueError: If the response is not a portal policy
    """
    root = _parse_xml(body)
    _check_error_response(root, PortalAuthFailed)
    if root.tag != "policy":
        raise ValueError(f"Unexpected portal config root: <{root.tag}>")

    gateways = []
    for entry in root.findall(".//gateways//list/entry"):
        address = (entry.get("name") or "").strip()
        if not address:
            continue
        name = _text(entry, "description") or address
        gateways.append(Gateway(name=name, address=address))

    return PortalConfig(
        gateways=tuple(gateways),
        username=_text(root, "user-name") or username,
        user_auth_cookie=_text(root, "portal-userauthcookie"),
        prelogon_user_auth_cookie=_text(root, "portal-prelogonuserauthcookie"),
    )


def parse_gateway_login(body: str, computer: str) -> str:
    """Turn a login.esp response into an openconnect cookie string.

    Raises:
        GatewayAuthFailed: If the gateway rejected the login
        ValueError: If the response is not a jnlp document
    """
    root = _parse_xml(body)
    _check_error_response(root, GatewayAuthFailed)
    if root.tag != "jnlp":
        raise ValueError(f"Unexpected gateway login root: <{root.tag}>")

    args = [(arg.text or "").strip() for arg in root.findall(".//application-desc/argument")]
    if len(args) < 8:
        raise ValueError("Incomplete gateway login response")

    return urllib.parse.urlencode([
        ("authcookie", args[1]),
        ("portal", args[3]),
        ("user", args[4]),
        ("domain", args[7]),
        ("computer", computer),
    ])


def http_post(url: str, form: dict, timeout: float = HTTP_TIMEOUT) -> str:
    """POST a form and return the decoded body. Errors propagate."""
    data = urllib.parse.urlencode(form).encode("utf-8")
    req = urllib.request.Request(url, data=data, method="POST")
    req.add_header("User-Agent", USER_AGENT)
    req.add_header("Content-Type", "application/x-www-form-urlencoded")

    ctx = ssl.create_default_context()
    with urllib.request.urlopen(req, timeout=timeout, context=ctx) as resp:
        return resp.read().decode("utf-8", errors="replace")


def _login_form(
    server: str,
    username: str,
    password: str,
    clientos: str,
    computer: str,
    user_auth_cookie: str = "",
    prelogon_user_auth_cookie: str = "",
    input_str: str = "",
) -> dict:
    return {
        "prot": "https:",
        "server": server,
        "inputStr": input_str,
        "jnlpReady": "jnlpReady",
        "user": username,
        "passwd": password,
        "computer": computer,
        "ok": "Login",
        "direct": "yes",
        "clientVer": CLIENT_VERSION,
        "os-version": clientos,
        "clientos": clientos,
        "portal-userauthcookie": user_auth_cookie,
        "portal-prelogonuserauthcookie": prelogon_user_auth_cookie,
        "ipv6-support": "yes",
    }


class _ExchangeThread(QThread):
    """Runs one blocking HTTP exchange off the control thread."""

    outcome = pyqtSignal(str, object)

    def __init__(self, exchange: Callable[[], tuple]):
        super().__init__()
        self._exchange = exchange

    def run(self) -> None:
        try:
            kind, payload = self._exchange()
        except Exception as e:
            log.exception("Authentication exchange crashed")
            kind, payload = OUTCOME_FAIL, str(e)
        self.outcome.emit(kind, payload)


# Threads must outlive a cancelled authenticator until they finish
_active_threads: set = set()


def _start_thread(thread: _ExchangeThread) -> None:
    _active_threads.add(thread)
    thread.finished.connect(partial(_active_threads.discard, thread))
    thread.start()


class _ThreadedAuthenticator(QObject):
    """Shared start/cancel/dispatch for the two authenticators."""

    def __init__(self, address: str, credentials: Optional[CredentialProvider], parent=None):
        super().__init__(parent)
        self.address = normalize_address(address)
        self._credentials = credentials
        self._computer = socket.gethostname()
        self._thread: Optional[_ExchangeThread] = None
        self._cancelled = False

    def authenticate(self) -> None:
        if self._thread is not None:
            log.warning(f"Authentication for {self.address} already started")
            return
        self._thread = _ExchangeThread(self._exchange)
        self._thread.outcome.connect(self._on_outcome)
        _start_thread(self._thread)

    def cancel(self) -> None:
        self._cancelled = True

    def _lookup_credentials(self, username: str = "", password: str = "") -> Optional[tuple]:
        if username and password:
            return username, password
        if self._credentials is None:
            return None
        return self._credentials(self.address)

    def _exchange(self) -> tuple:
        raise NotImplementedError

    @pyqtSlot(str, object)
    def _on_outcome(self, kind: str, payload: object) -> None:
        if self._cancelled:
            log.debug(f"Dropping {kind} from cancelled authenticator for {self.address}")
            return
        self._dispatch(kind, payload)

    def _dispatch(self, kind: str, payload: object) -> None:
        raise NotImplementedError


class GPPortalAuthenticator(_ThreadedAuthenticator):
    """Portal login: prelogin, then getconfig with stored credentials."""

    success = pyqtSignal(object, str)  # PortalConfig, region
    fail = pyqtSignal(str)
    prelogin_failed = pyqtSignal(str)
    portal_config_failed = pyqtSignal(str)

    def __init__(
        self,
        address: str,
        clientos: str = DEFAULT_CLIENT_OS,
        credentials: Optional[CredentialProvider] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(address, credentials, parent)
        self.clientos = clientos

    def _exchange(self) -> tuple:
        query = urllib.parse.urlencode({
            "tmp": "tmp",
            "kerberos-support": "yes",
            "ipv6-support": "yes",
            "clientVer": CLIENT_VERSION,
            "clientos": self.clientos,
        })
        prelogin_url = f"https://{self.address}/global-protect/prelogin.esp?{query}"
        log.info(f"Portal prelogin: {self.address}")
        try:
            prelogin = parse_prelogin(http_post(prelogin_url, {}))
        except (urllib.error.URLError, OSError, ValueError) as e:
            return OUTCOME_PRELOGIN_FAILED, str(e)

        if prelogin.requires_saml():
            return OUTCOME_PRELOGIN_FAILED, "SAML authentication is not supported by this portal client"

        creds = self._lookup_credentials()
        if not creds:
            return OUTCOME_FAIL, f"No credentials stored for {self.address}"
        username, password = creds

        form = _login_form(self.address, username, password, self.clientos, self._computer)
        config_url = f"https://{self.address}/global-protect/getconfig.esp"
        try:
            body = http_post(config_url, form)
        except urllib.error.HTTPError as e:
            if e.code in REJECTED_HTTP_CODES:
                return OUTCOME_FAIL, f"Invalid username or password (HTTP {e.code})"
            return OUTCOME_CONFIG_FAILED, f"HTTP {e.code}: {e.reason}"
        except (urllib.error.URLError, OSError) as e:
            return OUTCOME_CONFIG_FAILED, str(e)

        try:
            config = parse_portal_config(body, username)
        except PortalAuthFailed as e:
            return OUTCOME_FAIL, str(e)
        except ValueError as e:
            return OUTCOME_CONFIG_FAILED, str(e)

        log.info(f"Portal returned {len(config.gateways)} gateways, region {prelogin.region!r}")
        return OUTCOME_SUCCESS, (config, prelogin.region)

    def _dispatch(self, kind: str, payload: object) -> None:
        if kind == OUTCOME_SUCCESS:
            config, region = payload
            self.success.emit(config, region)
        elif kind == OUTCOME_PRELOGIN_FAILED:
            self.prelogin_failed.emit(str(payload))
        elif kind == OUTCOME_CONFIG_FAILED:
            self.portal_config_failed.emit(str(payload))
        else:
            self.fail.emit(str(payload))


class GPGatewayAuthenticator(_ThreadedAuthenticator):
    """Gateway login via login.esp."""

    success = pyqtSignal(str)  # openconnect cookie
    fail = pyqtSignal(str)

    def __init__(
        self,
        address: str,
        params: Optional[GatewayAuthParams] = None,
        credentials: Optional[CredentialProvider] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(address, credentials, parent)
        self.params = params or GatewayAuthParams()

    def _exchange(self) -> tuple:
        params = self.params
        creds = self._lookup_credentials(params.username, params.password)
        if not creds:
            return OUTCOME_FAIL, f"No credentials stored for {self.address}"
        username, password = creds

        form = _login_form(
            self.address,
            username,
            password,
            params.clientos,
            self._computer,
            user_auth_cookie=params.user_auth_cookie,
            prelogon_user_auth_cookie=params.prelogon_user_auth_cookie,
            input_str=params.input_str,
        )
        login_url = f"https://{self.address}/ssl-vpn/login.esp"
        log.info(f"Gateway login: {self.address}")
        try:
            body = http_post(login_url, form)
        except urllib.error.HTTPError as e:
            if e.code in REJECTED_HTTP_CODES:
                return OUTCOME_FAIL, f"Invalid username or password (HTTP {e.code})"
            return OUTCOME_FAIL, f"HTTP {e.code}: {e.reason}"
        except (urllib.error.URLError, OSError) as e:
            return OUTCOME_FAIL, str(e)

        try:
            cookie = parse_gateway_login(body, self._computer)
        except (GatewayAuthFailed, ValueError) as e:
            return OUTCOME_FAIL, str(e)
        return OUTCOME_SUCCESS, cookie

    def _dispatch(self, kind: str, payload: object) -> None:
        if kind == OUTCOME_SUCCESS:
            self.success.emit(str(payload))
        else:
            self.fail.emit(str(payload))


def portal_factory(credentials: Optional[CredentialProvider] = None) -> Callable:
    """Factory (address, clientos) -> GPPortalAuthenticator."""
    def create(address: str, clientos: str) -> GPPortalAuthenticator:
        return GPPortalAuthenticator(address, clientos, credentials)
    return create


def gateway_factory(credentials: Optional[CredentialProvider] = None) -> Callable:
    """Factory (address, params) -> GPGatewayAuthenticator."""
    def create(address: str, params: GatewayAuthParams) -> GPGatewayAuthenticator:
        return GPGatewayAuthenticator(address, params, credentials)
    return create
