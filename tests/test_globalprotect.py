"""Tests for the GlobalProtect authenticators."""

import urllib.error
import urllib.parse

import pytest

from fakes import Recorder, wait_until
from gpclient.authenticators import globalprotect
from gpclient.authenticators.base import GatewayAuthenticator, PortalAuthenticator
from gpclient.authenticators.globalprotect import (
    GPGatewayAuthenticator,
    GPPortalAuthenticator,
    normalize_address,
    parse_gateway_login,
    parse_portal_config,
    parse_prelogin,
)
from gpclient.errors import GatewayAuthFailed, InitializationFailed, PortalAuthFailed
from gpclient.models import Gateway, GatewayAuthParams

PRELOGIN_OK = """<?xml version="1.0" encoding="UTF-8" ?>
<prelogin-response>
  <status>Success</status>
  <ccusername/>
  <autosubmit>false</autosubmit>
  <msg/>
  <username-label>Username</username-label>
  <region>US</region>
</prelogin-response>
"""

PRELOGIN_SAML = """<prelogin-response>
  <status>Success</status>
  <saml-auth-method>REDIRECT</saml-auth-method>
  <saml-request>aHR0cHM6Ly9pZHAuZXhhbXBsZS5jb20=</saml-request>
</prelogin-response>
"""

PRELOGIN_ERROR = """<prelogin-response>
  <status>Error</status>
  <msg>Valid client certificate is required</msg>
</prelogin-response>
"""

PORTAL_CONFIG = """<?xml version="1.0" encoding="UTF-8" ?>
<policy>
  <portal-name>GP-Portal</portal-name>
  <version>4.1.0</version>
  <gateways>
    <external>
      <list>
        <entry name="us.vpn.example.com">
          <priority>1</priority>
          <description>US-East</description>
        </entry>
        <entry name="eu.vpn.example.com">
          <priority>2</priority>
          <description>EU-West</description>
        </entry>
        <entry name="bare.vpn.example.com"/>
      </list>
    </external>
  </gateways>
  <user-name>alice@example.com</user-name>
  <portal-userauthcookie>uac-token</portal-userauthcookie>
  <portal-prelogonuserauthcookie>empty</portal-prelogonuserauthcookie>
</policy>
"""

ERROR_RESPONSE = """<response status="error"><error>Invalid username or password</error></response>"""

GATEWAY_LOGIN = """<?xml version="1.0" encoding="utf-8"?>
<jnlp>
  <application-desc>
    <argument>(null)</argument>
    <argument>cookie-value</argument>
    <argument>persistent</argument>
    <argument>GP-Gateway</argument>
    <argument>alice</argument>
    <argument>TestAuth</argument>
    <argument>vsys1</argument>
    <argument>corp</argument>
  </application-desc>
</jnlp>
"""


class TestNormalizeAddress:
    """Tests for address cleanup."""

    @pytest.mark.parametrize("raw, expected", [
        ("portal.example.com", "portal.example.com"),
        ("  portal.example.com  ", "portal.example.com"),
        ("https://portal.example.com/global-protect", "portal.example.com"),
        ("portal.example.com:8443/", "portal.example.com:8443"),
        ("10.0.0.1", "10.0.0.1"),
    ])
    def test_valid(self, raw, expected):
        """Schemes and paths are stripped."""
        assert normalize_address(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "https://", "bad host", "-leading.example.com"])
    def test_invalid(self, raw):
        """Unusable addresses fail authenticator construction."""
        with pytest.raises(InitializationFailed):
            normalize_address(raw)

    def test_authenticator_rejects_bad_address(self):
        """Constructing an authenticator validates the address."""
        with pytest.raises(InitializationFailed):
            GPPortalAuthenticator("not a host")


class TestParsers:
    """Tests for response parsing."""

    def test_prelogin(self):
        """Region and SAML flags are read."""
        response = parse_prelogin(PRELOGIN_OK)
        assert response.region == "US"
        assert not response.requires_saml()
        assert parse_prelogin(PRELOGIN_SAML).requires_saml()

    def test_prelogin_error(self):
        """A non-success status raises with the portal's message."""
        with pytest.raises(ValueError, match="client certificate"):
            parse_prelogin(PRELOGIN_ERROR)

    def test_prelogin_not_xml(self):
        """HTML error pages are rejected."""
        with pytest.raises(ValueError):
            parse_prelogin("<html><body>Not found")

    def test_portal_config(self):
        """Gateways, username and cookies come from the policy."""
        config = parse_portal_config(PORTAL_CONFIG, "fallback")

        assert config.all_gateways() == [
            Gateway(name="US-East", address="us.vpn.example.com"),
            Gateway(name="EU-West", address="eu.vpn.example.com"),
            Gateway(name="bare.vpn.example.com", address="bare.vpn.example.com"),
        ]
        assert config.username == "alice@example.com"
        assert config.user_auth_cookie == "uac-token"
        assert config.prelogon_user_auth_cookie == "empty"

    def test_portal_config_without_gateways(self):
        """A policy with no gateways parses to an empty list."""
        config = parse_portal_config("<policy><user-name/></policy>", "bob")
        assert config.all_gateways() == []
        assert config.username == "bob"

    def test_portal_config_rejected(self):
        """An error document means the login was rejected."""
        with pytest.raises(PortalAuthFailed, match="Invalid username"):
            parse_portal_config(ERROR_RESPONSE)

    def test_portal_config_unexpected_root(self):
        """Anything but a policy is a config failure."""
        with pytest.raises(ValueError):
            parse_portal_config("<html/>")

    def test_gateway_login(self):
        """The jnlp arguments become an openconnect cookie."""
        cookie = parse_gateway_login(GATEWAY_LOGIN, "laptop")
        assert urllib.parse.parse_qs(cookie) == {
            "authcookie": ["cookie-value"],
            "portal": ["GP-Gateway"],
            "user": ["alice"],
            "domain": ["corp"],
            "computer": ["laptop"],
        }

    def test_gateway_login_rejected(self):
        """An error document means the login was rejected."""
        with pytest.raises(GatewayAuthFailed):
            parse_gateway_login(ERROR_RESPONSE, "laptop")

    def test_gateway_login_incomplete(self):
        """Too few arguments is an error."""
        with pytest.raises(ValueError):
            parse_gateway_login("<jnlp><application-desc><argument>x</argument></application-desc></jnlp>", "pc")


class FakeServer:
    """Answers http_post by URL path."""

    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    def __call__(self, url, form, timeout=None):
        path = urllib.parse.urlsplit(url).path
        self.requests.append((path, dict(form)))
        response = self.responses[path]
        if isinstance(response, Exception):
            raise response
        return response


def http_error(code):
    return urllib.error.HTTPError("https://portal.example.com", code, "error", {}, None)


def credentials(address):
    return "alice", "hunter2"


class TestPortalAuthenticator:
    """Tests for the threaded portal exchange."""

    def run(self, monkeypatch, responses, creds=credentials):
        server = FakeServer(responses)
        monkeypatch.setattr(globalprotect, "http_post", server)
        auth = GPPortalAuthenticator("portal.example.com", "Linux", creds)
        outcomes = {
            name: Recorder(getattr(auth, name))
            for name in ("success", "fail", "prelogin_failed", "portal_config_failed")
        }
        auth.authenticate()
        assert wait_until(lambda: any(r.count for r in outcomes.values()))
        return auth, outcomes, server

    def test_satisfies_protocol(self):
        """The class fits the portal authenticator interface."""
        assert isinstance(GPPortalAuthenticator("portal.example.com"), PortalAuthenticator)

    def test_success(self, monkeypatch):
        """Prelogin plus getconfig yields config and region."""
        _, outcomes, server = self.run(monkeypatch, {
            "/global-protect/prelogin.esp": PRELOGIN_OK,
            "/global-protect/getconfig.esp": PORTAL_CONFIG,
        })

        config, region = outcomes["success"].last
        assert region == "US"
        assert len(config.gateways) == 3
        path, form = server.requests[1]
        assert path == "/global-protect/getconfig.esp"
        assert form["user"] == "alice"
        assert form["passwd"] == "hunter2"
        assert form["clientos"] == "Linux"

    def test_saml_is_prelogin_failure(self, monkeypatch):
        """SAML portals are reported for the gateway fallback."""
        _, outcomes, _ = self.run(monkeypatch, {"/global-protect/prelogin.esp": PRELOGIN_SAML})
        assert outcomes["prelogin_failed"].count == 1

    def test_unreachable_is_prelogin_failure(self, monkeypatch):
        """Network errors during prelogin are recoverable."""
        _, outcomes, _ = self.run(monkeypatch, {
            "/global-protect/prelogin.esp": urllib.error.URLError("refused"),
        })
        assert outcomes["prelogin_failed"].count == 1

    def test_rejected_credentials(self, monkeypatch):
        """HTTP 512 from getconfig is a login failure."""
        _, outcomes, _ = self.run(monkeypatch, {
            "/global-protect/prelogin.esp": PRELOGIN_OK,
            "/global-protect/getconfig.esp": http_error(512),
        })
        assert "Invalid username or password" in outcomes["fail"].last[0]

    def test_config_server_error(self, monkeypatch):
        """Other HTTP errors from getconfig are config failures."""
        _, outcomes, _ = self.run(monkeypatch, {
            "/global-protect/prelogin.esp": PRELOGIN_OK,
            "/global-protect/getconfig.esp": http_error(500),
        })
        assert outcomes["portal_config_failed"].count == 1

    def test_no_credentials(self, monkeypatch):
        """Missing credentials fail the login."""
        _, outcomes, _ = self.run(
            monkeypatch,
            {"/global-protect/prelogin.esp": PRELOGIN_OK},
            creds=lambda address: None,
        )
        assert "No credentials" in outcomes["fail"].last[0]

    def test_cancel_drops_outcome(self, monkeypatch):
        """A cancelled authenticator stays silent."""
        server = FakeServer({"/global-protect/prelogin.esp": PRELOGIN_SAML})
        monkeypatch.setattr(globalprotect, "http_post", server)
        auth = GPPortalAuthenticator("portal.example.com", "Linux", credentials)
        failed = Recorder(auth.prelogin_failed)

        auth.authenticate()
        auth.cancel()
        assert wait_until(lambda: not globalprotect._active_threads)

        assert failed.count == 0


class TestGatewayAuthenticator:
    """Tests for the threaded gateway exchange."""

    def run(self, monkeypatch, response, params=None, creds=credentials):
        server = FakeServer({"/ssl-vpn/login.esp": response})
        monkeypatch.setattr(globalprotect, "http_post", server)
        auth = GPGatewayAuthenticator("gw.example.com", params or GatewayAuthParams(), creds)
        success = Recorder(auth.success)
        fail = Recorder(auth.fail)
        auth.authenticate()
        assert wait_until(lambda: success.count or fail.count)
        return success, fail, server

    def test_satisfies_protocol(self):
        """The class fits the gateway authenticator interface."""
        assert isinstance(GPGatewayAuthenticator("gw.example.com"), GatewayAuthenticator)

    def test_success(self, monkeypatch):
        """login.esp yields the openconnect cookie."""
        params = GatewayAuthParams(clientos="Windows", user_auth_cookie="uac")
        success, _, server = self.run(monkeypatch, GATEWAY_LOGIN, params)

        assert "authcookie=cookie-value" in success.last[0]
        _, form = server.requests[0]
        assert form["portal-userauthcookie"] == "uac"
        assert form["clientos"] == "Windows"

    def test_params_credentials_win(self, monkeypatch):
        """Username and password in params override the keyring."""
        params = GatewayAuthParams(username="bob", password="secret")
        _, _, server = self.run(monkeypatch, GATEWAY_LOGIN, params, creds=None)

        _, form = server.requests[0]
        assert (form["user"], form["passwd"]) == ("bob", "secret")

    def test_rejected(self, monkeypatch):
        """An error document fails the login."""
        _, fail, _ = self.run(monkeypatch, ERROR_RESPONSE)
        assert fail.values() == ["Invalid username or password"]
