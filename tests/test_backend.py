"""Tests for tunnel backends."""

import io
import json

import pytest

from fakes import Recorder
from gpclient.backend import get_backend
from gpclient.backend.base import VPN
from gpclient.backend.json_stdout import JsonVPN
from gpclient.constants import VPN_STATUS_CONNECTED, VPN_STATUS_DISCONNECTED, VPN_STATUS_ERROR
from gpclient.errors import BackendUnavailable


class TestJsonVPN:
    """Tests for the JSON output backend."""

    def test_get_backend_json(self):
        """get_backend(json_output=True) returns the JSON backend."""
        backend = get_backend(json_output=True, stream=io.StringIO())
        assert isinstance(backend, JsonVPN)
        assert isinstance(backend, VPN)

    def test_connect_writes_json(self):
        """connect() prints one JSON line and reports connected."""
        stream = io.StringIO()
        backend = JsonVPN(stream)
        connected = Recorder(backend.connected)

        backend.connect("us.vpn.example.com", ["us.vpn.example.com", "eu.vpn.example.com"], "alice", "cookie")

        assert json.loads(stream.getvalue()) == {
            "server": "us.vpn.example.com",
            "gateways": ["us.vpn.example.com", "eu.vpn.example.com"],
            "username": "alice",
            "cookie": "cookie",
        }
        assert stream.getvalue().endswith("\n")
        assert connected.count == 1
        assert backend.status() == VPN_STATUS_CONNECTED

    def test_disconnect(self):
        """disconnect() reports disconnected."""
        backend = JsonVPN(io.StringIO())
        disconnected = Recorder(backend.disconnected)

        backend.connect("gw", ["gw"], "alice", "cookie")
        backend.disconnect()

        assert disconnected.count == 1
        assert backend.status() == VPN_STATUS_DISCONNECTED


class TestDBusVPN:
    """Tests for the GPService backend without a reachable service."""

    @pytest.fixture
    def backend(self):
        QtDBus = pytest.importorskip("PyQt6.QtDBus")
        from gpclient.backend.gpservice import DBusVPN

        # A named connection that was never opened
        bus = QtDBus.QDBusConnection("gpclient-test-unconnected")
        return DBusVPN(bus)

    def test_unavailable(self, backend):
        """The backend reports itself unavailable."""
        assert not backend.is_available()
        assert backend.status() == VPN_STATUS_ERROR

    def test_connect_raises(self, backend):
        """connect() raises when the service cannot be reached."""
        with pytest.raises(BackendUnavailable):
            backend.connect("gw", ["gw"], "alice", "cookie")
