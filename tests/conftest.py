"""Pytest configuration and fixtures."""

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError
from PyQt6.QtCore import QCoreApplication

from fakes import (
    AuthenticatorFactory,
    FakeGatewayAuthenticator,
    FakePortalAuthenticator,
    FakeVPN,
)


class MemoryKeyring(KeyringBackend):
    """In-memory keyring so tests never touch the real one."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        if (service, username) not in self.passwords:
            raise PasswordDeleteError("not found")
        del self.passwords[(service, username)]


@pytest.fixture(scope="session", autouse=True)
def qapp():
    """Single Qt application for the whole run."""
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture(autouse=True)
def memory_keyring():
    """Replace the system keyring for every test."""
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture
def portal_factory():
    return AuthenticatorFactory(FakePortalAuthenticator)


@pytest.fixture
def gateway_factory():
    return AuthenticatorFactory(FakeGatewayAuthenticator)


@pytest.fixture
def vpn():
    return FakeVPN()
