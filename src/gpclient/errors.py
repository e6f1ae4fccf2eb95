"""Error types surfaced by the authentication and connection managers."""


class GPClientError(Exception):
    """Base error for the client core."""
    pass


class InitializationFailed(GPClientError):
    """A portal or gateway authenticator could not be constructed."""
    pass


class PortalAuthFailed(GPClientError):
    """The portal rejected the login."""
    pass


class GatewayAuthFailed(GPClientError):
    """The gateway rejected the login."""
    pass


class AuthTimeout(GPClientError):
    """An authentication phase exceeded its time budget."""
    pass


class RecoverableProtocolMismatch(GPClientError):
    """Prelogin or portal config failed; the address is retried as a gateway."""
    pass


class BackendUnavailable(GPClientError):
    """No tunnel backend is configured or reachable."""
    pass


class ConnectionTimeout(GPClientError):
    """The tunnel did not come up in time."""
    pass
