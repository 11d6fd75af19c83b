"""Exceptions raised while talking to the AdGuard Home API."""

from __future__ import annotations

from typing import Optional


class UpstreamError(Exception):
    """Base class for every failure reaching or using the upstream appliance."""


class AuthError(UpstreamError):
    """The upstream session could not be established or re-established."""


class AuthenticationFailedError(AuthError):
    """Login exchange returned a non-success status."""

    def __init__(self, status_code: int, reason: str = "") -> None:
        self.status_code = status_code
        self.reason = reason
        status = f"{status_code} {reason}".strip()
        super().__init__(f"authentication failed with status: {status}")


class NoSessionCookiesError(AuthError):
    """Login returned a success status but no session cookie."""

    def __init__(self) -> None:
        super().__init__("no cookies received from authentication")


class NoStoredCredentialsError(AuthError):
    """A re-authentication was needed but nothing was ever stored to reuse."""

    def __init__(self) -> None:
        super().__init__("authentication required but no credentials available")


class ReauthenticationError(AuthError):
    """Silent re-authentication after a 401/403 failed (see ``__cause__``)."""


class TransportError(UpstreamError):
    """No response was obtained from the upstream host."""


class RequestCancelledError(TransportError):
    """The caller's deadline passed or its cancel event was set before an exchange."""


class ProtocolError(UpstreamError):
    """Upstream answered, but not with what the operation needs."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)
