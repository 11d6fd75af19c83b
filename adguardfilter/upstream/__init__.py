"""
Upstream (AdGuard Home) access.

- `AuthSession` holds the base URL, credentials and cookie jar.
- `AuthenticatedClient` sends requests with that session and re-authenticates once on 401/403.
- `DefaultAdGuardProvider` implements the blocked-services operations on top of the client.
"""

from adguardfilter.upstream.client import AuthenticatedClient
from adguardfilter.upstream.session import AuthSession, Credentials

__all__ = ["AuthSession", "AuthenticatedClient", "Credentials"]
