from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import List, Optional

import requests
from requests.cookies import RequestsCookieJar


@dataclass(frozen=True)
class Credentials:
    base_url: str
    username: str
    password: str

    @property
    def complete(self) -> bool:
        return bool(self.base_url and self.username and self.password)


class AuthSession:
    """
    Upstream base URL, credentials and the cookie jar shared by every outgoing request.

    The jar lives on a `requests.Session`. All mutation goes through `lock` (re-entrant) so
    that a login exchange, which swaps credentials and cookies together, is never observed
    half-done by a request being prepared on another thread.
    """

    def __init__(
        self,
        *,
        http: Optional[requests.Session] = None,
        credentials: Optional[Credentials] = None,
    ) -> None:
        self.http = http if http is not None else requests.Session()
        self.lock = threading.RLock()
        self._credentials = credentials

    @property
    def credentials(self) -> Optional[Credentials]:
        with self.lock:
            return self._credentials

    @property
    def base_url(self) -> Optional[str]:
        creds = self.credentials
        return creds.base_url if creds else None

    def can_reauthenticate(self) -> bool:
        creds = self.credentials
        return creds is not None and creds.complete

    def snapshot_cookies(self) -> RequestsCookieJar:
        with self.lock:
            return self.http.cookies.copy()

    def restore_cookies(self, jar: RequestsCookieJar) -> None:
        with self.lock:
            self.http.cookies = jar

    def store(self, credentials: Credentials, cookies: RequestsCookieJar) -> None:
        """Commit a successful login: credentials and cookies change together."""
        with self.lock:
            self.http.cookies.update(cookies)
            self._credentials = credentials

    def cookie_names(self) -> List[str]:
        with self.lock:
            return sorted({c.name for c in self.http.cookies})

    def prepare(self, request: requests.Request) -> requests.PreparedRequest:
        # Merges session headers and the current cookie jar into the request.
        with self.lock:
            return self.http.prepare_request(request)
