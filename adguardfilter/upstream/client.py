"""
Cookie-session client for the AdGuard Home control API.

`do_authenticated_request` sends a request with the current session and, when the
appliance answers 401/403, logs in again with the stored credentials and resends the
request exactly once:

    Sent -> OK | AuthError | TransportError
    AuthError -> no credentials -> NoStoredCredentialsError
    AuthError -> reauthenticate -> ReauthenticationError | retry (result returned as-is)

Transport failures are never retried here. Non-auth statuses are handed back to the
caller unmodified.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

import requests

from adguardfilter.upstream.errors import (
    AuthenticationFailedError,
    AuthError,
    NoSessionCookiesError,
    NoStoredCredentialsError,
    ReauthenticationError,
    RequestCancelledError,
    TransportError,
    UpstreamError,
)
from adguardfilter.upstream.session import AuthSession, Credentials

logger = logging.getLogger(__name__)

LOGIN_PATH = "/control/login"

DEFAULT_HEADERS = {
    "Accept": "application/json, text/plain, */*",
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
}

DEFAULT_TIMEOUT_SECONDS = 10.0


def is_auth_error(status_code: int) -> bool:
    return status_code in (401, 403)


def _remaining_seconds(deadline: datetime) -> float:
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)
    return (deadline - datetime.now(timezone.utc)).total_seconds()


class AuthenticatedClient:
    def __init__(self, session: AuthSession, *, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.session = session
        self.timeout = timeout

    def _attempt_timeout(
        self,
        deadline: Optional[datetime],
        cancel_event: Optional[threading.Event],
    ) -> float:
        """Timeout for the next exchange, clamped to whatever the caller has left."""
        if cancel_event is not None and cancel_event.is_set():
            raise RequestCancelledError("request cancelled by caller")
        if deadline is None:
            return self.timeout
        remaining = _remaining_seconds(deadline)
        if remaining <= 0:
            raise RequestCancelledError("request deadline exceeded")
        return min(self.timeout, remaining)

    def authenticate(
        self,
        base_url: str,
        username: str,
        password: str,
        *,
        deadline: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """
        Log in and keep the session cookie for later requests.

        Success needs a 200 AND at least one cookie on the response. On any failure the
        previously stored credentials and cookies are left exactly as they were.
        """
        base = (base_url or "").strip().rstrip("/")
        login_url = f"{base}{LOGIN_PATH}"
        req = requests.Request(
            "POST",
            login_url,
            json={"name": username, "password": password},
            headers={**DEFAULT_HEADERS, "Content-Type": "application/json"},
        )

        # Held for the whole exchange: concurrent logins are serialized and no request is
        # prepared against a half-updated jar.
        with self.session.lock:
            timeout = self._attempt_timeout(deadline, cancel_event)
            previous = self.session.snapshot_cookies()
            try:
                # Prepared standalone: the login never carries the stale session cookie.
                resp = self.session.http.send(req.prepare(), timeout=timeout)
            except requests.exceptions.RequestException as e:
                self.session.restore_cookies(previous)
                logger.error("Failed to authenticate to %s: %s", login_url, e)
                raise TransportError(f"failed to authenticate to {login_url}: {e}") from e

            try:
                if resp.status_code != 200:
                    raise AuthenticationFailedError(resp.status_code, resp.reason or "")
                if len(resp.cookies) == 0:
                    raise NoSessionCookiesError()
                logger.debug("Authentication response: %s", (resp.text or "")[:200])
            except AuthError as e:
                self.session.restore_cookies(previous)
                logger.error("Authentication against %s failed: %s", login_url, e)
                raise
            finally:
                resp.close()

            self.session.store(Credentials(base_url=base, username=username, password=password), resp.cookies)

        logger.info("Successfully authenticated to %s; cookies stored for future requests", base)
        logger.debug("Session cookies: %s", self.session.cookie_names())

    def _send(
        self,
        request: requests.Request,
        deadline: Optional[datetime],
        cancel_event: Optional[threading.Event],
    ) -> requests.Response:
        timeout = self._attempt_timeout(deadline, cancel_event)
        try:
            prepared = self.session.prepare(request)
            return self.session.http.send(prepared, timeout=timeout)
        except requests.exceptions.RequestException as e:
            logger.error("%s %s failed: %s", request.method, request.url, e)
            raise TransportError(f"{request.method} {request.url} failed: {e}") from e

    def do_authenticated_request(
        self,
        request: requests.Request,
        *,
        deadline: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> requests.Response:
        """
        Send `request` with the current session, re-authenticating at most once.

        The request is re-prepared for the retry so it picks up the refreshed cookies.
        `deadline` and `cancel_event` are checked before every exchange (including the
        login); each exchange's timeout is clamped to the time remaining.
        """
        resp = self._send(request, deadline, cancel_event)
        if not is_auth_error(resp.status_code):
            return resp

        status = resp.status_code
        resp.close()

        creds = self.session.credentials
        if creds is None or not creds.complete:
            logger.error("Upstream returned %d and no credentials are stored for re-authentication", status)
            raise NoStoredCredentialsError()

        logger.info("Session expired (status %d), attempting re-authentication", status)
        try:
            self.authenticate(
                creds.base_url,
                creds.username,
                creds.password,
                deadline=deadline,
                cancel_event=cancel_event,
            )
        except RequestCancelledError:
            raise
        except UpstreamError as e:
            logger.error("Re-authentication failed: %s", e)
            raise ReauthenticationError(f"re-authentication failed: {e}") from e

        logger.info("Re-authentication successful, retrying %s %s", request.method, request.url)
        return self._send(request, deadline, cancel_event)
