"""
Pytest config.

Local imports like `import adguardfilter` rely on the repo root being on sys.path. When
invoking a global `pytest` entrypoint that doesn't happen reliably during collection, so
we pin it here.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlparse

import pytest
import requests


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

_REASONS = {200: "OK", 400: "Bad Request", 401: "Unauthorized", 403: "Forbidden", 500: "Internal Server Error"}


def _make_response(
    status: int,
    body: Union[bytes, str, Dict[str, Any], List[Any], None] = None,
    *,
    cookies: Optional[Dict[str, str]] = None,
    url: str = "http://adguard.test/",
) -> requests.Response:
    """Build a real `requests.Response` without a socket behind it."""
    resp = requests.Response()
    resp.status_code = status
    resp.reason = _REASONS.get(status, "")
    resp.url = url
    resp.encoding = "utf-8"
    if body is None:
        resp._content = b""
    elif isinstance(body, bytes):
        resp._content = body
    elif isinstance(body, str):
        resp._content = body.encode("utf-8")
    else:
        resp._content = json.dumps(body).encode("utf-8")
    resp._content_consumed = True
    for name, value in (cookies or {}).items():
        resp.cookies.set(name, value)
    return resp


class FakeTransport:
    """
    Stand-in for `requests.Session.send`.

    Each entry in `script` is a response, an exception to raise, or a callable taking the
    prepared request. Every prepared request is recorded in `sent`.
    """

    def __init__(self, script: List[Any]) -> None:
        self.script = list(script)
        self.sent: List[requests.PreparedRequest] = []
        self.timeouts: List[Any] = []

    def __call__(self, prepared: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        self.sent.append(prepared)
        self.timeouts.append(kwargs.get("timeout"))
        if not self.script:
            raise AssertionError(f"unexpected request: {prepared.method} {prepared.url}")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(prepared)
        return item

    def paths(self) -> List[str]:
        return [f"{p.method} {urlparse(p.url).path}" for p in self.sent]


@pytest.fixture
def make_response() -> Callable[..., requests.Response]:
    return _make_response


@pytest.fixture
def fake_transport() -> Callable[[List[Any]], FakeTransport]:
    return FakeTransport


@pytest.fixture(autouse=True)
def _isolate_process_singletons(monkeypatch: pytest.MonkeyPatch):
    """Every test gets fresh config, provider and timer registry."""
    from adguardfilter.api import server
    from adguardfilter.config import load_app_config
    from adguardfilter.upstream import adguard_provider

    for name in ("ADGUARD_BASE_URL", "ADGUARD_USERNAME", "ADGUARD_PASSWORD", "authBaseURL", "authUsername", "authPassword"):
        monkeypatch.delenv(name, raising=False)
    load_app_config.cache_clear()
    adguard_provider.set_adguard_provider(None)
    server.set_timer_registry(None)
    yield
    registry = server._timer_registry
    if registry is not None:
        registry.stop_all()
    server.set_timer_registry(None)
    adguard_provider.set_adguard_provider(None)
    load_app_config.cache_clear()
