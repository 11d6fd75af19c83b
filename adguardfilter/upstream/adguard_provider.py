"""
AdGuard Home blocked-services operations.

Every call goes through `AuthenticatedClient.do_authenticated_request`, so an expired
session is renewed transparently. Statuses other than 200 and undecodable bodies are
raised as `ProtocolError`.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional, Protocol, Sequence

import requests
from pydantic import ValidationError

from adguardfilter.config import AppConfig, load_app_config
from adguardfilter.core.models import AllBlockedServicesResponse, BlockedService, Schedule, ServiceConfig
from adguardfilter.upstream.client import DEFAULT_HEADERS, AuthenticatedClient
from adguardfilter.upstream.errors import NoStoredCredentialsError, ProtocolError
from adguardfilter.upstream.session import AuthSession, Credentials

logger = logging.getLogger(__name__)

GET_PATH = "/control/blocked_services/get"
ALL_PATH = "/control/blocked_services/all"
UPDATE_PATH = "/control/blocked_services/update"


class AdGuardProvider(Protocol):
    """Protocol for the appliance's blocked-services API."""

    def get_blocked_services(self) -> ServiceConfig:
        """Current blocked service ids and schedule."""
        ...

    def get_all_blocked_services(self) -> List[BlockedService]:
        """Catalogue of every service the appliance knows how to block."""
        ...

    def update_blocked_services(self, service_config: ServiceConfig) -> None: ...

    def reset_blocked_services(self) -> None:
        """Apply the default configuration (the reset action run when a timer fires)."""
        ...


class DefaultAdGuardProvider:
    def __init__(
        self,
        client: AuthenticatedClient,
        *,
        default_ids: Sequence[str],
        default_time_zone: str = "America/Chicago",
    ) -> None:
        self.client = client
        self.default_ids = list(default_ids)
        self.default_time_zone = default_time_zone

    def _url(self, path: str) -> str:
        base = self.client.session.base_url
        if not base:
            logger.error("No upstream base URL stored; cannot call %s", path)
            raise NoStoredCredentialsError()
        return f"{base}{path}"

    def _call(self, method: str, path: str, body: Optional[dict] = None) -> requests.Response:
        url = self._url(path)
        headers = dict(DEFAULT_HEADERS)
        if body is not None:
            headers["Content-Type"] = "application/json"
        req = requests.Request(method, url, json=body, headers=headers)
        resp = self.client.do_authenticated_request(req)
        if resp.status_code != 200:
            text = (resp.text or "")[:500]
            resp.close()
            logger.error("%s %s failed with status %d: %s", method, url, resp.status_code, text)
            raise ProtocolError(
                f"request failed with status: {resp.status_code} {resp.reason or ''}".strip(),
                status_code=resp.status_code,
                body=text,
            )
        return resp

    def get_blocked_services(self) -> ServiceConfig:
        resp = self._call("GET", GET_PATH)
        try:
            cfg = ServiceConfig.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            logger.error("Failed to decode blocked services response: %s", e)
            raise ProtocolError(f"invalid blocked services response: {e}", status_code=resp.status_code) from e
        finally:
            resp.close()

        logger.info("Retrieved blocked services configuration (%d ids)", len(cfg.ids))
        logger.debug("Schedule time zone: %s", cfg.schedule.time_zone)
        return cfg

    def get_all_blocked_services(self) -> List[BlockedService]:
        resp = self._call("GET", ALL_PATH)
        try:
            parsed = AllBlockedServicesResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            logger.error("Failed to decode service catalogue: %s", e)
            raise ProtocolError(f"invalid service catalogue response: {e}", status_code=resp.status_code) from e
        finally:
            resp.close()

        logger.info("Retrieved service catalogue (%d services)", len(parsed.blocked_services))
        return parsed.blocked_services

    def update_blocked_services(self, service_config: ServiceConfig) -> None:
        body = service_config.model_dump(mode="json")
        resp = self._call("PUT", UPDATE_PATH, body)
        resp.close()
        logger.info("Updated blocked services configuration (%d ids)", len(service_config.ids))

    def reset_blocked_services(self) -> None:
        cfg = ServiceConfig(ids=list(self.default_ids), schedule=Schedule(time_zone=self.default_time_zone))
        logger.info("Resetting blocked services to default configuration")
        logger.debug("Default service count: %d", len(cfg.ids))
        self.update_blocked_services(cfg)
        logger.info("Blocked services reset to default configuration")


def build_adguard_provider(cfg: AppConfig) -> DefaultAdGuardProvider:
    """
    Wire session, client and provider from config.

    Configured credentials are stored without logging in; the first 401/403 (or an
    explicit `authenticate`) establishes the session.
    """
    credentials = None
    if cfg.adguard_base_url:
        credentials = Credentials(
            base_url=cfg.adguard_base_url,
            username=cfg.adguard_username or "",
            password=cfg.adguard_password or "",
        )
    session = AuthSession(credentials=credentials)
    client = AuthenticatedClient(session, timeout=cfg.request_timeout_seconds)
    return DefaultAdGuardProvider(
        client,
        default_ids=cfg.default_blocked_services,
        default_time_zone=cfg.default_time_zone,
    )


_adguard_provider: Optional[AdGuardProvider] = None
_provider_lock = threading.Lock()


def get_adguard_provider() -> AdGuardProvider:
    """Process-wide provider, built from `load_app_config()` on first use."""
    global _adguard_provider
    with _provider_lock:
        if _adguard_provider is None:
            _adguard_provider = build_adguard_provider(load_app_config())
        return _adguard_provider


def set_adguard_provider(provider: Optional[AdGuardProvider]) -> None:
    """Replace (or clear) the process-wide provider; used by tests."""
    global _adguard_provider
    with _provider_lock:
        _adguard_provider = provider
