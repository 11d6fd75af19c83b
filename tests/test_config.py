from __future__ import annotations

import pytest

from adguardfilter.config import BUILTIN_DEFAULT_BLOCKED_SERVICES, load_app_config


def test_defaults(monkeypatch) -> None:
    for name in (
        "ADGUARD_REQUEST_TIMEOUT_SECONDS",
        "DEFAULT_BLOCKED_SERVICES",
        "defaultBlockedServices",
        "DEFAULT_TIME_ZONE",
        "TIMER_POLICY",
        "RESET_ON_SHUTDOWN",
        "STATIC_DIR",
        "PORT",
        "LOG_LEVEL",
        "logLevel",
        "LOG_PATH",
        "logPath",
    ):
        monkeypatch.delenv(name, raising=False)
    load_app_config.cache_clear()

    cfg = load_app_config()

    assert cfg.adguard_base_url is None
    assert not cfg.credentials_configured
    assert cfg.request_timeout_seconds == 10.0
    assert cfg.default_blocked_services == list(BUILTIN_DEFAULT_BLOCKED_SERVICES)
    assert cfg.default_time_zone == "America/Chicago"
    assert cfg.timer_policy == "single"
    assert cfg.exclusive_timers
    assert cfg.reset_on_shutdown is True
    assert cfg.static_dir == "./public"
    assert cfg.port == 3000
    assert cfg.log_level == "info"
    assert cfg.log_path is None


def test_canonical_names_win_over_legacy_aliases(monkeypatch) -> None:
    monkeypatch.setenv("ADGUARD_BASE_URL", "http://adguard.lan/")
    monkeypatch.setenv("authBaseURL", "http://legacy.lan")
    monkeypatch.setenv("ADGUARD_USERNAME", "admin")
    monkeypatch.setenv("authPassword", "pw")
    load_app_config.cache_clear()

    cfg = load_app_config()

    assert cfg.adguard_base_url == "http://adguard.lan"
    assert cfg.adguard_username == "admin"
    assert cfg.adguard_password == "pw"
    assert cfg.credentials_configured


def test_parsing_and_clamping(monkeypatch) -> None:
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("LOG_PATH", raising=False)
    monkeypatch.delenv("DEFAULT_BLOCKED_SERVICES", raising=False)
    monkeypatch.setenv("ADGUARD_REQUEST_TIMEOUT_SECONDS", "600")
    monkeypatch.setenv("defaultBlockedServices", " tiktok ,, youtube ")
    monkeypatch.setenv("TIMER_POLICY", "per-id")
    monkeypatch.setenv("RESET_ON_SHUTDOWN", "off")
    monkeypatch.setenv("PORT", "8081")
    monkeypatch.setenv("logLevel", "DEBUG")
    monkeypatch.setenv("logPath", "/var/log/adguardfilter-")
    load_app_config.cache_clear()

    cfg = load_app_config()

    assert cfg.request_timeout_seconds == 120.0
    assert cfg.default_blocked_services == ["tiktok", "youtube"]
    assert cfg.timer_policy == "per_id"
    assert not cfg.exclusive_timers
    assert cfg.reset_on_shutdown is False
    assert cfg.port == 8081
    assert cfg.log_level == "debug"
    assert cfg.log_path == "/var/log/adguardfilter-"


def test_invalid_values_fall_back(monkeypatch) -> None:
    monkeypatch.setenv("ADGUARD_REQUEST_TIMEOUT_SECONDS", "soon")
    monkeypatch.setenv("TIMER_POLICY", "many")
    monkeypatch.setenv("PORT", "http")
    load_app_config.cache_clear()

    cfg = load_app_config()

    assert cfg.request_timeout_seconds == 10.0
    assert cfg.timer_policy == "single"
    assert cfg.port == 3000


@pytest.mark.parametrize(
    "raw, expected",
    [("Deb", "debug"), ("Inf", "info"), ("Warn", "warning"), ("Err", "error"), ("WARNING", "warning")],
)
def test_short_log_level_names_are_expanded(monkeypatch, raw, expected) -> None:
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.setenv("logLevel", raw)
    load_app_config.cache_clear()

    assert load_app_config().log_level == expected
