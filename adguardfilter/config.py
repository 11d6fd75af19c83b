from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Tuple

# Services blocked again whenever a temporary block ends.
BUILTIN_DEFAULT_BLOCKED_SERVICES: Tuple[str, ...] = (
    "tinder", "plenty_of_fish", "onlyfans", "playstation", "nintendo", "tiktok",
    "aliexpress", "500px", "activision_blizzard", "battle_net", "betway", "blaze",
    "box", "crunchyroll", "directvgo", "disneyplus", "ebay", "espn", "flickr",
    "iheartradio", "iqiyi", "kook", "line", "mercado_libre", "ok", "origin", "qq",
    "riot_games", "signal", "tidal", "tumblr", "ubisoft", "vimeo", "wargaming",
    "xiaohongshu", "zhihu", "yy", "weibo", "wechat", "voot", "viber", "twitch",
    "wizz", "shein", "paramountplus", "pluto_tv", "mail_ru", "kakaotalk", "imgur",
    "hulu", "globoplay", "dailymotion", "clubhouse", "canais_globo", "betano",
    "bigo_live", "amino", "9gag", "betfair", "bilibili", "bluesky", "claro",
    "coolapk", "deezer", "kik", "leagueoflegends", "lionsgateplus", "mastodon",
    "rockstar_games", "temu", "telegram", "soundcloud", "samsung_tv_plus", "looke",
    "hbomax", "discoveryplus", "gog", "nebula", "facebook", "privacy", "snapchat",
    "youtube", "roblox", "spotify_video", "spotify",
)

TIMER_POLICY_SINGLE = "single"
TIMER_POLICY_PER_ID = "per_id"

# Short level names accepted by older deployments (logLevel=Deb, Inf, Warn, Err).
_LOG_LEVEL_ALIASES = {"deb": "debug", "inf": "info", "warn": "warning", "err": "error"}


@dataclass(frozen=True)
class AppConfig:
    # Upstream appliance
    adguard_base_url: Optional[str]
    adguard_username: Optional[str]
    adguard_password: Optional[str]
    request_timeout_seconds: float

    # Reset action
    default_blocked_services: List[str]
    default_time_zone: str

    # Timers
    timer_policy: str  # "single" (one timer system-wide) or "per_id"
    reset_on_shutdown: bool

    # Serving
    static_dir: str
    port: int

    # Logging
    log_level: str
    # A directory (existing, or ending in a separator) gets <HOSTNAME>.log inside it;
    # anything else is a filename prefix, giving <log_path><HOSTNAME>.log.
    log_path: Optional[str]

    @property
    def credentials_configured(self) -> bool:
        return bool(self.adguard_base_url and self.adguard_username and self.adguard_password)

    @property
    def exclusive_timers(self) -> bool:
        return self.timer_policy == TIMER_POLICY_SINGLE


def _env(*names: str) -> Optional[str]:
    """First non-empty value among `names` (canonical name first, legacy aliases after)."""
    for name in names:
        value = (os.getenv(name, "") or "").strip()
        if value:
            return value
    return None


def _parse_csv(value: str) -> List[str]:
    items = [x.strip() for x in (value or "").split(",")]
    return [x for x in items if x]


def _parse_bool(value: Optional[str], default: bool) -> bool:
    v = (value or "").strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return default


@lru_cache(maxsize=1)
def load_app_config() -> AppConfig:
    """
    Load service configuration from environment variables.

    Upstream credentials may also be given with the legacy camelCase names
    (`authBaseURL`, `authUsername`, `authPassword`).
    """
    try:
        timeout = float(_env("ADGUARD_REQUEST_TIMEOUT_SECONDS") or "10")
    except ValueError:
        timeout = 10.0
    timeout = min(max(timeout, 1.0), 120.0)

    defaults = _parse_csv(_env("DEFAULT_BLOCKED_SERVICES", "defaultBlockedServices") or "")
    if not defaults:
        defaults = list(BUILTIN_DEFAULT_BLOCKED_SERVICES)

    policy = (_env("TIMER_POLICY") or TIMER_POLICY_SINGLE).lower().replace("-", "_")
    if policy not in (TIMER_POLICY_SINGLE, TIMER_POLICY_PER_ID):
        policy = TIMER_POLICY_SINGLE

    try:
        port = int(_env("PORT") or "3000")
    except ValueError:
        port = 3000

    base_url = _env("ADGUARD_BASE_URL", "authBaseURL")
    log_level = (_env("LOG_LEVEL", "logLevel") or "info").lower()

    return AppConfig(
        adguard_base_url=base_url.rstrip("/") if base_url else None,
        adguard_username=_env("ADGUARD_USERNAME", "authUsername"),
        adguard_password=_env("ADGUARD_PASSWORD", "authPassword"),
        request_timeout_seconds=timeout,
        default_blocked_services=defaults,
        default_time_zone=_env("DEFAULT_TIME_ZONE") or "America/Chicago",
        timer_policy=policy,
        reset_on_shutdown=_parse_bool(_env("RESET_ON_SHUTDOWN"), True),
        static_dir=_env("STATIC_DIR") or "./public",
        port=port,
        log_level=_LOG_LEVEL_ALIASES.get(log_level, log_level),
        log_path=_env("LOG_PATH", "logPath"),
    )
