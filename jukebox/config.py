from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from .errors import ConfigError

_TRUE = {"1", "true", "yes", "on"}


def _int(env: Mapping[str, str], name: str, default: int | None = None) -> int | None:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive")
    return value


def _ids(raw: str | None, name: str) -> frozenset[int]:
    ids = set()
    for part in (raw or "").replace(";", ",").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.add(int(part))
        except ValueError:
            raise ConfigError(f"{name} contains a non-numeric id: {part!r}") from None
    return frozenset(ids)


@dataclass(frozen=True)
class Settings:
    discord_token: str
    spotify_client_id: str
    spotify_client_secret: str
    voting_channel_id: int
    voting_thread_id: int | None = None
    admin_ids: frozenset[int] = frozenset()
    spotify_redirect_uri: str = "http://localhost:8888/callback"
    spotify_market: str | None = None
    rate_limit_window: float = 300.0
    rate_limit_count: int = 3
    delete_after_vote: bool = False
    storage_path: str = "/data/jukebox.json"
    locale: str = "en"
    external_timeout: float = 10.0
    web_port: int | None = None
    web_admin_token: str | None = None
    metrics_port: int | None = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Build settings from environment variables; raises ConfigError when incomplete."""
        env = os.environ if env is None else env
        required = (
            "DISCORD_TOKEN",
            "SPOTIFY_CLIENT_ID",
            "SPOTIFY_CLIENT_SECRET",
            "VOTING_CHANNEL_ID",
        )
        missing = [name for name in required if not (env.get(name) or "").strip()]
        if missing:
            raise ConfigError(f"{', '.join(missing)} must be provided")

        count = _int(env, "RATE_LIMIT_COUNT", 3)
        if count < 1:
            raise ConfigError("RATE_LIMIT_COUNT must be at least 1")

        return cls(
            discord_token=env["DISCORD_TOKEN"].strip(),
            spotify_client_id=env["SPOTIFY_CLIENT_ID"].strip(),
            spotify_client_secret=env["SPOTIFY_CLIENT_SECRET"].strip(),
            voting_channel_id=_int(env, "VOTING_CHANNEL_ID"),
            voting_thread_id=_int(env, "VOTING_THREAD_ID"),
            admin_ids=_ids(env.get("ADMIN_IDS"), "ADMIN_IDS"),
            spotify_redirect_uri=(env.get("SPOTIFY_REDIRECT_URI") or cls.spotify_redirect_uri).strip(),
            spotify_market=(env.get("SPOTIFY_MARKET") or "").strip() or None,
            rate_limit_window=_float(env, "RATE_LIMIT_WINDOW", 300.0),
            rate_limit_count=count,
            delete_after_vote=(env.get("DELETE_AFTER_VOTE") or "").strip().lower() in _TRUE,
            storage_path=(env.get("STORAGE_PATH") or cls.storage_path).strip(),
            locale=(env.get("LOCALE") or "en").strip(),
            external_timeout=_float(env, "EXTERNAL_TIMEOUT", 10.0),
            web_port=_int(env, "WEB_PORT"),
            web_admin_token=(env.get("WEB_ADMIN_TOKEN") or "").strip() or None,
            metrics_port=_int(env, "METRICS_PORT"),
        )

    def is_admin(self, user_id: int | str) -> bool:
        try:
            return int(user_id) in self.admin_ids
        except (TypeError, ValueError):
            return False
