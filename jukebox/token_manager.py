"""Spotify OAuth credential lifecycle for the playback queue.

The manager moves through three states::

    UNINITIALIZED --load()--> READY                   (cached credential found)
    UNINITIALIZED --load()--> AWAITING_AUTHORIZATION  (nothing cached)
    AWAITING_AUTHORIZATION --complete_authorization()--> READY

In READY, ``get_valid_token`` refreshes the access token once it has expired
and writes the outcome to the store before handing the token out. Concurrent
callers share a single in-flight refresh. A token the API rejects is
invalidated, which forces a refresh on its next use.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable

import requests
from spotipy.exceptions import SpotifyException, SpotifyOauthError
from spotipy.oauth2 import SpotifyOAuth

from .errors import ExternalTimeout, RefreshFailed, Unauthorized
from .metrics import token_refreshes_total
from .spotify import OAUTH_STATE, run_blocking
from .storage import JsonStore

log = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "spotify_access_token"
REFRESH_TOKEN_KEY = "spotify_refresh_token"
EXPIRES_AT_KEY = "spotify_token_expires_at"


class TokenState(Enum):
    UNINITIALIZED = auto()
    AWAITING_AUTHORIZATION = auto()
    READY = auto()


@dataclass
class OAuthCredential:
    access_token: str
    refresh_token: str
    expires_at: float


class TokenManager:
    def __init__(
        self,
        oauth: SpotifyOAuth,
        store: JsonStore,
        *,
        clock: Callable[[], float] = time.time,
        timeout: float = 10.0,
        leeway: float = 60.0,
    ) -> None:
        self._oauth = oauth
        self._store = store
        self._clock = clock
        self.timeout = timeout
        self.leeway = leeway
        self._state = TokenState.UNINITIALIZED
        self._credential: OAuthCredential | None = None
        self._refresh_task: asyncio.Future[str] | None = None

    @property
    def state(self) -> TokenState:
        return self._state

    @property
    def expires_at(self) -> float | None:
        return self._credential.expires_at if self._credential else None

    @property
    def refreshing(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    # ── lifecycle ────────────────────────────────────────────────────────

    def load(self) -> bool:
        """Load the cached credential pair. Returns True when one was found."""
        access = self._store.get(ACCESS_TOKEN_KEY)
        refresh = self._store.get(REFRESH_TOKEN_KEY)
        if not access or not refresh:
            self._state = TokenState.AWAITING_AUTHORIZATION
            log.info("No Spotify token in cache")
            return False
        # Without a stored expiry the token is refreshed on first use.
        expires_at = float(self._store.get(EXPIRES_AT_KEY) or 0)
        self._credential = OAuthCredential(access, refresh, expires_at)
        self._state = TokenState.READY
        log.info("Using cached Spotify token, expires %s", _fmt_ts(expires_at))
        return True

    def begin_authorization(self) -> str:
        """Return the URL an admin opens to grant playback access."""
        if self._state is TokenState.UNINITIALIZED:
            self._state = TokenState.AWAITING_AUTHORIZATION
        return self._oauth.get_authorize_url(state=OAUTH_STATE)

    async def complete_authorization(self, code_or_url: str) -> OAuthCredential:
        """Exchange an authorization code (or the full redirect URL) for a token pair."""
        code = self._extract_code(code_or_url)
        try:
            info = await run_blocking(self._exchange_code, code, timeout=self.timeout)
        except (SpotifyOauthError, SpotifyException, requests.exceptions.RequestException) as exc:
            log.warning("Spotify authorization failed: %s", exc)
            raise Unauthorized(f"Spotify authorization failed: {exc}") from exc
        if not info or not info.get("access_token") or not info.get("refresh_token"):
            raise Unauthorized("Spotify returned no token pair")
        cred = self._apply(info, fallback_refresh="")
        log.info("Spotify authorized, token expires %s", _fmt_ts(cred.expires_at))
        return cred

    def _extract_code(self, code_or_url: str) -> str:
        text = code_or_url.strip()
        if not text:
            raise Unauthorized("No authorization code given")
        if "://" not in text:
            return text
        try:
            state, code = SpotifyOAuth.parse_auth_response_url(text)
        except SpotifyOauthError as exc:
            raise Unauthorized(f"Spotify denied access: {exc}") from exc
        if state is not None and state != OAUTH_STATE:
            raise Unauthorized("OAuth state mismatch")
        if not code:
            raise Unauthorized("No code in the redirect URL")
        return code

    def _exchange_code(self, code: str) -> dict | None:
        self._oauth.get_access_token(code, as_dict=False, check_cache=False)
        return self._oauth.cache_handler.get_cached_token()

    # ── tokens ───────────────────────────────────────────────────────────

    async def get_valid_token(self, force_refresh: bool = False) -> str:
        """Return an access token, refreshing it first when it has expired.

        Raises Unauthorized when no credential exists, RefreshFailed when the
        refresh exchange is rejected and ExternalTimeout when it times out.
        """
        cred = self._credential
        if cred is None or self._state is not TokenState.READY:
            raise Unauthorized("Spotify is not authorized, an admin has to log in")
        if not force_refresh and self._clock() < cred.expires_at - self.leeway:
            return cred.access_token
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._refresh(cred.refresh_token))
        return await asyncio.shield(self._refresh_task)

    def invalidate(self) -> None:
        """Mark the access token as rejected so the next use refreshes it."""
        if self._credential is None or not self._credential.expires_at:
            return
        self._credential.expires_at = 0
        self._store.set(EXPIRES_AT_KEY, 0)
        log.info("Access token was rejected, refreshing on next use")

    async def _refresh(self, refresh_token: str) -> str:
        loop = asyncio.get_running_loop()
        pending = loop.run_in_executor(None, self._oauth.refresh_access_token, refresh_token)
        try:
            info = await asyncio.wait_for(asyncio.shield(pending), self.timeout)
        except (asyncio.TimeoutError, requests.exceptions.Timeout) as exc:
            if not pending.done():
                pending.add_done_callback(functools.partial(self._apply_late, refresh_token))
            token_refreshes_total.labels(result="timeout").inc()
            log.warning("Spotify token refresh timed out")
            raise ExternalTimeout(f"Token refresh timed out after {self.timeout:g}s") from exc
        except (SpotifyOauthError, SpotifyException, requests.exceptions.RequestException) as exc:
            token_refreshes_total.labels(result="failed").inc()
            log.error("Could not refresh access token: %s", exc)
            raise RefreshFailed(f"Could not refresh access token: {exc}") from exc
        cred = self._apply(info, fallback_refresh=refresh_token)
        token_refreshes_total.labels(result="ok").inc()
        log.info("The access token has been refreshed, new expiry %s", _fmt_ts(cred.expires_at))
        return cred.access_token

    def _apply_late(self, refresh_token: str, pending: asyncio.Future) -> None:
        # A late answer may carry a rotated refresh token.
        if pending.cancelled() or pending.exception() is not None:
            return
        cred = self._credential
        if cred is None or cred.refresh_token != refresh_token or self.refreshing:
            log.info("Discarding late token refresh, the credential changed meanwhile")
            return
        cred = self._apply(pending.result(), fallback_refresh=refresh_token)
        token_refreshes_total.labels(result="late").inc()
        log.info("Applied late token refresh, new expiry %s", _fmt_ts(cred.expires_at))

    def _apply(self, info: dict, *, fallback_refresh: str) -> OAuthCredential:
        cred = OAuthCredential(
            access_token=info["access_token"],
            refresh_token=info.get("refresh_token") or fallback_refresh,
            expires_at=self._clock() + int(info.get("expires_in", 3600)),
        )
        self._credential = cred
        self._state = TokenState.READY
        self._store.update({
            ACCESS_TOKEN_KEY: cred.access_token,
            REFRESH_TOKEN_KEY: cred.refresh_token,
            EXPIRES_AT_KEY: cred.expires_at,
        })
        return cred


def _fmt_ts(ts: float) -> str:
    if not ts:
        return "unknown"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ts))
