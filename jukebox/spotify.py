from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

import requests
import spotipy
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.exceptions import SpotifyException, SpotifyOauthError
from spotipy.oauth2 import SpotifyClientCredentials, SpotifyOAuth

from .errors import ExternalTimeout, QueueAppendFailed, TrackLookupFailed, Unauthorized
from .link_parser import track_url

log = logging.getLogger(__name__)

SCOPES = [
    "user-read-private",
    "user-read-email",
    "user-read-playback-state",
    "user-modify-playback-state",  # add to queue
]

# Only a single trusted admin completes the login, so the state is fixed.
OAUTH_STATE = "not-random-state"


@dataclass
class Track:
    uri: str
    name: str
    artists: list[str] = field(default_factory=list)
    public_url: str = ""
    album: str = ""
    duration_ms: int = 0

    @property
    def artist_line(self) -> str:
        return ", ".join(self.artists)

    @property
    def duration(self) -> str:
        m, s = divmod(self.duration_ms // 1000, 60)
        return f"{m}:{s:02d}"


async def run_blocking(func: Callable[..., Any], *args: Any, timeout: float, **kwargs: Any) -> Any:
    """Run a blocking spotipy call in the default executor, bounded by *timeout*."""
    loop = asyncio.get_running_loop()
    call = functools.partial(func, *args, **kwargs)
    name = getattr(func, "__name__", "call")
    try:
        return await asyncio.wait_for(loop.run_in_executor(None, call), timeout)
    except asyncio.TimeoutError as exc:
        raise ExternalTimeout(f"{name} timed out after {timeout:g}s") from exc
    except requests.exceptions.Timeout as exc:
        raise ExternalTimeout(f"{name} timed out: {exc}") from exc


def build_oauth(
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    *,
    timeout: float = 10.0,
) -> SpotifyOAuth:
    """Authorization-code manager; tokens are kept by TokenManager, not by spotipy."""
    return SpotifyOAuth(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        state=OAUTH_STATE,
        scope=" ".join(SCOPES),
        cache_handler=MemoryCacheHandler(),
        open_browser=False,
        requests_timeout=timeout,
    )


class SpotifyService:
    """Track lookup (client credentials) and queue append (user token)."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        market: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        auth = SpotifyClientCredentials(
            client_id=client_id,
            client_secret=client_secret,
            requests_timeout=timeout,
        )
        self._sp = spotipy.Spotify(auth_manager=auth, requests_timeout=timeout)
        self.market = market
        self.timeout = timeout

    @staticmethod
    def _to_track(track: dict) -> Track:
        uri = track.get("uri") or f"spotify:track:{track['id']}"
        return Track(
            uri=uri,
            name=track.get("name", ""),
            artists=[a["name"] for a in track.get("artists", [])],
            public_url=track.get("external_urls", {}).get("spotify") or track_url(uri),
            album=track.get("album", {}).get("name", ""),
            duration_ms=track.get("duration_ms", 0),
        )

    async def get_track(self, track_id: str) -> Track:
        try:
            data = await run_blocking(
                self._sp.track, track_id, market=self.market, timeout=self.timeout
            )
        except SpotifyException as exc:
            raise TrackLookupFailed(f"Spotify lookup for {track_id} failed: {exc.msg}") from exc
        except SpotifyOauthError as exc:
            raise TrackLookupFailed(f"Spotify client login failed: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            raise TrackLookupFailed(f"Spotify lookup for {track_id} failed: {exc}") from exc
        if not data:
            raise TrackLookupFailed(f"Spotify returned nothing for {track_id}")
        return self._to_track(data)

    def _user_client(self, access_token: str) -> spotipy.Spotify:
        # Queue appends are never retried.
        return spotipy.Spotify(
            auth=access_token,
            requests_timeout=self.timeout,
            retries=0,
            status_retries=0,
        )

    async def add_to_queue(self, uri: str, access_token: str) -> None:
        sp = self._user_client(access_token)
        try:
            await run_blocking(sp.add_to_queue, uri, timeout=self.timeout)
        except SpotifyException as exc:
            if exc.http_status == 401:
                raise Unauthorized(f"Spotify rejected the access token: {exc.msg}") from exc
            raise QueueAppendFailed(f"Spotify queue append failed ({exc.http_status}): {exc.msg}") from exc
        except requests.exceptions.RequestException as exc:
            raise QueueAppendFailed(f"Spotify queue append failed: {exc}") from exc
        log.info("Queued %s", uri)
