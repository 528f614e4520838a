"""Track request lifecycle: guest message -> vote message -> playback queue.

The workflow is transport-neutral. It talks to the chat platform through a
:class:`Messenger` and to Spotify through :class:`~jukebox.spotify.SpotifyService`
and :class:`~jukebox.token_manager.TokenManager`. Every user-triggered failure
is turned into a chat reply here; only unexpected errors reach the caller.
"""
from __future__ import annotations

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, auto
from typing import Awaitable, Callable

import aiohttp

from .errors import (
    ExternalTimeout,
    InvalidLink,
    QueueAppendFailed,
    RateLimited,
    TrackLookupFailed,
    Unauthorized,
)
from .i18n import t
from .ledger import RequestState, TrackRequest, VoteLedger
from .link_parser import (
    DECLINE_TOKEN,
    approve_token,
    find_short_link,
    parse,
    parse_callback,
    track_id,
)
from .metrics import (
    posted_requests,
    queue_append_failures_total,
    requests_total,
    track_lookup_seconds,
    votes_total,
)
from .rate_limiter import RateLimiter
from .spotify import SpotifyService
from .token_manager import TokenManager

log = logging.getLogger(__name__)

LinkResolver = Callable[[str], Awaitable[str | None]]


def format_user(first_name: str, username: str | None = None) -> str:
    return f"{first_name} (@{username})" if username else first_name


@dataclass
class Person:
    id: str
    first_name: str
    username: str | None = None

    @property
    def display_name(self) -> str:
        return format_user(self.first_name, self.username)


class Messenger(ABC):
    """Chat operations the workflow needs from the transport."""

    @abstractmethod
    async def send_text(self, chat_id: str, text: str) -> None: ...

    @abstractmethod
    async def send_vote(
        self,
        text: str,
        *,
        approve_token: str,
        decline_token: str,
        track_url: str,
        locale: str = "en",
    ) -> str:
        """Post a vote message to the voting channel and return its id."""

    @abstractmethod
    async def edit_vote(self, message_id: str, text: str) -> None:
        """Replace the vote message text and remove its buttons."""

    @abstractmethod
    async def delete_vote(self, message_id: str) -> None: ...


class IncomingOutcome(Enum):
    IGNORED = auto()
    RATE_LIMITED = auto()
    INVALID_LINK = auto()
    NOT_FOUND = auto()
    POSTED = auto()
    FAILED = auto()


class VoteOutcome(Enum):
    NOOP = auto()
    APPROVED = auto()
    DECLINED = auto()
    FAILED = auto()


async def resolve_short_link(url: str, *, timeout: float = 10.0) -> str | None:
    """Follow a ``spotify.link`` share link and return the final URL."""
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.get(url, allow_redirects=True, max_redirects=5) as resp:
                return str(resp.url)
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        log.info("Could not resolve short link %s: %s", url, exc)
        return None


class RequestWorkflow:
    def __init__(
        self,
        *,
        messenger: Messenger,
        music: SpotifyService,
        tokens: TokenManager,
        limiter: RateLimiter,
        ledger: VoteLedger,
        voting_chat_id: str,
        locale: str = "en",
        delete_after_vote: bool = False,
        link_resolver: LinkResolver | None = None,
    ) -> None:
        self.messenger = messenger
        self.music = music
        self.tokens = tokens
        self.limiter = limiter
        self.ledger = ledger
        self.voting_chat_id = str(voting_chat_id)
        self.locale = locale
        self.delete_after_vote = delete_after_vote
        self._resolve_link = link_resolver or resolve_short_link

    # ── inbound requests ─────────────────────────────────────────────────

    async def handle_incoming(
        self, chat_id: str, requester: Person, text: str | None, now: float
    ) -> IncomingOutcome:
        chat_id = str(chat_id)
        if chat_id == self.voting_chat_id:
            return IncomingOutcome.IGNORED

        try:
            uri = await self._admit(requester, text, now)
        except RateLimited as exc:
            await self.messenger.send_text(
                chat_id, t("rate_limited", self.locale, seconds=exc.retry_after)
            )
            requests_total.labels(outcome="rate_limited").inc()
            return IncomingOutcome.RATE_LIMITED
        except InvalidLink:
            await self.messenger.send_text(chat_id, t("invalid_link", self.locale))
            requests_total.labels(outcome="invalid_link").inc()
            return IncomingOutcome.INVALID_LINK

        request = TrackRequest(
            track_uri=uri,
            requester_id=str(requester.id),
            requester_name=requester.display_name,
            submitted_at=now,
            state=RequestState.RESOLVING,
        )
        try:
            with track_lookup_seconds.time():
                track = await self.music.get_track(track_id(uri))
        except (TrackLookupFailed, ExternalTimeout) as exc:
            log.info("Track lookup for %s failed: %s", uri, exc)
            request.state = RequestState.FAILED
            await self.messenger.send_text(chat_id, t("track_not_found", self.locale))
            requests_total.labels(outcome="not_found").inc()
            return IncomingOutcome.NOT_FOUND

        request.track_title = f"{track.name} • {track.artist_line}"
        request.vote_text = t(
            "vote_text", self.locale,
            requester=request.requester_name, title=track.name, artists=track.artist_line,
        )
        try:
            message_id = await self.messenger.send_vote(
                request.vote_text,
                approve_token=approve_token(uri),
                decline_token=DECLINE_TOKEN,
                track_url=track.public_url,
                locale=self.locale,
            )
        except Exception:
            log.exception("Could not post vote message for %s", uri)
            request.state = RequestState.FAILED
            await self.messenger.send_text(chat_id, t("request_failed", self.locale))
            requests_total.labels(outcome="failed").inc()
            return IncomingOutcome.FAILED

        self.ledger.register(message_id, request)
        posted_requests.inc()
        requests_total.labels(outcome="posted").inc()
        log.info("Request %s from %s posted as message %s",
                 uri, request.requester_name, message_id)
        await self.messenger.send_text(
            chat_id, t("requested", self.locale, title=track.name, artists=track.artist_line)
        )
        return IncomingOutcome.POSTED

    async def _admit(self, requester: Person, text: str | None, now: float) -> str:
        if not self.limiter.allow(requester.id, now):
            raise RateLimited(math.ceil(self.limiter.retry_after(requester.id, now)))
        uri = await self._extract_uri(text)
        if uri is None:
            raise InvalidLink(f"No track link in {text!r}")
        return uri

    async def _extract_uri(self, text: str | None) -> str | None:
        uri = parse(text)
        if uri is not None:
            return uri
        short = find_short_link(text)
        if short is None:
            return None
        return parse(await self._resolve_link(short))

    # ── votes ────────────────────────────────────────────────────────────

    async def handle_vote(
        self, message_id: str, callback_token: str, voter: Person, now: float
    ) -> VoteOutcome:
        message_id = str(message_id)
        request = self.ledger.get(message_id)
        if request is None:
            log.info("Vote for unknown message %s ignored", message_id)
            return VoteOutcome.NOOP

        if callback_token == DECLINE_TOKEN:
            return await self._decline(message_id, voter, now)

        uri = parse_callback(callback_token)
        if uri is None or uri != request.track_uri:
            log.warning("Callback %r does not match request %s", callback_token, message_id)
            return VoteOutcome.NOOP
        return await self._approve(message_id, voter, now)

    async def _decline(self, message_id: str, voter: Person, now: float) -> VoteOutcome:
        request = self.ledger.claim(message_id, RequestState.DECLINED)
        if request is None:
            votes_total.labels(outcome="noop").inc()
            return VoteOutcome.NOOP
        self.ledger.finish(message_id, RequestState.DECLINED, now=now, voter_name=voter.display_name)
        posted_requests.dec()
        votes_total.labels(outcome="declined").inc()
        log.info("%s declined %s", voter.display_name, request.track_uri)
        await self._show_outcome(
            message_id, t("declined", self.locale, voter=voter.display_name, text=request.vote_text)
        )
        return VoteOutcome.DECLINED

    async def _approve(self, message_id: str, voter: Person, now: float) -> VoteOutcome:
        request = self.ledger.claim(message_id, RequestState.QUEUEING)
        if request is None:
            votes_total.labels(outcome="noop").inc()
            return VoteOutcome.NOOP
        posted_requests.dec()
        try:
            token = await self.tokens.get_valid_token()
            await self._queue(request.track_uri, token)
        except Unauthorized as exc:
            return await self._fail(message_id, request, voter, now, exc, "queue_unauthorized")
        except (QueueAppendFailed, ExternalTimeout) as exc:
            return await self._fail(message_id, request, voter, now, exc, "queue_failed")
        except Exception as exc:
            await self._fail(message_id, request, voter, now, exc, "queue_failed")
            raise

        self.ledger.finish(message_id, RequestState.APPROVED, now=now, voter_name=voter.display_name)
        votes_total.labels(outcome="approved").inc()
        log.info("%s accepted %s", voter.display_name, request.track_uri)
        await self._show_outcome(
            message_id, t("approved", self.locale, voter=voter.display_name, text=request.vote_text)
        )
        return VoteOutcome.APPROVED

    async def _queue(self, uri: str, token: str) -> None:
        try:
            await self.music.add_to_queue(uri, token)
        except Unauthorized:
            self.tokens.invalidate()
            raise

    async def _fail(
        self,
        message_id: str,
        request: TrackRequest,
        voter: Person,
        now: float,
        exc: Exception,
        key: str,
    ) -> VoteOutcome:
        self.ledger.finish(message_id, RequestState.FAILED, now=now,
                           voter_name=voter.display_name, error=str(exc))
        votes_total.labels(outcome="failed").inc()
        queue_append_failures_total.labels(error=type(exc).__name__).inc()
        log.warning("Failed to queue track %s: %s", request.track_uri, exc)
        # Failures stay visible even when resolved messages are deleted.
        await self.messenger.edit_vote(
            message_id,
            t(key, self.locale, voter=voter.display_name, uri=request.track_uri, error=exc),
        )
        return VoteOutcome.FAILED

    async def _show_outcome(self, message_id: str, text: str) -> None:
        if self.delete_after_vote:
            await self.messenger.delete_vote(message_id)
        else:
            await self.messenger.edit_vote(message_id, text)
