"""Error types raised by the request workflow and its collaborators."""
from __future__ import annotations


class JukeboxError(Exception):
    """Base class for all jukebox errors."""

    retryable: bool = False


class ConfigError(JukeboxError):
    """Required configuration is missing or malformed."""


class InvalidLink(JukeboxError):
    """The message does not contain a track link."""


class RateLimited(JukeboxError):
    """The user submitted too many requests in the current window."""

    def __init__(self, retry_after: int) -> None:
        super().__init__(f"Rate limited, retry in {retry_after}s")
        self.retry_after = retry_after


class TrackLookupFailed(JukeboxError):
    """The music service could not resolve the track."""


class Unauthorized(JukeboxError):
    """No usable playback credential; an admin must log in again."""


class RefreshFailed(Unauthorized):
    """Exchanging the refresh token for a new access token failed."""


class QueueAppendFailed(JukeboxError):
    """The music service rejected the queue append."""


class ExternalTimeout(JukeboxError):
    """An external call did not finish in time."""

    retryable = True
