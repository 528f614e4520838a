import re

_TRACK_URL_RE = re.compile(
    r"https?://open\.spotify\.com/(?:intl-[a-z]{2}(?:-[a-z]{2})?/)?track/(\w+)",
    re.IGNORECASE,
)

_SHORT_LINK_RE = re.compile(r"https?://spotify\.link/\w+", re.IGNORECASE)

_CALLBACK_RE = re.compile(r"^accept:(spotify:track:\w+)$")

_URI_RE = re.compile(r"^spotify:track:(\w+)$")

APPROVE_PREFIX = "accept:"
DECLINE_TOKEN = "decline"


def parse(text: str | None) -> str | None:
    """Return the canonical ``spotify:track:<id>`` URI for a track link in *text*.

    The id is taken verbatim from the URL path, so query strings such as
    ``?si=...`` are ignored. Any other input yields None.
    """
    if not text:
        return None
    m = _TRACK_URL_RE.search(text)
    if m:
        return f"spotify:track:{m.group(1)}"
    return None


def find_short_link(text: str | None) -> str | None:
    """Return the first ``spotify.link`` share link in *text*, if any."""
    if not text:
        return None
    m = _SHORT_LINK_RE.search(text)
    return m.group(0) if m else None


def track_id(uri: str) -> str | None:
    m = _URI_RE.match(uri)
    return m.group(1) if m else None


def track_url(uri: str) -> str:
    return f"https://open.spotify.com/track/{track_id(uri) or uri}"


def approve_token(uri: str) -> str:
    return APPROVE_PREFIX + uri


def parse_callback(token: str) -> str | None:
    """Return the track URI carried by an approve token, None for anything else."""
    m = _CALLBACK_RE.match(token)
    return m.group(1) if m else None
