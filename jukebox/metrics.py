"""Prometheus metric definitions for the jukebox bot."""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

requests_total = Counter(
    "jukebox_requests_total",
    "Inbound track requests by outcome",
    ["outcome"],
)
votes_total = Counter(
    "jukebox_votes_total",
    "Moderator votes by outcome",
    ["outcome"],
)
queue_append_failures_total = Counter(
    "jukebox_queue_append_failures_total",
    "Failed queue appends by error type",
    ["error"],
)
token_refreshes_total = Counter(
    "jukebox_token_refreshes_total",
    "Spotify access token refreshes by result",
    ["result"],
)
posted_requests = Gauge(
    "jukebox_posted_requests",
    "Requests currently waiting for a vote",
)
track_lookup_seconds = Histogram(
    "jukebox_track_lookup_seconds",
    "Time to look up a track on Spotify",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)


def start_metrics_server(port: int = 9090) -> None:
    start_http_server(port)
