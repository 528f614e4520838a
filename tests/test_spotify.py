import unittest
from unittest.mock import MagicMock, patch

import requests
from spotipy.exceptions import SpotifyException, SpotifyOauthError

from jukebox.errors import QueueAppendFailed, TrackLookupFailed, Unauthorized
from jukebox.spotify import SpotifyService, Track

TRACK = {
    "id": "5hvIZF56tE8sAwMA9cKmQQ",
    "uri": "spotify:track:5hvIZF56tE8sAwMA9cKmQQ",
    "name": "Song 2",
    "artists": [{"name": "Blur"}],
    "album": {"name": "Blur"},
    "duration_ms": 121000,
    "external_urls": {"spotify": "https://open.spotify.com/track/5hvIZF56tE8sAwMA9cKmQQ"},
}


class SpotifyServiceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.service = SpotifyService("cid", "secret", market="DE", timeout=1.0)
        self.service._sp = MagicMock()
        self.user_client = MagicMock()
        patcher = patch.object(self.service, "_user_client", return_value=self.user_client)
        patcher.start()
        self.addCleanup(patcher.stop)

    async def test_get_track(self) -> None:
        self.service._sp.track.return_value = TRACK
        track = await self.service.get_track("5hvIZF56tE8sAwMA9cKmQQ")

        self.service._sp.track.assert_called_once_with("5hvIZF56tE8sAwMA9cKmQQ", market="DE")
        self.assertEqual(track.name, "Song 2")
        self.assertEqual(track.artist_line, "Blur")
        self.assertEqual(track.duration, "2:01")
        self.assertEqual(track.public_url, TRACK["external_urls"]["spotify"])

    async def test_get_track_not_found(self) -> None:
        self.service._sp.track.side_effect = SpotifyException(404, -1, "non existing id")
        with self.assertRaises(TrackLookupFailed):
            await self.service.get_track("nope")

    async def test_get_track_network_error(self) -> None:
        self.service._sp.track.side_effect = requests.exceptions.ConnectionError("down")
        with self.assertRaises(TrackLookupFailed):
            await self.service.get_track("nope")

    async def test_get_track_client_login_failure(self) -> None:
        self.service._sp.track.side_effect = SpotifyOauthError("invalid_client")
        with self.assertRaises(TrackLookupFailed) as ctx:
            await self.service.get_track("5hvIZF56tE8sAwMA9cKmQQ")
        self.assertIn("invalid_client", str(ctx.exception))

    async def test_add_to_queue(self) -> None:
        await self.service.add_to_queue(TRACK["uri"], "access")
        self.service._user_client.assert_called_once_with("access")
        self.user_client.add_to_queue.assert_called_once_with(TRACK["uri"])

    async def test_rejected_token_is_unauthorized(self) -> None:
        self.user_client.add_to_queue.side_effect = SpotifyException(401, -1, "The access token expired")
        with self.assertRaises(Unauthorized):
            await self.service.add_to_queue(TRACK["uri"], "stale")

    async def test_no_active_device(self) -> None:
        self.user_client.add_to_queue.side_effect = SpotifyException(404, -1, "No active device found")
        with self.assertRaises(QueueAppendFailed) as ctx:
            await self.service.add_to_queue(TRACK["uri"], "access")
        self.assertIn("No active device found", str(ctx.exception))
        self.assertEqual(self.user_client.add_to_queue.call_count, 1)


class TrackTests(unittest.TestCase):
    def test_fallback_public_url(self) -> None:
        track = SpotifyService._to_track({"id": "abc", "name": "X", "artists": []})
        self.assertEqual(track, Track(
            uri="spotify:track:abc",
            name="X",
            public_url="https://open.spotify.com/track/abc",
        ))
