from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from aiohttp.test_utils import AioHTTPTestCase

from jukebox.errors import Unauthorized
from jukebox.ledger import RequestState, TrackRequest, VoteLedger
from jukebox.token_manager import TokenState
from web.app import ADMIN_COOKIE, create_app

AUTHORIZE_URL = "https://accounts.spotify.com/authorize?client_id=cid"
ADMIN_TOKEN = "s3cret"


class WebAppTests(AioHTTPTestCase):
    async def get_application(self):
        ledger = VoteLedger()
        for message_id, submitted_at in (("1", 10.0), ("2", 20.0)):
            ledger.register(message_id, TrackRequest(
                track_uri=f"spotify:track:t{message_id}",
                requester_id="7",
                requester_name="Anna",
                submitted_at=submitted_at,
            ))
        ledger.claim("1", RequestState.DECLINED)
        ledger.finish("1", RequestState.DECLINED, now=30.0, voter_name="Mo")

        tokens = MagicMock()
        tokens.state = TokenState.READY
        tokens.expires_at = 1234.0
        tokens.begin_authorization.return_value = AUTHORIZE_URL
        tokens.complete_authorization = AsyncMock()
        self.cog = SimpleNamespace(tokens=tokens, ledger=ledger)

        self.bot = MagicMock()
        self.bot.get_cog.return_value = self.cog
        self.admin = {"Cookie": f"{ADMIN_COOKIE}={ADMIN_TOKEN}"}
        return create_app(self.bot, admin_token=ADMIN_TOKEN)

    async def test_health(self) -> None:
        resp = await self.client.get("/health")
        self.assertEqual(resp.status, 200)
        self.assertEqual(await resp.json(), {
            "status": "ok",
            "spotify": "ready",
            "token_expires_at": 1234.0,
            "posted_requests": 1,
        })
        self.bot.get_cog.assert_called_with("RequestCog")

    async def test_requests_newest_first(self) -> None:
        resp = await self.client.get("/api/requests")
        data = await resp.json()
        self.assertEqual([r["message_id"] for r in data], ["2", "1"])
        self.assertEqual(data[1]["state"], "declined")

    async def test_requests_filtered_by_state(self) -> None:
        resp = await self.client.get("/api/requests", params={"state": "posted"})
        data = await resp.json()
        self.assertEqual([r["track_uri"] for r in data], ["spotify:track:t2"])

    async def test_login_requires_admin_token(self) -> None:
        for params in ({}, {"token": "guess"}):
            with self.subTest(params=params):
                resp = await self.client.get("/login", params=params, allow_redirects=False)
                self.assertEqual(resp.status, 403)
        self.cog.tokens.begin_authorization.assert_not_called()

    async def test_login_redirects_to_spotify(self) -> None:
        resp = await self.client.get(
            "/login", params={"token": ADMIN_TOKEN}, allow_redirects=False
        )
        self.assertEqual(resp.status, 302)
        self.assertEqual(resp.headers["Location"], AUTHORIZE_URL)
        self.assertEqual(resp.cookies[ADMIN_COOKIE].value, ADMIN_TOKEN)

    async def test_callback_rejects_unauthenticated_browser(self) -> None:
        for headers in ({}, {"Cookie": f"{ADMIN_COOKIE}=guess"}):
            with self.subTest(headers=headers):
                resp = await self.client.get(
                    "/callback",
                    params={"code": "attacker", "state": "not-random-state"},
                    headers=headers,
                )
                self.assertEqual(resp.status, 403)
        self.cog.tokens.complete_authorization.assert_not_called()

    async def test_callback_completes_login(self) -> None:
        resp = await self.client.get(
            "/callback", params={"code": "abc", "state": "s"}, headers=self.admin
        )
        self.assertEqual(resp.status, 200)
        self.cog.tokens.complete_authorization.assert_awaited_once()
        url = self.cog.tokens.complete_authorization.await_args.args[0]
        self.assertIn("code=abc", url)

    async def test_callback_without_code(self) -> None:
        resp = await self.client.get("/callback", headers=self.admin)
        self.assertEqual(resp.status, 400)
        self.cog.tokens.complete_authorization.assert_not_called()

    async def test_callback_failure(self) -> None:
        self.cog.tokens.complete_authorization.side_effect = Unauthorized("OAuth state mismatch")
        resp = await self.client.get(
            "/callback", params={"code": "abc", "state": "forged"}, headers=self.admin
        )
        self.assertEqual(resp.status, 400)
        self.assertIn("OAuth state mismatch", await resp.text())

    async def test_cog_not_loaded(self) -> None:
        self.bot.get_cog.return_value = None
        resp = await self.client.get("/health")
        self.assertEqual(resp.status, 503)


class WebLoginDisabledTests(AioHTTPTestCase):
    async def get_application(self):
        self.tokens = MagicMock()
        self.tokens.state = TokenState.READY
        self.tokens.expires_at = 1234.0
        self.tokens.complete_authorization = AsyncMock()
        self.bot = MagicMock()
        self.bot.get_cog.return_value = SimpleNamespace(tokens=self.tokens, ledger=VoteLedger())
        return create_app(self.bot)

    async def test_login_routes_are_closed(self) -> None:
        resp = await self.client.get("/login", params={"token": ""}, allow_redirects=False)
        self.assertEqual(resp.status, 403)
        resp = await self.client.get(
            "/callback", params={"code": "abc"}, headers={"Cookie": f"{ADMIN_COOKIE}=x"}
        )
        self.assertEqual(resp.status, 403)
        self.tokens.complete_authorization.assert_not_called()

    async def test_health_still_works(self) -> None:
        resp = await self.client.get("/health")
        self.assertEqual(resp.status, 200)
