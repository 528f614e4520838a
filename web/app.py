"""Embedded web dashboard for the jukebox bot.

Shares the bot process, with direct access to RequestCog state. Start it by
setting the WEB_PORT env var. With WEB_ADMIN_TOKEN set, an admin opens
``/login?token=...`` and SPOTIFY_REDIRECT_URI pointing at ``/callback`` on this
server finishes the Spotify login straight from the browser.
"""
from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

import aiohttp.web as web

from jukebox.errors import JukeboxError

if TYPE_CHECKING:
    from discord.ext import commands

log = logging.getLogger(__name__)

routes = web.RouteTableDef()


def _get_cog(request: web.Request):
    bot: commands.Bot = request.app["bot"]
    cog = bot.get_cog("RequestCog")
    if cog is None:
        raise web.HTTPServiceUnavailable(text="RequestCog not loaded")
    return cog


# ── Health ───────────────────────────────────────────────────────────────

@routes.get("/health")
async def health(request: web.Request) -> web.Response:
    cog = _get_cog(request)
    return web.json_response({
        "status": "ok",
        "spotify": cog.tokens.state.name.lower(),
        "token_expires_at": cog.tokens.expires_at,
        "posted_requests": len(cog.ledger.posted()),
    })


# ── Requests ─────────────────────────────────────────────────────────────

@routes.get("/api/requests")
async def get_requests(request: web.Request) -> web.Response:
    cog = _get_cog(request)
    state = request.query.get("state")
    items = [r.to_dict() for r in cog.ledger.all()]
    if state:
        items = [r for r in items if r["state"] == state]
    items.sort(key=lambda r: r["submitted_at"], reverse=True)
    return web.json_response(items)


# ── Spotify OAuth ────────────────────────────────────────────────────────

ADMIN_COOKIE = "jukebox_admin"


def _require_admin(request: web.Request, supplied: str | None) -> str:
    expected = request.app["admin_token"]
    if not expected:
        raise web.HTTPForbidden(text="Web login is disabled, set WEB_ADMIN_TOKEN")
    if not supplied or not secrets.compare_digest(supplied.encode(), expected.encode()):
        log.warning("Rejected unauthenticated %s from %s", request.path, request.remote)
        raise web.HTTPForbidden(text="Admin token required")
    return supplied


@routes.get("/login")
async def login(request: web.Request) -> web.Response:
    """Start the Spotify login; needs ``?token=<WEB_ADMIN_TOKEN>``.

    The token is kept in a short-lived cookie so ``/callback`` only accepts
    the browser that started the login.
    """
    token = _require_admin(request, request.query.get("token"))
    cog = _get_cog(request)
    resp = web.HTTPFound(cog.tokens.begin_authorization())
    resp.set_cookie(ADMIN_COOKIE, token, max_age=600, httponly=True, samesite="Lax")
    raise resp


@routes.get("/callback")
async def callback(request: web.Request) -> web.Response:
    _require_admin(request, request.cookies.get(ADMIN_COOKIE))
    cog = _get_cog(request)
    if "code" not in request.query and "error" not in request.query:
        raise web.HTTPBadRequest(text="Missing code parameter")
    try:
        await cog.tokens.complete_authorization(str(request.url))
    except JukeboxError as exc:
        log.warning("Spotify login via web callback failed: %s", exc)
        raise web.HTTPBadRequest(text=f"Spotify login failed: {exc}")
    resp = web.Response(text="Spotify login finished and saved. You can close this tab.")
    resp.del_cookie(ADMIN_COOKIE)
    return resp


# ── Server lifecycle ─────────────────────────────────────────────────────

def create_app(bot: commands.Bot, admin_token: str | None = None) -> web.Application:
    app = web.Application()
    app["bot"] = bot
    app["admin_token"] = admin_token
    app.router.add_routes(routes)
    return app


async def start_web_server(
    bot: commands.Bot, port: int = 8080, admin_token: str | None = None
) -> web.AppRunner:
    runner = web.AppRunner(create_app(bot, admin_token))
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    return runner
