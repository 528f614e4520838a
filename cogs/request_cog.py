from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timezone

import discord
from discord import app_commands
from discord.ext import commands

from jukebox.config import Settings
from jukebox.i18n import t
from jukebox.ledger import VoteLedger
from jukebox.link_parser import DECLINE_TOKEN, approve_token, parse_callback
from jukebox.metrics import posted_requests
from jukebox.rate_limiter import RateLimiter
from jukebox.spotify import SpotifyService, build_oauth
from jukebox.storage import JsonStore
from jukebox.token_manager import TokenManager, TokenState
from jukebox.workflow import Messenger, Person, RequestWorkflow, VoteOutcome

log = logging.getLogger(__name__)


def person_from(user: discord.abc.User) -> Person:
    """Map a Discord user to a Person; the handle is omitted when it equals the name."""
    name = user.display_name
    handle = user.name if user.name and user.name != name else None
    return Person(id=str(user.id), first_name=name, username=handle)


def _fmt_expiry(ts: float | None) -> str:
    if not ts:
        return "unknown"
    return discord.utils.format_dt(datetime.fromtimestamp(ts, tz=timezone.utc), "R")


# ── vote buttons ─────────────────────────────────────────────────────────

class ApproveButton(
    discord.ui.DynamicItem[discord.ui.Button],
    template=r"accept:(?P<uri>spotify:track:\w+)",
):
    """Approve button; the custom id carries the track URI so it survives restarts."""

    def __init__(self, uri: str, label: str = "✅") -> None:
        super().__init__(
            discord.ui.Button(
                label=label,
                style=discord.ButtonStyle.success,
                custom_id=approve_token(uri),
            )
        )
        self.uri = uri

    @classmethod
    async def from_custom_id(
        cls, interaction: discord.Interaction, item: discord.ui.Button, match: re.Match[str], /
    ) -> ApproveButton:
        return cls(match["uri"])

    async def callback(self, interaction: discord.Interaction) -> None:
        await _dispatch_vote(interaction, approve_token(self.uri))


class DeclineButton(discord.ui.DynamicItem[discord.ui.Button], template=DECLINE_TOKEN):
    def __init__(self, label: str = "❌") -> None:
        super().__init__(
            discord.ui.Button(
                label=label,
                style=discord.ButtonStyle.danger,
                custom_id=DECLINE_TOKEN,
            )
        )

    @classmethod
    async def from_custom_id(
        cls, interaction: discord.Interaction, item: discord.ui.Button, match: re.Match[str], /
    ) -> DeclineButton:
        return cls()

    async def callback(self, interaction: discord.Interaction) -> None:
        await _dispatch_vote(interaction, DECLINE_TOKEN)


async def _dispatch_vote(interaction: discord.Interaction, token: str) -> None:
    cog = interaction.client.get_cog("RequestCog")  # type: ignore[union-attr]
    if cog is None:
        await interaction.response.send_message("Bot is starting up, try again.", ephemeral=True)
        return
    await cog.on_vote(interaction, token)


# ── transport ────────────────────────────────────────────────────────────

class DiscordMessenger(Messenger):
    """Messenger backed by a Discord voting channel (or a thread inside it)."""

    def __init__(
        self, bot: commands.Bot, voting_channel_id: int, voting_thread_id: int | None = None
    ) -> None:
        self.bot = bot
        self.voting_channel_id = voting_channel_id
        self.voting_thread_id = voting_thread_id

    async def _channel(self, channel_id: int):
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(channel_id)
        return channel

    async def _voting_target(self):
        return await self._channel(self.voting_thread_id or self.voting_channel_id)

    async def send_text(self, chat_id: str, text: str) -> None:
        channel = await self._channel(int(chat_id))
        await channel.send(text)  # type: ignore[union-attr]

    async def send_vote(
        self,
        text: str,
        *,
        approve_token: str,
        decline_token: str,
        track_url: str,
        locale: str = "en",
    ) -> str:
        uri = parse_callback(approve_token)
        if uri is None:
            raise ValueError(f"not an approve token: {approve_token!r}")
        view = discord.ui.View(timeout=None)
        view.add_item(ApproveButton(uri, label=t("approve_button", locale)))
        view.add_item(DeclineButton(label=t("decline_button", locale)))
        view.add_item(discord.ui.Button(label=t("open_button", locale), url=track_url))
        target = await self._voting_target()
        message = await target.send(text, view=view)  # type: ignore[union-attr]
        return str(message.id)

    async def edit_vote(self, message_id: str, text: str) -> None:
        target = await self._voting_target()
        try:
            message = await target.fetch_message(int(message_id))  # type: ignore[union-attr]
            await message.edit(content=text, view=None, suppress=True)
        except discord.HTTPException as exc:
            log.warning("Could not edit vote message %s: %s", message_id, exc)

    async def delete_vote(self, message_id: str) -> None:
        target = await self._voting_target()
        try:
            await target.get_partial_message(int(message_id)).delete()  # type: ignore[union-attr]
        except discord.HTTPException as exc:
            log.warning("Could not delete vote message %s: %s", message_id, exc)


# ── cog ──────────────────────────────────────────────────────────────────

class RequestCog(commands.Cog):
    def __init__(self, bot: commands.Bot, settings: Settings) -> None:
        self.bot = bot
        self.settings = settings
        self.locale = settings.locale
        self.store = JsonStore(settings.storage_path)
        self.tokens = TokenManager(
            build_oauth(
                settings.spotify_client_id,
                settings.spotify_client_secret,
                settings.spotify_redirect_uri,
                timeout=settings.external_timeout,
            ),
            self.store,
            timeout=settings.external_timeout,
        )
        self.ledger = VoteLedger(self.store)
        self.workflow = RequestWorkflow(
            messenger=DiscordMessenger(bot, settings.voting_channel_id, settings.voting_thread_id),
            music=SpotifyService(
                settings.spotify_client_id,
                settings.spotify_client_secret,
                market=settings.spotify_market,
                timeout=settings.external_timeout,
            ),
            tokens=self.tokens,
            limiter=RateLimiter(settings.rate_limit_window, settings.rate_limit_count),
            ledger=self.ledger,
            voting_chat_id=str(settings.voting_channel_id),
            locale=settings.locale,
            delete_after_vote=settings.delete_after_vote,
        )

    async def cog_load(self) -> None:
        self.tokens.load()
        count = self.ledger.load()
        posted_requests.set(len(self.ledger.posted()))
        log.info("Loaded %d requests from the ledger", count)
        self.bot.add_dynamic_items(ApproveButton, DeclineButton)

    async def cog_unload(self) -> None:
        self.bot.remove_dynamic_items(ApproveButton, DeclineButton)

    # ── helpers ──────────────────────────────────────────────────────────

    def _is_voting_channel(self, channel_id: int | None) -> bool:
        return channel_id is not None and channel_id in (
            self.settings.voting_channel_id,
            self.settings.voting_thread_id,
        )

    async def _deny_non_admin(self, interaction: discord.Interaction) -> bool:
        if self.settings.is_admin(interaction.user.id):
            return False
        await interaction.response.send_message(t("admin_only", self.locale), ephemeral=True)
        return True

    # ── events ───────────────────────────────────────────────────────────

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        """Guests request tracks by DM, or by mentioning the bot in a server channel."""
        if message.author.bot:
            return
        if message.guild is not None and not self.bot.user.mentioned_in(message):  # type: ignore[union-attr]
            return

        chat_id = message.channel.id
        if isinstance(message.channel, discord.Thread) and self._is_voting_channel(message.channel.id):
            chat_id = message.channel.parent_id or chat_id
        try:
            await self.workflow.handle_incoming(
                str(chat_id), person_from(message.author), message.content, time.time()
            )
        except Exception:
            log.exception("Failed to handle request from %s", message.author)
            try:
                await message.channel.send(t("request_failed", self.locale))
            except discord.HTTPException:
                pass

    async def on_vote(self, interaction: discord.Interaction, token: str) -> None:
        if not self._is_voting_channel(interaction.channel_id) or interaction.message is None:
            await interaction.response.send_message(t("vote_noop", self.locale), ephemeral=True)
            return
        await interaction.response.defer()
        try:
            outcome = await self.workflow.handle_vote(
                str(interaction.message.id), token, person_from(interaction.user), time.time()
            )
        except Exception:
            log.exception("Failed to handle vote on message %s", interaction.message.id)
            await interaction.followup.send(t("vote_failed", self.locale), ephemeral=True)
            return
        if outcome is VoteOutcome.NOOP:
            await interaction.followup.send(t("vote_noop", self.locale), ephemeral=True)

    # ── commands ─────────────────────────────────────────────────────────

    @app_commands.command(name="help", description="How to request a track")
    async def help(self, interaction: discord.Interaction) -> None:
        await interaction.response.send_message(t("help", self.locale), ephemeral=True)

    @app_commands.command(name="spotify-login", description="Link the Spotify account that plays the music (admin only)")
    async def spotify_login(self, interaction: discord.Interaction) -> None:
        if await self._deny_non_admin(interaction):
            return
        url = self.tokens.begin_authorization()
        await interaction.response.send_message(t("login_url", self.locale, url=url), ephemeral=True)

    @app_commands.command(name="spotify-token", description="Finish the Spotify login (admin only)")
    @app_commands.describe(code="Authorization code or the full URL you were redirected to")
    async def spotify_token(self, interaction: discord.Interaction, code: str) -> None:
        if await self._deny_non_admin(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        try:
            cred = await self.tokens.complete_authorization(code)
        except Exception as exc:
            log.warning("Spotify login by %s failed: %s", interaction.user, exc)
            await interaction.followup.send(t("login_failed", self.locale, error=exc), ephemeral=True)
            return
        await interaction.followup.send(
            t("login_done", self.locale, expires=_fmt_expiry(cred.expires_at)), ephemeral=True
        )

    @app_commands.command(name="id", description="Show the ID of this chat (admin only)")
    async def chat_id(self, interaction: discord.Interaction) -> None:
        if await self._deny_non_admin(interaction):
            return
        channel = interaction.channel
        if isinstance(channel, discord.Thread):
            msg = t("chat_id_thread", self.locale, chat_id=channel.parent_id, thread_id=channel.id)
        else:
            msg = t("chat_id", self.locale, chat_id=interaction.channel_id)
        await interaction.response.send_message(msg, ephemeral=True)

    @app_commands.command(name="status", description="Show Spotify login and vote status (admin only)")
    async def status(self, interaction: discord.Interaction) -> None:
        if await self._deny_non_admin(interaction):
            return
        state = self.tokens.state
        label = "logged in" if state is TokenState.READY else "login required"
        await interaction.response.send_message(
            t(
                "status", self.locale,
                token_state=label,
                expires=_fmt_expiry(self.tokens.expires_at),
                posted=len(self.ledger.posted()),
            ),
            ephemeral=True,
        )


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(RequestCog(bot, bot.settings))  # type: ignore[attr-defined]
