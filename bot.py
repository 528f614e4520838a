import logging

import discord
from discord.ext import commands
from dotenv import load_dotenv

from jukebox.config import Settings
from jukebox.errors import ConfigError
from jukebox.i18n import load_locales, require_locale

load_dotenv()

log = logging.getLogger("jukebox")


class Jukebox(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(command_prefix=commands.when_mentioned, intents=intents)
        self.settings = settings
        self._web_runner = None

    async def setup_hook(self) -> None:
        await self.load_extension("cogs.request_cog")
        await self.tree.sync()
        log.info("Command tree synced.")

        if self.settings.metrics_port:
            from jukebox.metrics import start_metrics_server
            start_metrics_server(self.settings.metrics_port)
            log.info("Prometheus metrics server started on :%s", self.settings.metrics_port)

        if self.settings.web_port:
            from web.app import start_web_server
            self._web_runner = await start_web_server(
                self, self.settings.web_port, self.settings.web_admin_token
            )
            log.info("Web dashboard started on :%s", self.settings.web_port)

    async def close(self) -> None:
        if self._web_runner is not None:
            await self._web_runner.cleanup()
        await super().close()

    async def on_ready(self) -> None:
        log.info("Logged in as %s (ID: %s), voting channel %s",
                 self.user, self.user.id, self.settings.voting_channel_id)
        activity = discord.Activity(
            type=discord.ActivityType.listening,
            name="your song requests",
        )
        await self.change_presence(activity=activity)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        settings = Settings.from_env()
        load_locales()
        require_locale(settings.locale)
    except ConfigError as exc:
        raise SystemExit(f"{exc} (check your .env)")

    bot = Jukebox(settings)
    bot.run(settings.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
