from __future__ import annotations

import asyncio
import logging
import os

import discord

import config
from bot import create_bot


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


class DiscordCriticalHandler(logging.Handler):
    def __init__(self, bot: discord.Client, channel_id: int) -> None:
        super().__init__(level=logging.CRITICAL)
        self.bot = bot
        self.channel_id = channel_id

    async def _send(self, message: str) -> None:
        channel = self.bot.get_channel(self.channel_id)
        if channel:
            await channel.send(f"```{message[:1900]}```")

    def emit(self, record: logging.LogRecord) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        loop.create_task(self._send(self.format(record)))


def main() -> None:
    token = os.getenv("DISCORD_TOKEN")
    if not token:
        raise RuntimeError("DISCORD_TOKEN environment variable not set")
    if not config.POINTS_API_URL:
        logging.warning("POINTS_API_URL not set; points will only be stored locally")
    bot = create_bot()

    if config.CRITICAL_LOG_CHANNEL_ID:
        handler = DiscordCriticalHandler(bot, config.CRITICAL_LOG_CHANNEL_ID)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logging.getLogger().addHandler(handler)

    bot.run(token, log_handler=None)


if __name__ == "__main__":
    main()
