"""Bot Discord du système de points.

Le :class:`PointsBot` possède l'unique :class:`PointLedger` du processus
(les caches mémoire supposent un seul écrivain) et le transmet aux cogs.
"""

from __future__ import annotations

import pkgutil
from typing import Optional

import discord
from discord.ext import commands

from config import GUILD_ID
import cogs

from storage.point_ledger import PointLedger, create_ledger


class PointsBot(commands.Bot):
    """Discord bot wiring the point ledger to the cogs."""

    def __init__(self, *args, ledger: Optional[PointLedger] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.ledger: PointLedger = ledger if ledger is not None else create_ledger()

    async def setup_hook(self) -> None:  # type: ignore[override]
        """Load every cog and synchronise the command tree."""
        for module in pkgutil.iter_modules(cogs.__path__):
            await self.load_extension(f"{cogs.__name__}.{module.name}")

        # Use guild-specific sync when ``GUILD_ID`` is defined so commands
        # appear instantly on that server.
        if GUILD_ID:
            guild = discord.Object(id=GUILD_ID)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
        else:
            await self.tree.sync()

    async def close(self) -> None:  # type: ignore[override]
        """Flush pending history rows and close the HTTP session."""
        await self.ledger.aclose()
        await super().close()


def create_bot(ledger: Optional[PointLedger] = None) -> PointsBot:
    """Create a :class:`PointsBot` with the intents the cogs need."""

    intents: discord.Intents = discord.Intents(
        guilds=True,
        members=True,
        messages=True,
        message_content=True,
    )
    return PointsBot(command_prefix="!", intents=intents, ledger=ledger)


__all__ = ["PointsBot", "create_bot"]
