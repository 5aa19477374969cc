"""Commandes et écoute d'activité du système de points.

La cog ne contient aucune règle métier : elle appelle le
:class:`~storage.point_ledger.PointLedger` du bot et met en forme les
résultats pour Discord.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from storage.models import AdjustResult
from storage.point_ledger import PointLedger
from utils.interactions import safe_edit, safe_respond
from utils.streak import BASE_ACTIVITY_POINTS, BONUS_TIERS, bonus_for

logger = logging.getLogger(__name__)

# Délai avant de prévenir l'administrateur qu'un ajustement est lent
SLOW_NOTICE_SECONDS = 3.0
RANK_EMOJIS = ("🥇", "🥈", "🥉")
UNAVAILABLE_MSG = (
    "⏳ Les données de points sont temporairement indisponibles. "
    "Réessaie dans quelques instants."
)


def next_milestone(consecutive_days: int) -> int:
    """Prochain jour de série qui rapporte un bonus."""
    day = max(0, consecutive_days) + 1
    while bonus_for(day) == 0:
        day += 1
    return day


def format_activity_dm(guild_name: str, result) -> str:
    lines = [
        f"Ton activité sur **{guild_name}** a mis à jour tes points !",
        f"Points actuels : {result.points}",
        f"Jours d'activité consécutifs : {result.consecutive_days}",
    ]
    if result.is_bonus:
        lines.append(f"🎉 Bonus de série : +{result.bonus} points !")
    elif result.is_decrease:
        lines.append("⚠️ Ta série a été interrompue, le compteur repart à 1.")
    return "\n".join(lines)


class PointsCog(commands.Cog):
    """Points d'activité, classement et ajustements administrateur."""

    def __init__(self, bot: commands.Bot, ledger: Optional[PointLedger] = None) -> None:
        self.bot = bot
        self.ledger: PointLedger = ledger if ledger is not None else bot.ledger

    # ── Events ───────────────────────────────────────────────
    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        """Compte la journée d'activité de l'auteur du message."""
        if message.author.bot or message.guild is None:
            return
        result = await self.ledger.record_activity(
            message.guild.id,
            message.author.id,
            getattr(message.author, "display_name", None) or message.author.name,
        )
        if not result.success:
            logger.warning(
                "[Points] Activité de %s non enregistrée: %s", message.author.id, result.error
            )
            return
        if not result.points_changed:
            return
        try:
            await message.author.send(format_activity_dm(message.guild.name, result))
        except (discord.Forbidden, discord.HTTPException) as e:
            # MP fermés : on ignore
            logger.debug("[Points] MP impossible pour %s: %s", message.author.id, e)

    # ── Commands ─────────────────────────────────────────────
    @app_commands.command(name="points", description="Affiche tes points et ta série")
    @app_commands.guild_only()
    async def points(self, interaction: discord.Interaction) -> None:
        profile = await self.ledger.get_profile(interaction.guild.id, interaction.user.id)
        if not profile.success:
            await safe_respond(interaction, UNAVAILABLE_MSG, ephemeral=True)
            return
        milestone = next_milestone(profile.consecutive_days)
        embed = discord.Embed(
            title="🏆 Tes points",
            description=f"Informations de {interaction.user.display_name}",
            color=0x3498DB,
        )
        embed.add_field(name="Points", value=str(profile.points), inline=True)
        embed.add_field(
            name="Série en cours", value=f"{profile.consecutive_days} jour(s)", inline=True
        )
        embed.add_field(
            name="Prochain bonus",
            value=f"jour {milestone} (+{bonus_for(milestone)} points)",
            inline=False,
        )
        await safe_respond(interaction, embed=embed)

    @app_commands.command(name="help", description="Explique le fonctionnement des points")
    async def help_command(self, interaction: discord.Interaction) -> None:
        embed = discord.Embed(
            title="💡 Comment fonctionnent les points",
            description="Le bot récompense ton activité quotidienne sur le serveur.",
            color=0x0099FF,
        )
        tiers = ", ".join(
            f"tous les {days} jours : +{bonus}" for days, bonus in sorted(BONUS_TIERS)
        )
        embed.add_field(
            name="📝 Gagner des points",
            value=(
                f"• Premier message de la journée : +{BASE_ACTIVITY_POINTS} point\n"
                f"• Série de jours consécutifs : bonus ({tiers})\n"
                "• Participation aux événements : bonus attribué par les admins"
            ),
            inline=False,
        )
        embed.add_field(
            name="📊 Consulter",
            value="`/points` : tes points et ta série\n`/ranking` : classement du serveur",
            inline=False,
        )
        embed.add_field(
            name="⚠️ À savoir",
            value=(
                "• Un jour sans message remet la série à 1\n"
                "• Les notifications de points arrivent en MP"
            ),
            inline=False,
        )
        embed.add_field(
            name="🔍 Administrateurs",
            value="`/admin-points` : ajouter ou retirer des points\n"
            "`/event-bonus` : bonus de participation à un événement",
            inline=False,
        )
        await safe_respond(interaction, embed=embed, ephemeral=True)

    @app_commands.command(name="ranking", description="Classement des points du serveur")
    @app_commands.describe(limit="Nombre de membres à afficher (1 à 25)")
    @app_commands.guild_only()
    async def ranking(
        self,
        interaction: discord.Interaction,
        limit: app_commands.Range[int, 1, 25] = 10,
    ) -> None:
        await interaction.response.defer()
        report = await self.ledger.get_ranking_report(interaction.guild.id, limit)
        if not report.success:
            await safe_edit(interaction, UNAVAILABLE_MSG)
            return
        entries = report.entries
        if not entries:
            await safe_edit(
                interaction,
                "Aucun point pour l'instant. Discutez pour grimper au classement !",
            )
            return
        lines = []
        for entry in entries:
            prefix = RANK_EMOJIS[entry.rank - 1] if entry.rank <= len(RANK_EMOJIS) else f"{entry.rank}."
            name = entry.username or f"<@{entry.user_id}>"
            lines.append(f"{prefix} **{name}** — {entry.points} points")
        embed = discord.Embed(
            title="🏆 Classement des points",
            description="\n".join(lines),
            color=0xF1C40F,
        )
        footer = f"{interaction.guild.name} • top {limit}"
        if report.degraded:
            footer += " • données locales, classement partiel"
        embed.set_footer(text=footer)
        await safe_edit(interaction, embed=embed)

    async def _await_with_notice(
        self, interaction: discord.Interaction, coro, notice: str
    ) -> AdjustResult:
        """Attend ``coro`` en prévenant l'utilisateur si c'est long."""
        task = asyncio.ensure_future(coro)
        try:
            return await asyncio.wait_for(asyncio.shield(task), SLOW_NOTICE_SECONDS)
        except asyncio.TimeoutError:
            await safe_edit(interaction, notice)
            return await task

    @app_commands.command(name="admin-points", description="Ajoute ou retire des points")
    @app_commands.describe(
        user="Membre concerné",
        amount="Points à ajouter (négatif pour retirer)",
        reason="Raison de l'ajustement",
    )
    @app_commands.default_permissions(administrator=True)
    @app_commands.checks.has_permissions(administrator=True)
    @app_commands.guild_only()
    async def admin_points(
        self,
        interaction: discord.Interaction,
        user: discord.Member,
        amount: int,
        reason: Optional[str] = None,
    ) -> None:
        if amount == 0:
            await safe_respond(interaction, "Le montant doit être différent de 0.", ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True)
        result = await self._await_with_notice(
            interaction,
            self.ledger.adjust_points(
                interaction.guild.id, user.id, amount, reason, username=user.display_name
            ),
            f"Ajustement des points de {user.mention} en cours, merci de patienter…",
        )
        if not result.success:
            await safe_edit(
                interaction,
                f"❌ L'ajustement n'a **pas** été appliqué à {user.mention}. "
                "Réessaie plus tard.",
            )
            return
        embed = discord.Embed(title="Ajustement effectué", color=0x2ECC71)
        embed.description = f"{user.mention} : {amount:+d} points"
        embed.add_field(name="Avant", value=str(result.previous_total), inline=True)
        embed.add_field(name="Après", value=str(result.new_total), inline=True)
        if reason:
            embed.add_field(name="Raison", value=reason, inline=False)
        await safe_edit(interaction, content=None, embed=embed)

    @app_commands.command(name="event-bonus", description="Bonus de participation à un événement")
    @app_commands.describe(user="Participant", points="Points de bonus", event="Nom de l'événement")
    @app_commands.default_permissions(administrator=True)
    @app_commands.checks.has_permissions(administrator=True)
    @app_commands.guild_only()
    async def event_bonus(
        self,
        interaction: discord.Interaction,
        user: discord.Member,
        points: app_commands.Range[int, 1, 10000],
        event: str,
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        result = await self._await_with_notice(
            interaction,
            self.ledger.add_event_bonus(
                interaction.guild.id, user.id, user.display_name, points, event
            ),
            f"Attribution du bonus à {user.mention} en cours, merci de patienter…",
        )
        if not result.success:
            await safe_edit(
                interaction,
                f"❌ Le bonus n'a **pas** été attribué à {user.mention}. Réessaie plus tard.",
            )
            return
        await safe_edit(
            interaction,
            f"🎉 {user.mention} reçoit {points} points pour **{event}** "
            f"(total : {result.new_total}).",
        )
        try:
            await user.send(
                f"🎉 Tu as gagné {points} points sur **{interaction.guild.name}** "
                f"pour ta participation à **{event}** ! Total : {result.new_total}."
            )
        except (discord.Forbidden, discord.HTTPException) as e:
            logger.debug("[Points] MP impossible pour %s: %s", user.id, e)


async def setup(bot: commands.Bot) -> None:
    """Charge la cog dans le bot."""
    await bot.add_cog(PointsCog(bot))
