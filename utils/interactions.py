import logging

import discord

logger = logging.getLogger(__name__)


async def safe_respond(inter: discord.Interaction, content=None, **kwargs):
    """Safely respond to an interaction.

    If the initial response has already been sent (or deferred), uses the
    followup webhook instead. Defaults to sending a simple checkmark when no
    content is provided.
    """
    try:
        if inter.is_expired():
            logger.debug("Interaction expirée, aucune réponse envoyée.")
            return
        if inter.response.is_done():
            await inter.followup.send(content or "✅", **kwargs)
        else:
            await inter.response.send_message(content or "✅", **kwargs)
    except discord.NotFound as e:
        logger.debug("Interaction inconnue: %s", e)
    except discord.HTTPException as e:
        logger.error("Réponse interaction échouée: %s", e)


async def safe_edit(inter: discord.Interaction, content=None, **kwargs):
    """Edit the original (deferred) response, ignoring vanished interactions."""
    try:
        if inter.is_expired():
            logger.debug("Interaction expirée, aucune édition envoyée.")
            return
        await inter.edit_original_response(content=content, **kwargs)
    except discord.NotFound as e:
        logger.debug("Interaction inconnue: %s", e)
    except discord.HTTPException as e:
        logger.error("Édition interaction échouée: %s", e)
