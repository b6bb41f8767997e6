from __future__ import annotations

import logging

from discord.ext import commands

LOGGER = logging.getLogger(__name__)


async def load_extensions(bot: commands.Bot, extension_names: list[str]) -> list[str]:
    """Load each configured cog, returning the names that failed.

    A broken cog is logged and skipped so the rest of the bot still starts.
    """
    failed: list[str] = []
    for ext in extension_names:
        try:
            await bot.load_extension(ext)
        except commands.ExtensionAlreadyLoaded:
            LOGGER.debug("Extension already loaded: %s", ext)
        except commands.ExtensionError:
            LOGGER.exception("Failed to load extension: %s", ext)
            failed.append(ext)
        else:
            LOGGER.info("Loaded extension: %s", ext)
    if failed:
        LOGGER.warning("%s of %s extensions failed to load", len(failed), len(extension_names))
    return failed
