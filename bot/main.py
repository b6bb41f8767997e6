from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

import uvicorn

from core.api import create_api_app
from core.bot import CommunityBot
from core.config import AppConfig, load_config
from core.logging import configure_logging

LOGGER = logging.getLogger("main")

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config" / "config.yaml"


def _dashboard_server(bot: CommunityBot, config: AppConfig) -> uvicorn.Server:
    return uvicorn.Server(
        uvicorn.Config(
            app=create_api_app(bot),
            host=config.fastapi.host,
            port=config.fastapi.port,
            log_level=config.logging.level.lower(),
            # Keep our handlers; uvicorn would otherwise replace them.
            log_config=None,
        )
    )


async def run(config: AppConfig) -> None:
    async with CommunityBot(config=config) as bot:
        server: uvicorn.Server | None = None
        server_task: asyncio.Task[None] | None = None
        if config.fastapi.enabled:
            server = _dashboard_server(bot, config)
            server_task = asyncio.create_task(server.serve())
            LOGGER.info("Dashboard API listening on %s:%s", config.fastapi.host, config.fastapi.port)
        try:
            await bot.start(config.discord.token)
        finally:
            if server is not None and server_task is not None:
                server.should_exit = True
                await asyncio.gather(server_task, return_exceptions=True)


def main() -> None:
    config = load_config(Path(os.getenv("BOT_CONFIG_PATH", DEFAULT_CONFIG_PATH)))
    configure_logging(config.logging)
    asyncio.run(run(config))


if __name__ == "__main__":
    main()
