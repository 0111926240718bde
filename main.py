"""
RosterBot entry point.
Keeps member roster snapshots warm for the configured guilds.
"""

import asyncio

from loguru import logger

from rosterbot.datasource.discord import DiscordRosterDirectory
from rosterbot.services import RedisTTLStore, create_roster_service, create_store
from rosterbot.settings import global_settings


async def main() -> None:
    logger.info("Starting RosterBot...")

    directory = DiscordRosterDirectory(global_settings)
    if not directory.is_configured():
        logger.error("DISCORD_BOT_TOKEN is not set, exiting")
        return

    store = create_store(global_settings)
    service = create_roster_service(directory, global_settings, store=store)

    try:
        for guild_id in global_settings.warm_guilds:
            logger.info(f"Starting cache warming for guild {guild_id}...")
            await service.start_cache_warming(guild_id, global_settings.warm_roles)

        logger.info("RosterBot is running. Press Ctrl+C to stop.")
        while True:
            await asyncio.sleep(60)
            logger.debug(f"Roster health: {service.get_health_status()}")

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Received interrupt signal, shutting down...")
    finally:
        await service.aclose()
        await directory.close()
        if isinstance(store, RedisTTLStore):
            await store.close()
        logger.info("RosterBot stopped")


if __name__ == "__main__":
    asyncio.run(main())
