import asyncio
import datetime
import logging
import os
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands
from dotenv import load_dotenv

from .keep_alive import start_keep_alive
from .logger import setup_logging
from .storage import ViolationStore
from .utils import BotConfig

logger = logging.getLogger(__name__)


class ShoreGuardTree(app_commands.CommandTree):

    """Command tree that keeps access denials out of the error log."""

    async def on_error(self, interaction: discord.Interaction,
                       error: app_commands.AppCommandError) -> None:
        """Logs failed slash commands.

        Check failures are expected refusals that were already answered,
        so they are not logged.

        Args:
            interaction: Discord interaction context.
            error: The error raised while running the command.
        """
        if isinstance(error, app_commands.CheckFailure):
            return

        command = interaction.command.qualified_name if interaction.command else 'unknown'
        logger.error('Command /%s failed', command, exc_info=error)


class ShoreGuardBot(commands.Bot):

    """Main bot class wiring moderation cogs to shared state.

    Attributes:
        config: Bot configuration manager.
        store: Violation and whitelist storage shared by the cogs.
        startup_time: DateTime when the bot successfully connected to Discord.
    """

    def __init__(self, config: Optional[BotConfig] = None,
                 store: Optional[ViolationStore] = None) -> None:
        """Initializes the bot with required intents and settings.

        The bot is configured with message content and member intents enabled,
        and the default help command is disabled since only slash commands
        are offered.

        Args:
            config: Configuration to use, loaded from disk when omitted.
            store: Storage to use, opened from the configured data file when
                omitted.
        """
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            help_command=None,
            tree_cls=ShoreGuardTree
        )

        self.config = config or BotConfig()
        self.store = store or ViolationStore(self.config.get('data_file'))
        self.startup_time: Optional[datetime.datetime] = None

    async def setup_hook(self) -> None:
        """Performs pre-startup initialization.

        Loads the cogs and synchronizes the command tree, either to the
        configured guild or globally.

        Raises:
            ExtensionNotFound: If a cog module cannot be found.
            ExtensionFailed: If a cog fails to load.
        """
        await self.load_extension('shoreguard.cog_commands')
        await self.load_extension('shoreguard.cog_events')

        guild_id = self.config.get('guild_id')
        try:
            if guild_id:
                guild = discord.Object(id=guild_id)
                self.tree.copy_global_to(guild=guild)
                synced = await self.tree.sync(guild=guild)
            else:
                synced = await self.tree.sync()
            logger.info('Commands registered (%d)', len(synced))
        except discord.HTTPException:
            logger.exception('Failed to register commands')

    async def on_ready(self) -> None:
        """Handles bot ready event.

        Sets up the bot's presence and records startup time.
        """
        self.startup_time = discord.utils.utcnow()
        logger.info('Logged in as %s (ID: %s)', self.user, self.user.id)

        await self.change_presence(
            status=discord.Status.online,
            activity=discord.Game(name=self.config.get('presence'))
        )

    async def on_error(self, event_method: str, *args, **kwargs) -> None:
        """Global error handler for all bot events.

        Args:
            event_method: Name of the event method that raised the error.
            *args: Positional arguments passed to the event method.
            **kwargs: Keyword arguments passed to the event method.
        """
        logger.exception('Error in %s', event_method)


async def main() -> None:
    """Initializes and starts the bot.

    Loads environment variables, configures logging, starts the keep-alive
    server and connects to Discord.

    Raises:
        ValueError: If the Discord token is not found in environment variables.
    """
    load_dotenv()
    setup_logging()

    token = os.getenv('DISCORD_BOT_TOKEN')
    if not token:
        raise ValueError('No Discord token found in environment variables!')

    bot = ShoreGuardBot()
    start_keep_alive(bot.config.get('keep_alive_port'))

    async with bot:
        logger.info('Starting bot...')
        await bot.start(token)


def run() -> None:
    """Console entry point that runs the bot until interrupted."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info('Shutting down...')


if __name__ == '__main__':
    run()
