import logging
from typing import Sequence, Tuple, Union

import discord
from discord import app_commands
from discord.ext import commands

from .utils import MessageFormatter, ModLogger

logger = logging.getLogger(__name__)

ACCESS_DENIED = '❌ **Access Denied:** You must be an Administrator to use this command.'


class ModerationCommands(commands.Cog):

    """Implements the administrator slash commands.

    Every command is restricted to administrators. Public notices are
    posted in the invoking channel without naming the moderator, while
    the log channel entry records who acted.

    Attributes:
        bot: The Discord bot instance.
        config: Bot configuration manager.
        store: Violation and whitelist storage.
        logger: Moderation log channel and DM sender.
        formatter: Embed builder.
    """

    whitelist = app_commands.Group(
        name='whitelist',
        description='Manage users and roles exempt from automated checks',
        guild_only=True,
        default_permissions=discord.Permissions(administrator=True)
    )

    def __init__(self, bot: commands.Bot) -> None:
        """Initializes the moderation commands cog.

        Args:
            bot: Discord bot instance carrying ``config`` and ``store``.
        """
        self.bot = bot
        self.config = bot.config
        self.store = bot.store
        self.logger = ModLogger(mod_channel_id=self.config.get('log_channel'))
        self.formatter = MessageFormatter()

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        """Rejects anyone who is not a guild administrator.

        Args:
            interaction: Discord interaction context.

        Returns:
            True if the command may run.
        """
        permissions = getattr(interaction.user, 'guild_permissions', None)
        if interaction.guild is None or permissions is None or not permissions.administrator:
            await interaction.response.send_message(ACCESS_DENIED, ephemeral=True)
            return False
        return True

    async def cog_app_command_error(self, interaction: discord.Interaction,
                                    error: app_commands.AppCommandError) -> None:
        """Tells the invoker a command failed.

        Access denials were already answered by ``interaction_check``.
        Logging is left to the command tree's error handler.

        Args:
            interaction: Discord interaction context.
            error: The error raised while running the command.
        """
        if isinstance(error, app_commands.CheckFailure):
            return

        message = '❌ Something went wrong while running this command.'
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)

    async def _announce(self, interaction: discord.Interaction, embed: discord.Embed) -> None:
        try:
            await interaction.channel.send(embed=embed)
        except discord.HTTPException as e:
            logger.warning('Could not post "%s" in %s: %s', embed.title, interaction.channel, e)

    async def _log(self, interaction: discord.Interaction, title: str, description: str,
                   fields: Sequence[Tuple[str, str]], color: Union[discord.Color, int]) -> None:
        await self.logger.send(
            interaction.guild, self.formatter.log_entry(title, description, fields, color))

    @app_commands.command(name='ping', description='Check bot latency')
    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    async def ping(self, interaction: discord.Interaction) -> None:
        """Replies with the gateway latency.

        Args:
            interaction: Discord interaction context.
        """
        latency = round(self.bot.latency * 1000)
        await interaction.response.send_message(embed=self.formatter.pong(latency), ephemeral=True)

    @app_commands.command(name='ban', description='Ban a user, DM them the appeal link, and log the action.')
    @app_commands.describe(user='User to be banned', reason='Reason for the ban',
                           deletemessages='Days of messages to delete (0-7)')
    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    async def ban(self, interaction: discord.Interaction, user: discord.User, reason: str,
                  deletemessages: app_commands.Range[int, 0, 7] = 0) -> None:
        """Bans a user after sending them the ban appeal link.

        Args:
            interaction: Discord interaction context.
            user: The user to ban.
            reason: Reason shown to the user, the channel and the audit log.
            deletemessages: Days of the user's message history to delete.
        """
        await interaction.response.defer(ephemeral=True)
        moderator = interaction.user

        await self.logger.notify(user, self.formatter.moderation_action_dm(
            'Banned', reason, self.config.get('ban_appeal_url'), is_ban=True))

        try:
            await interaction.guild.ban(
                user,
                reason=f'Banned by {moderator}: {reason}',
                delete_message_seconds=deletemessages * 24 * 60 * 60
            )
        except discord.HTTPException as e:
            logger.warning('Ban failed for %s: %s', user, e)
            await interaction.followup.send(embed=self.formatter.action_failed(
                'Ban Failed', f'Could not ban {user}. Check bot permissions/hierarchy.', e), ephemeral=True)
            return

        await self._announce(interaction, self.formatter.user_banned(user, reason, deletemessages))
        await interaction.followup.send(
            f'✅ **SUCCESS:** Banned {user} and sent DM. Action details logged.', ephemeral=True)
        await self._log(interaction, 'User Banned', f'{moderator} banned a user.', [
            ('Target User', f'<@{user.id}>'),
            ('Moderator', f'<@{moderator.id}>'),
            ('Reason', reason),
        ], discord.Color.dark_red())

    @app_commands.command(name='kick', description='Kick a member, DM them the appeal link, and log the action.')
    @app_commands.describe(user='Member to be kicked', reason='Reason for the kick')
    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    async def kick(self, interaction: discord.Interaction, user: discord.Member, reason: str) -> None:
        """Kicks a member after sending them the appeal channel link.

        Args:
            interaction: Discord interaction context.
            user: The member to kick.
            reason: Reason shown to the member, the channel and the audit log.
        """
        await interaction.response.defer(ephemeral=True)
        moderator = interaction.user

        await self.logger.notify(user, self.formatter.moderation_action_dm(
            'Kicked', reason, self.config.get('appeal_channel_url')))

        try:
            await interaction.guild.kick(user, reason=f'Kicked by {moderator}: {reason}')
        except discord.HTTPException as e:
            logger.warning('Kick failed for %s: %s', user, e)
            await interaction.followup.send(embed=self.formatter.action_failed(
                'Kick Failed', f'Could not kick {user}. Check bot permissions/hierarchy.', e), ephemeral=True)
            return

        await self._announce(interaction, self.formatter.user_kicked(user, reason))
        await interaction.followup.send(
            f'✅ **SUCCESS:** Kicked {user} and sent DM. Action details logged.', ephemeral=True)
        await self._log(interaction, 'User Kicked', f'{moderator} kicked a user.', [
            ('Target User', f'<@{user.id}>'),
            ('Moderator', f'<@{moderator.id}>'),
            ('Reason', reason),
        ], discord.Color.orange())

    @app_commands.command(name='warn', description='Warn a member, record a violation, and log the action.')
    @app_commands.describe(user='Member to warn', reason='Reason for the warning')
    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    async def warn(self, interaction: discord.Interaction, user: discord.Member, reason: str) -> None:
        """Warns a member and records a WARN violation.

        Args:
            interaction: Discord interaction context.
            user: The member to warn.
            reason: Reason for the warning.
        """
        await interaction.response.defer(ephemeral=True)
        moderator = interaction.user

        violation = self.store.add_violation(
            interaction.guild.id, user.id,
            type='WARN', reason=reason,
            moderator_id=moderator.id, channel_id=interaction.channel.id
        )
        await self.logger.notify(user, self.formatter.moderation_action_dm(
            'Warned', reason, self.config.get('appeal_channel_url')))

        await self._announce(interaction, self.formatter.user_warned(user, reason, violation))
        await interaction.followup.send(
            f"✅ **SUCCESS:** Warned {user}. ID: `{violation['id']}`. Action details logged.", ephemeral=True)
        await self._log(interaction, 'User Warned', f'{moderator} warned a user.', [
            ('Target User', f'<@{user.id}>'),
            ('Violation ID', f"`{violation['id']}`"),
            ('Reason', reason),
        ], 0xFFD700)

    @app_commands.command(name='createviolation', description='Create a manual violation for a user')
    @app_commands.rename(violation_type='type')
    @app_commands.describe(user='User to violate', violation_type='Violation Type (e.g., MANUAL_WARN)',
                           reason='Reason for the violation')
    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    async def create_violation(self, interaction: discord.Interaction, user: discord.User,
                               violation_type: str, reason: str) -> None:
        """Records a manual violation against a user.

        Args:
            interaction: Discord interaction context.
            user: The user the violation is recorded against.
            violation_type: Free-form violation category.
            reason: Reason for the violation.
        """
        await interaction.response.defer(ephemeral=True)
        moderator = interaction.user

        violation = self.store.add_violation(
            interaction.guild.id, user.id,
            type=violation_type, reason=reason,
            moderator_id=moderator.id, channel_id=interaction.channel.id
        )
        await self.logger.notify(
            user, self.formatter.violation_dm(violation, self.config.get('appeal_channel_url')))

        await self._announce(interaction, self.formatter.violation_logged(user, violation))
        await interaction.followup.send(
            f"✅ **SUCCESS:** Created violation for {user}. ID: `{violation['id']}`. Action details logged.",
            ephemeral=True)
        await self._log(interaction, 'Manual Violation Created', f'{moderator} created a violation.', [
            ('Target User', f'<@{user.id}>'),
            ('Type', violation_type),
            ('Violation ID', f"`{violation['id']}`"),
            ('Reason', reason),
        ], discord.Color.orange())

    @app_commands.command(name='removeviolation', description='Remove a violation by its serial ID')
    @app_commands.rename(violation_id='violationid')
    @app_commands.describe(user='User who has the violation',
                           violation_id='The serial ID of the violation to remove')
    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    async def remove_violation(self, interaction: discord.Interaction, user: discord.User,
                               violation_id: str) -> None:
        """Removes a violation from a user's record.

        Args:
            interaction: Discord interaction context.
            user: The user who has the violation.
            violation_id: ID given when the violation was recorded.
        """
        violation_id = violation_id.strip().strip('`')
        if not self.store.remove_violation(interaction.guild.id, user.id, violation_id):
            await interaction.response.send_message(embed=self.formatter.action_failed(
                'Removal Failed', f'Could not find violation with ID `{violation_id}` for {user}.'),
                ephemeral=True)
            return

        await self._announce(interaction, self.formatter.violation_cleared(user, violation_id))
        await interaction.response.send_message(
            f'✅ **SUCCESS:** Removed violation `{violation_id}` for {user}. Action details logged.',
            ephemeral=True)
        await self._log(interaction, 'Violation Removed', f'{interaction.user} removed a violation.', [
            ('Target User', f'<@{user.id}>'),
            ('Violation ID', f'`{violation_id}`'),
        ], discord.Color.green())

    @app_commands.command(name='checkuser', description='View all violations for a user')
    @app_commands.describe(user='User to check')
    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    async def check_user(self, interaction: discord.Interaction, user: discord.User) -> None:
        """Posts a user's most recent violations.

        Args:
            interaction: Discord interaction context.
            user: The user whose record to show.
        """
        violations = self.store.get_violations(interaction.guild.id, user.id)
        embed = self.formatter.violation_record(user, violations, self.config.get('history_limit'))

        await self._announce(interaction, embed)
        await interaction.response.send_message(
            f'✅ **SUCCESS:** Sent violation record for {user}. Action details logged.', ephemeral=True)
        await self._log(interaction, 'Violation Check Performed',
                        f"{interaction.user} checked user's violations.",
                        [('Target User', f'<@{user.id}>')], discord.Color.blue())

    @whitelist.command(name='adduser', description='Exempt a user from automated checks')
    @app_commands.describe(user='User to whitelist')
    async def whitelist_add_user(self, interaction: discord.Interaction, user: discord.User) -> None:
        """Adds a user to the whitelist and logs the change."""
        if not self.store.add_whitelisted_user(user.id):
            await interaction.response.send_message(f'{user.mention} is already whitelisted.', ephemeral=True)
            return
        await interaction.response.send_message(f'✅ {user.mention} added to the whitelist.', ephemeral=True)
        await self._log(interaction, 'Whitelist Updated', f'{interaction.user} whitelisted a user.',
                        [('User', f'<@{user.id}>')], discord.Color.green())

    @whitelist.command(name='removeuser', description='Remove a user from the whitelist')
    @app_commands.describe(user='User to remove')
    async def whitelist_remove_user(self, interaction: discord.Interaction, user: discord.User) -> None:
        """Removes a user from the whitelist and logs the change."""
        if not self.store.remove_whitelisted_user(user.id):
            await interaction.response.send_message(f'{user.mention} is not whitelisted.', ephemeral=True)
            return
        await interaction.response.send_message(f'✅ {user.mention} removed from the whitelist.', ephemeral=True)
        await self._log(interaction, 'Whitelist Updated', f'{interaction.user} removed a user from the whitelist.',
                        [('User', f'<@{user.id}>')], discord.Color.orange())

    @whitelist.command(name='addrole', description='Exempt a role from automated checks')
    @app_commands.describe(role='Role to whitelist')
    async def whitelist_add_role(self, interaction: discord.Interaction, role: discord.Role) -> None:
        """Adds a role to the whitelist and logs the change."""
        if not self.store.add_whitelisted_role(role.id):
            await interaction.response.send_message(f'{role.mention} is already whitelisted.', ephemeral=True)
            return
        await interaction.response.send_message(f'✅ {role.mention} added to the whitelist.', ephemeral=True)
        await self._log(interaction, 'Whitelist Updated', f'{interaction.user} whitelisted a role.',
                        [('Role', f'<@&{role.id}>')], discord.Color.green())

    @whitelist.command(name='removerole', description='Remove a role from the whitelist')
    @app_commands.describe(role='Role to remove')
    async def whitelist_remove_role(self, interaction: discord.Interaction, role: discord.Role) -> None:
        """Removes a role from the whitelist and logs the change."""
        if not self.store.remove_whitelisted_role(role.id):
            await interaction.response.send_message(f'{role.mention} is not whitelisted.', ephemeral=True)
            return
        await interaction.response.send_message(f'✅ {role.mention} removed from the whitelist.', ephemeral=True)
        await self._log(interaction, 'Whitelist Updated', f'{interaction.user} removed a role from the whitelist.',
                        [('Role', f'<@&{role.id}>')], discord.Color.orange())

    @whitelist.command(name='list', description='Show whitelisted users and roles')
    async def whitelist_list(self, interaction: discord.Interaction) -> None:
        """Shows the whitelisted users and roles."""
        embed = self.formatter.whitelist_summary(self.store.whitelisted_users, self.store.whitelisted_roles)
        await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot: commands.Bot) -> None:
    """Adds the moderation commands cog to the bot.

    Args:
        bot: The Discord bot instance to add commands to.
    """
    await bot.add_cog(ModerationCommands(bot))
