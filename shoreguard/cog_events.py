import logging
from typing import Any, Optional

import discord
from discord.ext import commands

from .utils import MessageFormatter, ModLogger, is_ignored, is_whitelisted, resolve_member
from .word_filter import WordFilter

logger = logging.getLogger(__name__)


class SecurityEvents(commands.Cog):

    """Watches messages and the audit log for unauthorized activity.

    Messages containing a banned word are deleted and recorded as
    violations. Channel and role creation or deletion and member bans
    performed by anyone outside the whitelist are recorded as violations
    against the executor. No kick or ban is issued automatically.

    Attributes:
        bot: The Discord bot instance.
        config: Bot configuration manager.
        store: Violation and whitelist storage.
        word_filter: Banned word matcher.
        logger: Moderation log channel and DM sender.
        formatter: Embed builder.
    """

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot
        self.config = bot.config
        self.store = bot.store
        self.word_filter = WordFilter(self.config.get('banned_words'))
        self.logger = ModLogger(mod_channel_id=self.config.get('log_channel'))
        self.formatter = MessageFormatter()

    def _is_exempt(self, member: Optional[discord.Member]) -> bool:
        return (member is None
                or is_ignored(member, self.config.get('ignored_roles'))
                or is_whitelisted(member, self.store))

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        """Scans guild messages for banned words.

        The first banned word found is recorded as a HATE_SPEECH violation,
        the author is notified by DM, the channel and log channel receive a
        notice and the message is deleted.

        Args:
            message: The Discord message to scan.
        """
        if message.guild is None or message.author.bot:
            return

        word = self.word_filter.find(message.content)
        if word is None:
            return

        member = await resolve_member(message.guild, message.author.id)
        if self._is_exempt(member):
            return

        violation = self.store.add_violation(
            message.guild.id, message.author.id,
            type='HATE_SPEECH',
            reason=f'Use of banned word: {word}',
            moderator_id=self.bot.user.id,
            channel_id=message.channel.id
        )
        await self.logger.notify(
            message.author,
            self.formatter.violation_dm(violation, self.config.get('appeal_channel_url')))

        try:
            await message.channel.send(
                embed=self.formatter.hate_speech_notice(message.author, message.channel, violation))
        except discord.HTTPException as e:
            logger.warning('Could not post violation notice in %s: %s', message.channel, e)

        await self.logger.send(message.guild, self.formatter.log_entry(
            'Hate Speech Detected (Violation Logged)',
            'Banned word used.',
            [
                ('User', f'<@{message.author.id}>'),
                ('Channel', message.channel.mention),
                ('Violation ID', f"`{violation['id']}`"),
            ],
            discord.Color.red()
        ))

        try:
            await message.delete()
        except discord.HTTPException:
            pass

    @commands.Cog.listener()
    async def on_guild_channel_create(self, channel: discord.abc.GuildChannel) -> None:
        await self.handle_audit_action(
            discord.AuditLogAction.channel_create, channel, 'CHANNEL_CREATE', 'Channel Creation')

    @commands.Cog.listener()
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        await self.handle_audit_action(
            discord.AuditLogAction.channel_delete, channel, 'CHANNEL_DELETE', 'Channel Deletion')

    @commands.Cog.listener()
    async def on_guild_role_create(self, role: discord.Role) -> None:
        await self.handle_audit_action(
            discord.AuditLogAction.role_create, role, 'ROLE_CREATE', 'Role Creation')

    @commands.Cog.listener()
    async def on_guild_role_delete(self, role: discord.Role) -> None:
        await self.handle_audit_action(
            discord.AuditLogAction.role_delete, role, 'ROLE_DELETE', 'Role Deletion')

    @commands.Cog.listener()
    async def on_member_ban(self, guild: discord.Guild, user: discord.abc.User) -> None:
        await self.handle_audit_action(
            discord.AuditLogAction.ban, user, 'MEMBER_BAN', 'Member Ban (User Banned)', guild=guild)

    async def find_audit_entry(self, guild: discord.Guild, action: discord.AuditLogAction,
                               target_id: Optional[int]) -> Optional[discord.AuditLogEntry]:
        """Polls the most recent audit log entries for an action.

        Args:
            guild: Guild whose audit log is read.
            action: Audit log action type to filter on.
            target_id: ID of the channel, role or user the event was about.

        Returns:
            The entry targeting ``target_id`` if present, otherwise the most
            recent entry, or None when the log has no such entries.

        Raises:
            discord.Forbidden: If the bot cannot view the audit log.
        """
        entries = [entry async for entry in guild.audit_logs(
            limit=self.config.get('audit_log_limit'), action=action)]
        if not entries:
            return None

        for entry in entries:
            if target_id is not None and entry.target is not None and entry.target.id == target_id:
                return entry
        return entries[0]

    async def handle_audit_action(self, action: discord.AuditLogAction, entity: Any,
                                  violation_type: str, action_name: str,
                                  guild: Optional[discord.Guild] = None) -> None:
        """Records a violation against whoever performed an audited action.

        Args:
            action: Audit log action type to look up.
            entity: The created or deleted channel or role, or the banned user.
            violation_type: Violation category to record.
            action_name: Human readable action name used in notices.
            guild: Guild of the event when the entity does not carry one.
        """
        try:
            guild = guild or getattr(entity, 'guild', None)
            if guild is None and self.config.get('guild_id'):
                guild = self.bot.get_guild(self.config.get('guild_id'))
            if guild is None:
                return

            entry = await self.find_audit_entry(guild, action, getattr(entity, 'id', None))
            if entry is None:
                return

            executor = entry.user
            if executor is None or executor.id == self.bot.user.id:
                return

            member = await resolve_member(guild, executor.id)
            if self._is_exempt(member):
                return

            reason = f'Unauthorized {action_name} attempt.'
            violation = self.store.add_violation(
                guild.id, executor.id,
                type=violation_type,
                reason=reason,
                moderator_id=self.bot.user.id,
                channel_id=entry.target.id if entry.target is not None else None
            )

            await self.logger.notify(
                executor, self.formatter.violation_dm(violation, self.config.get('appeal_channel_url')))

            await self.logger.send(guild, self.formatter.log_entry(
                '🚨 Security Violation (Audit)',
                reason,
                [
                    ('Executor', f'<@{executor.id}>'),
                    ('Action', action_name),
                    ('Violation ID', f"`{violation['id']}`"),
                ],
                discord.Color.dark_red()
            ))

            await self.logger.notify(member, self.formatter.audit_warning(action_name, violation))

        except discord.HTTPException:
            logger.exception('Audit handling failed for %s', action_name)


async def setup(bot: commands.Bot) -> None:
    """Adds the security events cog to the bot.

    Args:
        bot: The Discord bot instance to add listeners to.
    """
    await bot.add_cog(SecurityEvents(bot))
