import datetime
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import discord
import yaml

from .storage import ViolationStore

logger = logging.getLogger(__name__)

EmbedField = Tuple[str, str]


class ModLogger:

    """Delivers moderation notices to the log channel and to users.

    Attributes:
        mod_channel_id: Discord channel ID for moderation log embeds, or None
            to disable channel logging.
    """

    def __init__(self, mod_channel_id: Optional[int] = None) -> None:
        self.mod_channel_id = mod_channel_id

    async def get_channel(self, guild: discord.Guild) -> Optional[discord.abc.Messageable]:
        """Finds the log channel in a guild, fetching it when not cached.

        Args:
            guild: Guild the log channel belongs to.

        Returns:
            The log channel, or None when unset or inaccessible.
        """
        if not self.mod_channel_id:
            return None

        channel = guild.get_channel(self.mod_channel_id)
        if channel is not None:
            return channel

        try:
            return await guild.fetch_channel(self.mod_channel_id)
        except discord.HTTPException as e:
            logger.warning('Log channel %s unavailable in guild %s: %s',
                           self.mod_channel_id, guild.id, e)
            return None

    async def send(self, guild: discord.Guild, embed: discord.Embed) -> None:
        """Posts an embed to the log channel if one is configured.

        Args:
            guild: Guild whose log channel receives the embed.
            embed: The log embed to post.
        """
        channel = await self.get_channel(guild)
        if channel is None:
            return

        try:
            await channel.send(embed=embed)
        except discord.HTTPException as e:
            logger.warning('Failed to post log embed "%s": %s', embed.title, e)

    @staticmethod
    async def notify(user: Union[discord.User, discord.Member], embed: discord.Embed) -> bool:
        """Sends a direct message, tolerating closed DMs.

        Returns:
            True if the DM was delivered.
        """
        try:
            await user.send(embed=embed)
            return True
        except discord.HTTPException as e:
            logger.warning('Failed DM: %s (%s)', user, e)
            return False


def is_ignored(member: Optional[discord.Member], ignored_roles: Iterable[str]) -> bool:
    """Checks whether a member holds a role that bypasses all checks.

    Args:
        member: Guild member to check.
        ignored_roles: Role IDs or role names.
    """
    if member is None:
        return False
    ignored = {str(r) for r in ignored_roles}
    if not ignored:
        return False
    return any(str(role.id) in ignored or role.name in ignored for role in member.roles)


def is_whitelisted(member: Optional[discord.Member], store: ViolationStore) -> bool:
    """Checks the member and their roles against the stored whitelist."""
    if member is None:
        return False
    if str(member.id) in store.whitelisted_users:
        return True
    roles = set(store.whitelisted_roles)
    return any(str(role.id) in roles for role in member.roles)


async def resolve_member(guild: discord.Guild, user_id: int) -> Optional[discord.Member]:
    """Returns a guild member from cache or the API, or None if they left."""
    member = guild.get_member(user_id)
    if member is not None:
        return member
    try:
        return await guild.fetch_member(user_id)
    except discord.HTTPException:
        return None


def format_timestamp(timestamp: str) -> Tuple[str, str]:
    """Splits an ISO timestamp into US style date and time strings."""
    moment = datetime.datetime.fromisoformat(timestamp)
    date = f'{moment.month}/{moment.day}/{moment.year}'
    time = moment.strftime('%I:%M:%S %p').lstrip('0')
    return date, time


class MessageFormatter:
    """Builds the embeds posted to channels, the log channel and DMs."""

    @staticmethod
    def _embed(title: str, description: Optional[str], color: Union[discord.Color, int],
               fields: Sequence[EmbedField] = (), inline: Sequence[str] = ()) -> discord.Embed:
        """Builds a timestamped embed.

        Args:
            title: Embed title.
            description: Embed body text.
            color: Sidebar color.
            fields: Name and value pairs, in display order.
            inline: Names of the fields shown inline.

        Returns:
            The populated embed.
        """
        embed = discord.Embed(
            title=title,
            description=description,
            color=color,
            timestamp=discord.utils.utcnow()
        )
        for name, value in fields:
            embed.add_field(name=name, value=value, inline=name in inline)
        return embed

    @staticmethod
    def log_entry(title: str, description: str, fields: Sequence[EmbedField],
                  color: Union[discord.Color, int]) -> discord.Embed:
        """Formats an embed for the moderation log channel."""
        return MessageFormatter._embed(title, description, color, fields)

    @staticmethod
    def moderation_action_dm(action: str, reason: Optional[str], appeal_url: Optional[str],
                             is_ban: bool = False) -> discord.Embed:
        """Formats the DM sent to a user who was banned, kicked or warned.

        Args:
            action: Past tense action, e.g. 'Banned'.
            reason: Reason given by the moderator.
            appeal_url: Ban appeal form for bans, appeal channel otherwise.
            is_ban: Whether the action is a ban.

        Returns:
            The DM embed.
        """
        embed = MessageFormatter._embed(
            f'🚨 Moderation Action: You were {action}!',
            'A moderation action has been taken against you.',
            discord.Color.dark_red() if is_ban else discord.Color.orange(),
            [('Action', action.upper()), ('Reason', reason or 'No specific reason provided.')],
            inline=('Action',)
        )
        embed.set_footer(text='Automated notification')
        if appeal_url:
            if is_ban:
                embed.add_field(name='Ban Appeal', value=f'[Ban Appeal Form]({appeal_url})', inline=False)
            else:
                embed.add_field(name='Appeal Link', value=f'[Go to Appeal Channel]({appeal_url})', inline=False)
        return embed

    @staticmethod
    def violation_dm(violation: Dict[str, Any], appeal_url: Optional[str]) -> discord.Embed:
        """Formats the DM telling a user a violation was recorded against them."""
        embed = MessageFormatter._embed(
            '🚨 Security Violation Added',
            'A violation has been logged against you for unauthorized action or content.',
            discord.Color.dark_orange(),
            [
                ('Violation Type', violation['type']),
                ('Violation ID (Needed for Appeal)', f"`{violation['id']}`"),
                ('Reason', violation.get('reason') or 'No specific reason provided.'),
            ],
            inline=('Violation Type',)
        )
        embed.set_footer(text='This is a security record. No immediate ban/kick was issued.')
        if appeal_url:
            embed.add_field(name='Appeal Link', value=f'[Go to Appeal Channel]({appeal_url})', inline=False)
        return embed

    @staticmethod
    def hate_speech_notice(user: discord.abc.User, channel: Any, violation: Dict[str, Any]) -> discord.Embed:
        """Formats the public notice posted where a banned word was used."""
        return MessageFormatter._embed(
            f"🚨 Security Violation — {violation['type']}",
            'Unauthorized message detected and logged.',
            discord.Color.red(),
            [('User', f'<@{user.id}>'), ('Channel', channel.mention), ('Violation ID', f"`{violation['id']}`")],
            inline=('User', 'Channel')
        )

    @staticmethod
    def audit_warning(action_name: str, violation: Dict[str, Any]) -> discord.Embed:
        """Formats the DM warning a member about an audited action."""
        return MessageFormatter._embed(
            '🚫 Unauthorized Action Logged',
            f'The action **{action_name}** has been performed outside the whitelist. '
            f'A violation has been logged.',
            discord.Color.red(),
            [('Violation ID', f"`{violation['id']}`")]
        )

    @staticmethod
    def pong(latency_ms: int) -> discord.Embed:
        """Formats the latency reply."""
        return MessageFormatter._embed('🏓 Pong!', f'Latency: {latency_ms}ms', discord.Color.green())

    @staticmethod
    def user_banned(user: discord.abc.User, reason: str, delete_days: int) -> discord.Embed:
        """Formats the channel announcement for a ban."""
        return MessageFormatter._embed(
            '🔨 User Banned',
            f'The user **{user}** has been banned from the server.',
            0xCC0000,
            [('User', f'<@{user.id}>'), ('Reason', reason), ('Messages Deleted', f'{delete_days} days')],
            inline=('User',)
        )

    @staticmethod
    def user_kicked(user: discord.abc.User, reason: str) -> discord.Embed:
        """Formats the channel announcement for a kick."""
        return MessageFormatter._embed(
            '👢 User Kicked',
            f'The user **{user}** has been kicked from the server.',
            0xE67E22,
            [('User', f'<@{user.id}>'), ('Reason', reason)],
            inline=('User',)
        )

    @staticmethod
    def user_warned(user: discord.abc.User, reason: str, violation: Dict[str, Any]) -> discord.Embed:
        """Formats the channel announcement for a warning."""
        return MessageFormatter._embed(
            '⚠️ User Warned',
            f'{user} has received a warning.',
            0xFFD700,
            [('User', f'<@{user.id}>'), ('Reason', reason), ('Violation ID', f"`{violation['id']}`")],
            inline=('User',)
        )

    @staticmethod
    def violation_logged(user: discord.abc.User, violation: Dict[str, Any]) -> discord.Embed:
        """Formats the confirmation for a manually created violation."""
        return MessageFormatter._embed(
            '⚠️ Security Violation Logged',
            f"A **{violation['type']}** violation has been recorded for {user}.",
            0xFFA500,
            [('User', f'<@{user.id}>'), ('Reason', violation['reason']), ('Violation ID', f"`{violation['id']}`")],
            inline=('User',)
        )

    @staticmethod
    def violation_cleared(user: discord.abc.User, violation_id: str) -> discord.Embed:
        """Formats the confirmation for a removed violation."""
        return MessageFormatter._embed(
            '✅ Violation Cleared',
            f"A violation has been successfully removed from {user}'s record.",
            0x32CD32,
            [('User', f'<@{user.id}>'), ('Violation ID', f'`{violation_id}`')]
        )

    @staticmethod
    def action_failed(title: str, description: str, error: Optional[BaseException] = None) -> discord.Embed:
        """Formats an ephemeral failure embed, truncating any error detail."""
        fields = []
        if error is not None:
            fields.append(('Error Detail', str(error)[:100] + '...'))
        return MessageFormatter._embed(f'❌ {title}', description, discord.Color.red(), fields)

    @staticmethod
    def violation_record(user: discord.abc.User, violations: List[Dict[str, Any]], limit: int = 5) -> discord.Embed:
        """Formats a user's violation history, newest first.

        Args:
            user: User whose record is shown.
            violations: All of the user's violations, oldest first.
            limit: Maximum number of violations listed.

        Returns:
            The record embed.
        """
        limit = max(1, int(limit))
        description = f'Total violations found: **{len(violations)}**'
        fields: List[EmbedField] = []

        if violations:
            for violation in reversed(violations[-limit:]):
                date, time = format_timestamp(violation['timestamp'])
                fields.append((
                    f"[{violation['type']}] - `{violation['id']}`",
                    f"**Reason:** {violation['reason']}\n**Date:** {date} @ {time}"
                ))
            if len(violations) > limit:
                description += (f'\n*Showing the last {limit} violations. There are '
                                f'{len(violations) - limit} older violations not displayed.*')
            embed = MessageFormatter._embed(f'📜 Violation Record for {user}', description, 0x00BFFF, fields)
        else:
            embed = MessageFormatter._embed(
                f'📜 Violation Record for {user}', description, 0x00BFFF,
                [('Status', 'No violations recorded for this user.')], inline=('Status',))

        embed.set_footer(text='Violation records are for security use only.')
        return embed

    @staticmethod
    def whitelist_summary(users: Sequence[str], roles: Sequence[str]) -> discord.Embed:
        """Formats the list of whitelisted users and roles."""
        user_list = ', '.join(f'<@{u}>' for u in users) or 'None'
        role_list = ', '.join(f'<@&{r}>' for r in roles) or 'None'
        return MessageFormatter._embed(
            '📋 Whitelist', 'Users and roles exempt from automated checks.',
            discord.Color.blurple(),
            [('Users', user_list), ('Roles', role_list)]
        )


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


class BotConfig:
    """Manages bot configuration through a YAML file and environment variables.

    Environment variables take precedence over the YAML file, which takes
    precedence over the built-in defaults.

    Attributes:
        config_file: Path to the YAML configuration file.
        defaults: Dictionary of default configuration values.
        config: Dictionary of current configuration values.
    """

    ENV_VARS = {
        'log_channel': ('LOG_CHANNEL_ID', int),
        'guild_id': ('GUILD_ID', int),
        'ignored_roles': ('IGNORED_ROLES', _split),
        'banned_words': ('BANNED_WORDS', _split),
        'data_file': ('DATA_FILE', str),
        'keep_alive_port': ('PORT', int),
    }

    def __init__(self, config_file: str = 'config/config.yaml') -> None:
        """Initializes the configuration manager.

        Args:
            config_file: Path to the YAML configuration file.

        Raises:
            ValueError: If a numeric environment variable or a configured
                Discord ID is not a number.
        """
        self.config_file = Path(config_file)
        self.defaults: Dict[str, Any] = {
            'log_channel': None,
            'guild_id': None,
            'ignored_roles': [],
            'banned_words': [],
            'data_file': 'data.json',
            'appeal_channel_url': None,
            'ban_appeal_url': None,
            'audit_log_limit': 5,
            'history_limit': 5,
            'presence': 'With My Ban Hammer',
            'keep_alive_port': 3000,
        }
        self.config = self._load_config()

    def get(self, key: str) -> Any:
        """Retrieves a configuration value.

        Args:
            key: Configuration key to retrieve.

        Returns:
            The configuration value, or the default value if not found.
        """
        return self.config.get(key, self.defaults.get(key))

    def _load_config(self) -> Dict[str, Any]:
        """Loads configuration from the YAML file and the environment.

        Returns:
            Dictionary containing configuration values.
        """
        config = self.defaults.copy()

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    loaded = yaml.safe_load(f)
                if isinstance(loaded, dict):
                    config.update(loaded)
                elif loaded is not None:
                    logger.warning('Ignoring %s, expected a mapping at the top level', self.config_file)
            except (OSError, yaml.YAMLError) as e:
                logger.warning('Could not read %s, using defaults: %s', self.config_file, e)

        for key, (env_var, parse) in self.ENV_VARS.items():
            value = os.getenv(env_var)
            if value:
                config[key] = parse(value)

        for key in ('log_channel', 'guild_id'):
            config[key] = self._as_id(key, config.get(key))

        config['ignored_roles'] = [str(r) for r in config['ignored_roles'] or []]
        config['banned_words'] = [str(w) for w in config['banned_words'] or []]
        return config

    @staticmethod
    def _as_id(key: str, value: Any) -> Optional[int]:
        if value is None or value == '':
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f'{key} must be a numeric Discord ID, got {value!r}') from None
