"""
Pytest configuration and fixtures for ShoreGuard tests.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
import yaml

from shoreguard.storage import ViolationStore
from shoreguard.utils import BotConfig

ENV_VARS = ('LOG_CHANNEL_ID', 'GUILD_ID', 'IGNORED_ROLES', 'BANNED_WORDS', 'DATA_FILE', 'PORT')

BOT_ID = 999
LOG_CHANNEL_ID = 555


def http_error(cls=discord.Forbidden, status=403, text='Missing Permissions'):
    return cls(MagicMock(status=status, reason=text), text)


class FakeUser:
    def __init__(self, user_id, name='user', roles=(), bot=False):
        self.id = user_id
        self.name = name
        self.roles = list(roles)
        self.bot = bot
        self.mention = f'<@{user_id}>'
        self.send = AsyncMock()
        self.guild_permissions = SimpleNamespace(administrator=False)

    def __str__(self):
        return self.name


class FakeChannel:
    def __init__(self, channel_id, guild=None, name='general'):
        self.id = channel_id
        self.guild = guild
        self.name = name
        self.mention = f'<#{channel_id}>'
        self.send = AsyncMock()

    def __str__(self):
        return self.name


class FakeGuild:
    def __init__(self, guild_id=1):
        self.id = guild_id
        self.members = {}
        self.channels = {}
        self.audit_entries = []
        self.audit_calls = []
        self.fetch_member = AsyncMock(side_effect=http_error(discord.NotFound, 404, 'Unknown Member'))
        self.fetch_channel = AsyncMock(side_effect=http_error(discord.NotFound, 404, 'Unknown Channel'))
        self.ban = AsyncMock()
        self.kick = AsyncMock()

    def add_member(self, member):
        self.members[member.id] = member
        return member

    def get_member(self, user_id):
        return self.members.get(user_id)

    def get_channel(self, channel_id):
        return self.channels.get(channel_id)

    async def audit_logs(self, limit=100, action=None):
        self.audit_calls.append((limit, action))
        for entry in self.audit_entries[:limit]:
            yield entry


def make_role(role_id, name='role'):
    return SimpleNamespace(id=role_id, name=name, mention=f'<@&{role_id}>')


def make_interaction(guild, user, channel):
    return SimpleNamespace(
        guild=guild,
        user=user,
        channel=channel,
        command=None,
        response=SimpleNamespace(
            defer=AsyncMock(),
            send_message=AsyncMock(),
            is_done=MagicMock(return_value=False),
        ),
        followup=SimpleNamespace(send=AsyncMock()),
    )


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def config(tmp_path, clean_env):
    config_file = tmp_path / 'config.yaml'
    config_file.write_text(yaml.safe_dump({
        'log_channel': LOG_CHANNEL_ID,
        'banned_words': ['badword', 'slur'],
        'ignored_roles': ['Staff', '4242'],
        'appeal_channel_url': 'https://example.com/appeal',
        'ban_appeal_url': 'https://example.com/banappeal',
    }), encoding='utf-8')
    return BotConfig(str(config_file))


@pytest.fixture
def store(tmp_path):
    return ViolationStore(str(tmp_path / 'data.json'))


@pytest.fixture
def bot(config, store):
    return SimpleNamespace(
        config=config,
        store=store,
        user=SimpleNamespace(id=BOT_ID),
        latency=0.042,
        get_guild=MagicMock(return_value=None),
    )


@pytest.fixture
def guild():
    guild = FakeGuild()
    guild.log_channel = FakeChannel(LOG_CHANNEL_ID, guild)
    guild.channels[LOG_CHANNEL_ID] = guild.log_channel
    return guild
