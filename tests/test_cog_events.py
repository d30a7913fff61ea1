from types import SimpleNamespace
from unittest.mock import AsyncMock

import discord
import pytest

from shoreguard import cog_events
from shoreguard.cog_events import SecurityEvents

from .conftest import BOT_ID, FakeChannel, FakeUser, http_error, make_role


def make_message(guild, author, content, channel=None):
    return SimpleNamespace(
        guild=guild,
        author=author,
        content=content,
        channel=channel or FakeChannel(20, guild),
        delete=AsyncMock(),
    )


def make_entry(user, target_id):
    return SimpleNamespace(user=user, target=SimpleNamespace(id=target_id) if target_id else None)


@pytest.mark.asyncio
async def test_setup_registers_cog(bot):
    captured = {}

    async def fake_add_cog(cog):
        captured['cog'] = cog

    bot.add_cog = fake_add_cog
    await cog_events.setup(bot)
    assert isinstance(captured['cog'], SecurityEvents)


@pytest.mark.asyncio
async def test_banned_word_records_violation_and_deletes_message(bot, guild, store):
    author = guild.add_member(FakeUser(2, 'offender'))
    message = make_message(guild, author, 'You are a BADWORD')
    cog = SecurityEvents(bot)

    await cog.on_message(message)

    [violation] = store.get_violations(guild.id, author.id)
    assert violation['type'] == 'HATE_SPEECH'
    assert violation['reason'] == 'Use of banned word: badword'
    assert violation['moderatorId'] == str(BOT_ID)
    assert violation['channelId'] == '20'

    dm = author.send.await_args.kwargs['embed']
    assert dm.title == '🚨 Security Violation Added'
    assert f"`{violation['id']}`" in [f.value for f in dm.fields]

    notice = message.channel.send.await_args.kwargs['embed']
    assert notice.title == '🚨 Security Violation — HATE_SPEECH'
    assert {f.name: f.value for f in notice.fields}['Channel'] == '<#20>'

    log = guild.log_channel.send.await_args.kwargs['embed']
    assert log.title == 'Hate Speech Detected (Violation Logged)'
    assert {f.name: f.value for f in log.fields}['Channel'] == '<#20>'

    message.delete.assert_awaited_once()


@pytest.mark.asyncio
async def test_only_first_banned_word_is_recorded(bot, guild, store):
    author = guild.add_member(FakeUser(2))
    await SecurityEvents(bot).on_message(make_message(guild, author, 'slur badword'))

    assert [v['reason'] for v in store.get_violations(guild.id, author.id)] == ['Use of banned word: badword']


@pytest.mark.asyncio
async def test_clean_message_is_ignored(bot, guild, store):
    author = guild.add_member(FakeUser(2))
    message = make_message(guild, author, 'hello there')

    await SecurityEvents(bot).on_message(message)

    assert store.get_violations(guild.id, author.id) == []
    message.delete.assert_not_awaited()


@pytest.mark.asyncio
async def test_bots_and_direct_messages_are_ignored(bot, guild, store):
    cog = SecurityEvents(bot)
    robot = guild.add_member(FakeUser(3, bot=True))
    dm_author = FakeUser(4)

    await cog.on_message(make_message(guild, robot, 'badword'))
    await cog.on_message(make_message(None, dm_author, 'badword'))

    assert store.get_violations(guild.id, robot.id) == []
    dm_author.send.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize('roles', [[make_role(10, 'Staff')], [make_role(4242, 'Helpers')]])
async def test_ignored_roles_bypass_scan(bot, guild, store, roles):
    author = guild.add_member(FakeUser(2, roles=roles))
    message = make_message(guild, author, 'badword')

    await SecurityEvents(bot).on_message(message)

    assert store.get_violations(guild.id, author.id) == []
    message.delete.assert_not_awaited()


@pytest.mark.asyncio
async def test_whitelisted_member_bypasses_scan(bot, guild, store):
    store.add_whitelisted_role(30)
    author = guild.add_member(FakeUser(2, roles=[make_role(30)]))

    await SecurityEvents(bot).on_message(make_message(guild, author, 'badword'))

    assert store.get_violations(guild.id, author.id) == []


@pytest.mark.asyncio
async def test_author_who_left_is_ignored(bot, guild, store):
    author = FakeUser(2)

    await SecurityEvents(bot).on_message(make_message(guild, author, 'badword'))

    assert store.get_violations(guild.id, author.id) == []


@pytest.mark.asyncio
async def test_delivery_failures_do_not_stop_enforcement(bot, guild, store):
    author = guild.add_member(FakeUser(2))
    author.send.side_effect = http_error()
    message = make_message(guild, author, 'badword')
    message.channel.send.side_effect = http_error()
    message.delete.side_effect = http_error(discord.NotFound, 404, 'Unknown Message')

    await SecurityEvents(bot).on_message(message)

    assert len(store.get_violations(guild.id, author.id)) == 1
    guild.log_channel.send.assert_awaited_once()


@pytest.mark.asyncio
async def test_channel_delete_records_violation_against_executor(bot, guild, store):
    executor = guild.add_member(FakeUser(7, 'rogue'))
    guild.audit_entries = [make_entry(executor, 300)]
    channel = FakeChannel(300, guild)

    await SecurityEvents(bot).on_guild_channel_delete(channel)

    assert guild.audit_calls == [(5, discord.AuditLogAction.channel_delete)]
    [violation] = store.get_violations(guild.id, executor.id)
    assert violation['type'] == 'CHANNEL_DELETE'
    assert violation['reason'] == 'Unauthorized Channel Deletion attempt.'
    assert violation['channelId'] == '300'

    titles = [call.kwargs['embed'].title for call in executor.send.await_args_list]
    assert titles == ['🚨 Security Violation Added', '🚫 Unauthorized Action Logged']
    log = guild.log_channel.send.await_args.kwargs['embed']
    assert log.title == '🚨 Security Violation (Audit)'
    assert {f.name: f.value for f in log.fields}['Action'] == 'Channel Deletion'


@pytest.mark.asyncio
@pytest.mark.parametrize('listener, action, violation_type', [
    ('on_guild_channel_create', discord.AuditLogAction.channel_create, 'CHANNEL_CREATE'),
    ('on_guild_role_create', discord.AuditLogAction.role_create, 'ROLE_CREATE'),
    ('on_guild_role_delete', discord.AuditLogAction.role_delete, 'ROLE_DELETE'),
])
async def test_audited_events_map_to_violation_types(bot, guild, store, listener, action, violation_type):
    executor = guild.add_member(FakeUser(7))
    guild.audit_entries = [make_entry(executor, 300)]

    await getattr(SecurityEvents(bot), listener)(SimpleNamespace(id=300, guild=guild))

    assert guild.audit_calls == [(5, action)]
    assert [v['type'] for v in store.get_violations(guild.id, executor.id)] == [violation_type]


@pytest.mark.asyncio
async def test_member_ban_uses_event_guild(bot, guild, store):
    executor = guild.add_member(FakeUser(7))
    banned = FakeUser(8)
    guild.audit_entries = [make_entry(executor, banned.id)]

    await SecurityEvents(bot).on_member_ban(guild, banned)

    [violation] = store.get_violations(guild.id, executor.id)
    assert violation['type'] == 'MEMBER_BAN'
    assert violation['reason'] == 'Unauthorized Member Ban (User Banned) attempt.'
    assert violation['channelId'] == '8'


@pytest.mark.asyncio
async def test_entry_matching_the_target_is_preferred(bot, guild, store):
    other = guild.add_member(FakeUser(6))
    executor = guild.add_member(FakeUser(7))
    guild.audit_entries = [make_entry(other, 111), make_entry(executor, 300)]

    await SecurityEvents(bot).on_guild_role_delete(SimpleNamespace(id=300, guild=guild))

    assert store.get_violations(guild.id, other.id) == []
    assert len(store.get_violations(guild.id, executor.id)) == 1


@pytest.mark.asyncio
async def test_first_entry_is_used_when_no_target_matches(bot, guild, store):
    executor = guild.add_member(FakeUser(7))
    guild.audit_entries = [make_entry(executor, 111)]

    await SecurityEvents(bot).on_guild_role_delete(SimpleNamespace(id=300, guild=guild))

    assert len(store.get_violations(guild.id, executor.id)) == 1


@pytest.mark.asyncio
async def test_bot_own_actions_are_ignored(bot, guild, store):
    guild.audit_entries = [make_entry(SimpleNamespace(id=BOT_ID), 300)]

    await SecurityEvents(bot).on_guild_channel_create(SimpleNamespace(id=300, guild=guild))

    assert store.data['violations']['byGuild'] == {}


@pytest.mark.asyncio
async def test_whitelisted_executor_is_ignored(bot, guild, store):
    store.add_whitelisted_user(7)
    executor = guild.add_member(FakeUser(7))
    guild.audit_entries = [make_entry(executor, 300)]

    await SecurityEvents(bot).on_guild_channel_create(SimpleNamespace(id=300, guild=guild))

    assert store.get_violations(guild.id, executor.id) == []
    executor.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_audit_log_is_ignored(bot, guild, store):
    await SecurityEvents(bot).on_guild_channel_create(SimpleNamespace(id=300, guild=guild))

    assert store.data['violations']['byGuild'] == {}


@pytest.mark.asyncio
async def test_unreadable_audit_log_is_logged(bot, guild, store, caplog):
    async def forbidden(limit=100, action=None):
        raise http_error()
        yield

    guild.audit_logs = forbidden

    await SecurityEvents(bot).on_guild_channel_create(SimpleNamespace(id=300, guild=guild))

    assert store.data['violations']['byGuild'] == {}
    assert 'Audit handling failed for Channel Creation' in caplog.text


@pytest.mark.asyncio
async def test_configured_guild_is_the_fallback(bot, guild, store):
    bot.config.config['guild_id'] = guild.id
    bot.get_guild.return_value = guild
    executor = guild.add_member(FakeUser(7))
    guild.audit_entries = [make_entry(executor, 8)]

    await SecurityEvents(bot).handle_audit_action(
        discord.AuditLogAction.ban, SimpleNamespace(id=8), 'MEMBER_BAN', 'Member Ban (User Banned)')

    bot.get_guild.assert_called_once_with(guild.id)
    assert len(store.get_violations(guild.id, executor.id)) == 1
