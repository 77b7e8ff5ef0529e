# -*- coding: utf-8 -*-
"""
Discord 操作アダプタと GlennBot の起動・終了フックのテスト
discord.py のオブジェクトは SimpleNamespace で代用する
"""

import io
from types import SimpleNamespace

import discord
import httpx
import pytest
from discord.ext import commands

import bot
from config import BotConfig
from conftest import CHANNEL_ID, GUILD_ID, MESSAGE_ID
from discord_api import DiscordApi
from log_sink import LogSettings, LoggingSink


class FakeChannel:
    def __init__(self):
        self.sent = []
        self.reactions = []

    async def send(self, **kwargs):
        self.sent.append(kwargs)

    def get_partial_message(self, message_id):
        channel = self

        class _Message:
            async def add_reaction(self, emoji):
                channel.reactions.append((message_id, emoji))

        return _Message()


class FakeMember:
    def __init__(self):
        self.added = []
        self.removed = []

    async def add_roles(self, *roles, reason=None):
        self.added.append((roles, reason))

    async def remove_roles(self, *roles, reason=None):
        self.removed.append((roles, reason))


class FakeGuild:
    def __init__(self, guild_id=GUILD_ID, member=None, cached_member=True):
        self.id = guild_id
        self.roles = [SimpleNamespace(id=11, name="member"), SimpleNamespace(id=12, name="admin")]
        self.emojis = [SimpleNamespace(id=555, name="glenn")]
        self.member = member or FakeMember()
        self.cached_member = cached_member
        self.fetched_members = []

    def get_member(self, user_id):
        return self.member if self.cached_member else None

    async def fetch_member(self, user_id):
        self.fetched_members.append(user_id)
        return self.member


class FakeClient:
    """DiscordApi が触る discord.Client の一部だけを持つ"""

    def __init__(self, guild=None, cached_guild=True):
        self.guild = guild or FakeGuild()
        self.cached_guild = cached_guild
        self.fetched_guilds = []
        self.channels = {CHANNEL_ID: SimpleNamespace(name="general", guild=SimpleNamespace(id=GUILD_ID))}
        self.partials = {}

    def get_channel(self, channel_id):
        return self.channels.get(channel_id)

    def get_guild(self, guild_id):
        if self.cached_guild and guild_id == self.guild.id:
            return self.guild
        return None

    async def fetch_guild(self, guild_id):
        self.fetched_guilds.append(guild_id)
        return self.guild

    def get_partial_messageable(self, channel_id):
        return self.partials.setdefault(channel_id, FakeChannel())


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def api(client):
    return DiscordApi(client)


# --- キャッシュ参照 ---

def test_channel_name(api):
    assert api.channel_name(GUILD_ID, CHANNEL_ID) == "general"
    assert api.channel_name(None, CHANNEL_ID) == "general"


def test_channel_name_from_other_guild_is_none(api):
    assert api.channel_name(GUILD_ID + 1, CHANNEL_ID) is None


def test_unknown_channel_is_none(api):
    assert api.channel_name(GUILD_ID, 1) is None


def test_role_id_by_name(api):
    assert api.role_id_by_name(GUILD_ID, "admin") == 12
    assert api.role_id_by_name(GUILD_ID, "nobody") is None
    assert api.role_id_by_name(GUILD_ID + 1, "admin") is None


def test_custom_emoji(api):
    assert api.custom_emoji(GUILD_ID, "glenn") == "glenn:555"
    assert api.custom_emoji(GUILD_ID, "missing") is None
    assert api.custom_emoji(GUILD_ID + 1, "glenn") is None


# --- REST 操作 ---

@pytest.mark.asyncio
async def test_create_message(api, client):
    await api.create_message(CHANNEL_ID, "pong")

    assert client.partials[CHANNEL_ID].sent == [{"content": "pong"}]


@pytest.mark.asyncio
async def test_send_file_wraps_bytes(api, client):
    await api.send_file(CHANNEL_ID, "report.txt", b"hello")

    (kwargs,) = client.partials[CHANNEL_ID].sent
    attached = kwargs["file"]
    assert isinstance(attached, discord.File)
    assert attached.filename == "report.txt"
    assert attached.fp.read() == b"hello"


@pytest.mark.asyncio
async def test_create_reaction(api, client):
    await api.create_reaction(CHANNEL_ID, MESSAGE_ID, "glenn:555")

    assert client.partials[CHANNEL_ID].reactions == [(MESSAGE_ID, "glenn:555")]


@pytest.mark.asyncio
async def test_role_changes_use_cached_member(api, client):
    member = client.guild.member

    await api.add_member_role(GUILD_ID, 42, 12, reason="rule")
    await api.remove_member_role(GUILD_ID, 42, 11)

    ((added_roles, added_reason),) = member.added
    assert [r.id for r in added_roles] == [12]
    assert all(isinstance(r, discord.Object) for r in added_roles)
    assert added_reason == "rule"
    ((removed_roles, removed_reason),) = member.removed
    assert [r.id for r in removed_roles] == [11]
    assert removed_reason is None
    assert client.fetched_guilds == []
    assert client.guild.fetched_members == []


@pytest.mark.asyncio
async def test_role_change_fetches_on_cache_miss():
    guild = FakeGuild(cached_member=False)
    client = FakeClient(guild=guild, cached_guild=False)

    await DiscordApi(client).add_member_role(GUILD_ID, 42, 12)

    assert client.fetched_guilds == [GUILD_ID]
    assert guild.fetched_members == [42]
    assert len(guild.member.added) == 1


# --- GlennBot の setup_hook / close ---

@pytest.fixture
def debug_sink():
    stream = io.StringIO()
    sink = LoggingSink(LogSettings.parse("debug"), stream=stream, root_name="apitest", library_loggers=())
    sink.configure()
    yield sink, stream
    sink.close()


@pytest.fixture
def glenn(monkeypatch, debug_sink):
    sink, _ = debug_sink
    # login() 後に入る self.user の代わり
    monkeypatch.setattr(bot.GlennBot, "user", SimpleNamespace(id=99))
    config = BotConfig.from_env({
        "DISCORD_BOT_TOKEN": "t",
        "REACTION_COOLDOWN_SECONDS": "1.5",
        "WEBHOOK_TIMEOUT_SECONDS": "3",
    })
    return bot.GlennBot(config, [], sink)


@pytest.mark.asyncio
async def test_setup_hook_builds_context(glenn):
    assert glenn.context is None

    await glenn.setup_hook()
    try:
        context = glenn.context
        assert context.me_id == 99
        assert isinstance(context.api, DiscordApi)
        assert isinstance(glenn.http_client, httpx.AsyncClient)
        assert context.http is glenn.http_client
        assert context.webhook_timeout == 3.0
        assert context.rate_limiter.get_bucket("reaction").config.cooldown_seconds == 1.5
        assert "EventCog" in glenn.cogs
    finally:
        await glenn.http_client.aclose()


@pytest.mark.asyncio
async def test_close_logs_stats_and_releases_http_client(glenn, debug_sink, monkeypatch):
    _, stream = debug_sink
    closed = []

    async def fake_super_close(self):
        closed.append(self)

    monkeypatch.setattr(commands.Bot, "close", fake_super_close)
    await glenn.setup_hook()
    client = glenn.http_client
    await glenn.context.rate_limiter.acquire("message")

    await glenn.close()

    assert closed == [glenn]
    assert glenn.http_client is None
    assert client.is_closed
    output = stream.getvalue()
    assert "Rate limiter stats" in output
    assert '"total_requests": 1' in output


@pytest.mark.asyncio
async def test_close_before_setup_hook(glenn, monkeypatch):
    async def fake_super_close(self):
        pass

    monkeypatch.setattr(commands.Bot, "close", fake_super_close)

    await glenn.close()

    assert glenn.http_client is None
