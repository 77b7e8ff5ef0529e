# -*- coding: utf-8 -*-
"""
テスト共通のフィクスチャ
Discord は FakeApi、HTTP は httpx.MockTransport で置き換える
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from discord_api import BotContext
from gateway_events import Attachment, Author, MessageCreateEvent, ReactionAddEvent
from rate_limiter import ActionRateLimiter, default_rate_limits

ME_ID = 1000
GUILD_ID = 368933402751008771
CHANNEL_ID = 705147009761280010
MESSAGE_ID = 736780490568368169


class FakeApi:
    """DiscordApi の代わり。呼び出しを記録する"""

    def __init__(self):
        self.calls: List[Tuple] = []
        self.channels: Dict[int, str] = {CHANNEL_ID: "general"}
        self.roles: Dict[Tuple[int, str], int] = {}
        self.emojis: Dict[Tuple[int, str], str] = {}

    def channel_name(self, guild_id, channel_id):
        return self.channels.get(channel_id)

    def role_id_by_name(self, guild_id, role_name):
        return self.roles.get((guild_id, role_name))

    def custom_emoji(self, guild_id, emoji_name):
        return self.emojis.get((guild_id, emoji_name))

    async def create_message(self, channel_id, content):
        self.calls.append(("create_message", channel_id, content))

    async def send_file(self, channel_id, filename, data):
        self.calls.append(("send_file", channel_id, filename, data))

    async def create_reaction(self, channel_id, message_id, emoji):
        self.calls.append(("create_reaction", channel_id, message_id, emoji))

    async def add_member_role(self, guild_id, user_id, role_id, reason=None):
        self.calls.append(("add_member_role", guild_id, user_id, role_id))

    async def remove_member_role(self, guild_id, user_id, role_id, reason=None):
        self.calls.append(("remove_member_role", guild_id, user_id, role_id))


def _no_webhooks(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected HTTP request to {request.url}")


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def make_context(fake_api) -> Callable[..., BotContext]:
    """BotContext を作る。Webhook の応答は handler で差し替える"""

    def _make(handler: Optional[Callable[[httpx.Request], httpx.Response]] = None) -> BotContext:
        return BotContext(
            me_id=ME_ID,
            api=fake_api,
            http=httpx.AsyncClient(transport=httpx.MockTransport(handler or _no_webhooks)),
            rate_limiter=ActionRateLimiter(default_rate_limits(0.0)),
            logger=logging.getLogger("tests.actions"),
            webhook_timeout=5.0,
        )

    return _make


@pytest.fixture
def context(make_context) -> BotContext:
    return make_context()


def message_event(
    content: str = "hello",
    author_id: int = 42,
    username: str = "alice",
    discriminator: str = "1234",
    channel_id: int = CHANNEL_ID,
    guild_id: Optional[int] = GUILD_ID,
    attachments: int = 0,
) -> MessageCreateEvent:
    return MessageCreateEvent(
        id=MESSAGE_ID,
        channel_id=channel_id,
        guild_id=guild_id,
        author=Author(id=author_id, username=username, discriminator=discriminator),
        content=content,
        attachments=[
            Attachment(id=900 + i, filename=f"image{i}.png", url=f"https://cdn.example/image{i}.png")
            for i in range(attachments)
        ],
    )


def reaction_event(
    emoji_name: str = "✅",
    user_id: int = 42,
    member: Optional[Author] = Author(id=42, username="alice", discriminator="1234"),
    channel_id: int = CHANNEL_ID,
    guild_id: Optional[int] = GUILD_ID,
) -> ReactionAddEvent:
    return ReactionAddEvent(
        message_id=MESSAGE_ID,
        channel_id=channel_id,
        guild_id=guild_id,
        user_id=user_id,
        emoji_name=emoji_name,
        member=member,
    )
