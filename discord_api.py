# -*- coding: utf-8 -*-
"""
Discord 操作アダプタ
ルール/アクションが必要とする参照・操作だけを discord.py の上に薄く載せる
"""

import io
import logging
from dataclasses import dataclass
from typing import Optional

import discord
import httpx

from rate_limiter import ActionRateLimiter


class DiscordApi:
    """discord.py の Bot キャッシュと REST 呼び出しを包む"""

    def __init__(self, bot: discord.Client):
        self._bot = bot

    # --- キャッシュ参照 ---

    def channel_name(self, guild_id: Optional[int], channel_id: int) -> Optional[str]:
        channel = self._bot.get_channel(channel_id)
        if channel is None:
            return None
        if guild_id is not None and getattr(getattr(channel, "guild", None), "id", None) != guild_id:
            return None
        return getattr(channel, "name", None)

    def role_id_by_name(self, guild_id: int, role_name: str) -> Optional[int]:
        guild = self._bot.get_guild(guild_id)
        if guild is None:
            return None
        role = discord.utils.get(guild.roles, name=role_name)
        return role.id if role is not None else None

    def custom_emoji(self, guild_id: int, emoji_name: str) -> Optional[str]:
        """ギルドのカスタム絵文字を name:id 形式で返す"""
        guild = self._bot.get_guild(guild_id)
        if guild is None:
            return None
        emoji = discord.utils.get(guild.emojis, name=emoji_name)
        if emoji is None:
            return None
        return f"{emoji.name}:{emoji.id}"

    # --- REST 操作 ---

    async def create_message(self, channel_id: int, content: str) -> None:
        channel = self._bot.get_partial_messageable(channel_id)
        await channel.send(content=content)

    async def send_file(self, channel_id: int, filename: str, data: bytes) -> None:
        channel = self._bot.get_partial_messageable(channel_id)
        await channel.send(file=discord.File(io.BytesIO(data), filename=filename))

    async def create_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        message = self._bot.get_partial_messageable(channel_id).get_partial_message(message_id)
        await message.add_reaction(emoji)

    async def add_member_role(self, guild_id: int, user_id: int, role_id: int, reason: Optional[str] = None) -> None:
        member = await self._fetch_member(guild_id, user_id)
        await member.add_roles(discord.Object(id=role_id), reason=reason)

    async def remove_member_role(self, guild_id: int, user_id: int, role_id: int, reason: Optional[str] = None) -> None:
        member = await self._fetch_member(guild_id, user_id)
        await member.remove_roles(discord.Object(id=role_id), reason=reason)

    async def _fetch_member(self, guild_id: int, user_id: int) -> discord.Member:
        guild = self._bot.get_guild(guild_id)
        if guild is None:
            guild = await self._bot.fetch_guild(guild_id)
        member = guild.get_member(user_id)
        if member is None:
            member = await guild.fetch_member(user_id)
        return member


@dataclass
class BotContext:
    """ルールとアクションに渡される実行コンテキスト"""
    me_id: int
    api: DiscordApi
    http: httpx.AsyncClient
    rate_limiter: ActionRateLimiter
    logger: logging.Logger
    webhook_timeout: float = 10.0
