import os

import discord
from discord.ext import commands

from gateway_events import EventType, MessageCreateEvent, ReactionAddEvent
from log_sink import TRACE
from utils import safe_log


class EventCog(commands.Cog):
    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.logger = bot.sink.get_logger("events")

    @commands.Cog.listener()
    async def on_ready(self):
        self.logger.info("✅ Login successful: %s (PID: %d)", self.bot.user, os.getpid())
        guild_name = self.bot.config.get("GUILD_NAME")
        if guild_name and not any(g.name == guild_name for g in self.bot.guilds):
            self.logger.warning("⚠️ Not a member of guild %r", guild_name)

    @commands.Cog.listener()
    async def on_guild_available(self, guild: discord.Guild):
        self.logger.info("%s: %s (%d channels)", EventType.GUILD_CREATE.value, guild.name, len(guild.channels))
        for channel in guild.channels:
            self.logger.debug("Found channel: %s", channel.name)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        # ルール実行前（setup_hook 前）のイベントは捨てる
        if self.bot.context is None:
            return
        event = MessageCreateEvent.from_message(message)
        safe_log(self.logger, "📨 ", event.to_payload(), TRACE)
        await self.bot.controller.handle_event(self.bot.context, event)

    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent):
        if self.bot.context is None:
            return
        event = ReactionAddEvent.from_payload(payload)
        safe_log(self.logger, "📨 ", event.to_payload(), TRACE)
        await self.bot.controller.handle_event(self.bot.context, event)


async def setup(bot: commands.Bot):
    await bot.add_cog(EventCog(bot))
