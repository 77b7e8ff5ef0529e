# -*- coding: utf-8 -*-
"""
glennbot エントリポイント
ログ初期化 → 設定検証 → ルール読み込み → Discord 接続 → シグナルで終了
"""

import asyncio
import logging
import os
import sys
from typing import IO, List, Mapping, Optional

# --- 外部ライブラリ ---
import discord
import httpx
from discord.ext import commands
from dotenv import load_dotenv

# --- 自作モジュール ---
from config import BotConfig, ConfigError
from controller import Controller
from discord_api import BotContext, DiscordApi
from log_sink import LogSettings, LoggingSink
from rate_limiter import ActionRateLimiter, default_rate_limits
from rules import Rule, load_rules
from shutdown_handler import ExitCode, GracefulShutdownHandler, PendingSignals, run_until_shutdown
from utils import safe_log

EXTENSIONS = ("cogs.events",)

# Discord が拒否した場合は再起動しても直らない
STARTUP_ERRORS = (discord.LoginFailure, discord.PrivilegedIntentsRequired)


def build_intents() -> discord.Intents:
    """GUILDS / GUILD_MESSAGES / GUILD_MESSAGE_REACTIONS + 本文"""
    intents = discord.Intents.none()
    intents.guilds = True
    intents.guild_messages = True
    intents.guild_reactions = True
    intents.message_content = True
    return intents


class GlennBot(commands.Bot):
    """ルールエンジンを載せた Bot（チャットコマンドは持たない）"""

    def __init__(self, config: BotConfig, rules: List[Rule], sink: LoggingSink, **kwargs):
        super().__init__(
            command_prefix=commands.when_mentioned,
            help_command=None,
            intents=build_intents(),
            **kwargs,
        )
        self.config = config
        self.sink = sink
        self.logger = sink.get_logger("bot")
        self.controller = Controller(rules, sink.get_logger("controller"))
        self.context: Optional[BotContext] = None
        self.http_client: Optional[httpx.AsyncClient] = None

    async def setup_hook(self) -> None:
        # login() の後に呼ばれるので self.user が使える
        self.http_client = httpx.AsyncClient()
        self.context = BotContext(
            me_id=self.user.id,
            api=DiscordApi(self),
            http=self.http_client,
            rate_limiter=ActionRateLimiter(
                default_rate_limits(self.config.reaction_cooldown_seconds),
                logger=self.sink.get_logger("rate_limiter"),
            ),
            logger=self.sink.get_logger("actions"),
            webhook_timeout=self.config.webhook_timeout_seconds,
        )
        for extension in EXTENSIONS:
            await self.load_extension(extension)
            self.logger.debug("✅ Cog loaded: %s", extension)

    async def close(self) -> None:
        if self.context is not None:
            safe_log(self.logger, "📊 Rate limiter stats: ", self.context.rate_limiter.get_all_stats(), logging.DEBUG)
        if self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None
        await super().close()


async def run_bot(
    bot: GlennBot,
    config: BotConfig,
    sink: LoggingSink,
    pending: Optional[PendingSignals] = None,
) -> ExitCode:
    """シグナルを待ちながら Bot を動かす"""
    logger = sink.get_logger()
    handler = GracefulShutdownHandler(sink.get_logger("shutdown"), config.shutdown_grace_seconds)
    handler.register_cleanup(bot.close)
    handler.install()
    # ループのハンドラに切り替わる前に届いていたシグナル
    if pending is not None and pending.received:
        handler.request_shutdown(pending.received)
    try:
        logger.info("🤖 Starting glennbot (PID: %d)", os.getpid())
        return await run_until_shutdown(bot.start(config.get_required("DISCORD_TOKEN")), handler)
    except STARTUP_ERRORS as e:
        logger.error("🚨 Discord rejected the bot: %s", e)
        return ExitCode.STARTUP_FAILURE
    except Exception:
        logger.exception("🚨 Bot crashed")
        return ExitCode.RUNTIME_FAILURE
    finally:
        handler.uninstall()


def main(environ: Optional[Mapping[str, str]] = None, stream: Optional[IO[str]] = None) -> int:
    # 起動処理中のシグナルで既定動作（即死）にならないようにする
    pending = PendingSignals()
    pending.install()
    try:
        return _main(environ, stream, pending)
    finally:
        pending.uninstall()


def _main(environ: Optional[Mapping[str, str]], stream: Optional[IO[str]], pending: PendingSignals) -> int:
    if environ is None:
        # 既に設定済みの環境変数は上書きしない
        load_dotenv()
    config = BotConfig.from_env(environ)

    # ログは他の何よりも先に初期化する
    sink = LoggingSink(LogSettings.parse(config.get("LOG_LEVEL"), config.get("LOG_FORMAT")), stream=stream)
    sink.configure()
    logger = sink.get_logger()
    logger.debug("🔧 Logging configured: level=%s format=%s", sink.settings.describe(),
                 "json" if sink.settings.use_json else "text")

    try:
        try:
            config.validate(sink.get_logger("config"))
            rules = load_rules(config.get("RULES_PATH"), sink.get_logger("rules"))
        except ConfigError as e:
            logger.error("🚨 Configuration error: %s", e)
            return int(ExitCode.CONFIG_ERROR)

        if pending.received:
            logger.info("🛑 Received %s before startup, exiting", pending.received)
            logger.info("exit %d", int(ExitCode.OK))
            return int(ExitCode.OK)

        bot = GlennBot(config, rules, sink)
        try:
            code = asyncio.run(run_bot(bot, config, sink, pending))
        except Exception:
            logger.exception("🚨 FATAL ERROR outside the bot loop")
            code = ExitCode.RUNTIME_FAILURE
        logger.info("exit %d", int(code))
        return int(code)
    finally:
        sink.close()


if __name__ == "__main__":
    sys.exit(main())
