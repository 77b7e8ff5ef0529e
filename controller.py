# -*- coding: utf-8 -*-
"""
コントローラー
受け取ったイベントを種別ごとのルールに振り分ける（IFTTT 風のフロー制御）
"""

import logging
from collections import defaultdict
from typing import Dict, List

import discord
import httpx

from actions import ActionError, Event
from discord_api import BotContext
from gateway_events import EventType
from rules import Rule


class Controller:
    def __init__(self, rules: List[Rule], logger: logging.Logger):
        self.logger = logger
        self.event_map: Dict[EventType, List[Rule]] = defaultdict(list)
        for rule in rules:
            self.logger.info("📋 Found %s rule -> %s", rule.event.value, rule.action_name)
            self.event_map[rule.event].append(rule)

    def rules_for(self, event_type: EventType) -> List[Rule]:
        return self.event_map.get(event_type, [])

    async def handle_event(self, context: BotContext, event: Event) -> int:
        """該当ルールを定義順に実行し、実行できたルール数を返す"""
        executed = 0
        for index, rule in enumerate(self.rules_for(event.event_type)):
            try:
                if await rule.handle(context, event):
                    executed += 1
                    self.logger.debug("%s rule #%d (%s) executed", event.event_type.value, index, rule.action_name)
            except ActionError as e:
                self.logger.error("🚨 %s action failed: %s", rule.action_name, e)
            except (discord.DiscordException, httpx.HTTPError) as e:
                self.logger.error("🚨 %s action failed: %s: %s", rule.action_name, type(e).__name__, e)
            except Exception:
                # 1件のルールの失敗で他のルールやプロセスを止めない
                self.logger.exception("🚨 Unexpected error in %s rule #%d", rule.action_name, index)
        return executed
