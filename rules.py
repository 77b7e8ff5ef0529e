# -*- coding: utf-8 -*-
"""
ルール管理システム
外部ファイル（JSON / YAML）から「イベント + フィルタ + アクション」のルールを読み込む
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Pattern, Union

import yaml

from actions import Action, Event, parse_action
from config import ConfigError
from discord_api import BotContext
from gateway_events import EventType, MessageCreateEvent, ReactionAddEvent, RULE_EVENT_TYPES
from utils import compile_pattern, pattern_matches


class RuleConfigError(ConfigError):
    """ルールファイルの内容エラー"""


@dataclass
class MessageCreateFilter:
    """MESSAGE_CREATE 用フィルタ（指定された条件すべてに一致で True）"""
    content: Optional[Pattern[str]] = None
    channel_name: Optional[Pattern[str]] = None
    username: Optional[Pattern[str]] = None
    attachments: Optional[bool] = None

    @classmethod
    def from_dict(cls, filters: Dict[str, Any]) -> "MessageCreateFilter":
        attachments = filters.get("attachments")
        if attachments is not None and not isinstance(attachments, bool):
            raise ValueError("attachments must be true, false or null")
        return cls(
            content=compile_pattern(filters.get("content"), "content"),
            channel_name=compile_pattern(filters.get("channel_name"), "channel_name"),
            username=compile_pattern(filters.get("username"), "username"),
            attachments=attachments,
        )

    def matches(self, context: BotContext, event: Event) -> bool:
        if not isinstance(event, MessageCreateEvent):
            return False
        # 自分の発言には反応しない
        if event.author.id == context.me_id:
            return False
        if not pattern_matches(self.username, event.author.tag):
            return False
        if not pattern_matches(self.content, event.content):
            return False
        if self.attachments is not None and self.attachments != bool(event.attachments):
            return False
        if self.channel_name is not None:
            name = context.api.channel_name(event.guild_id, event.channel_id)
            if not pattern_matches(self.channel_name, name):
                return False
        return True


@dataclass
class ReactionAddFilter:
    """MESSAGE_REACTION_ADD 用フィルタ"""
    emoji: Optional[Pattern[str]] = None
    channel_name: Optional[Pattern[str]] = None
    username: Optional[Pattern[str]] = None

    @classmethod
    def from_dict(cls, filters: Dict[str, Any]) -> "ReactionAddFilter":
        return cls(
            emoji=compile_pattern(filters.get("emoji"), "emoji"),
            channel_name=compile_pattern(filters.get("channel_name"), "channel_name"),
            username=compile_pattern(filters.get("username"), "username"),
        )

    def matches(self, context: BotContext, event: Event) -> bool:
        if not isinstance(event, ReactionAddEvent):
            return False
        if event.user_id == context.me_id:
            return False
        if not pattern_matches(self.emoji, event.emoji_name):
            return False
        if self.username is not None:
            tag = event.member.tag if event.member is not None else None
            if not pattern_matches(self.username, tag):
                return False
        if self.channel_name is not None:
            name = context.api.channel_name(event.guild_id, event.channel_id)
            if not pattern_matches(self.channel_name, name):
                return False
        return True


RuleFilter = Union[MessageCreateFilter, ReactionAddFilter]

FILTER_TYPES = {
    EventType.MESSAGE_CREATE: MessageCreateFilter,
    EventType.MESSAGE_REACTION_ADD: ReactionAddFilter,
}


@dataclass
class Rule:
    """イベント種別 + フィルタ + アクション"""
    event: EventType
    filters: RuleFilter
    action: Action

    @property
    def action_name(self) -> str:
        return self.action.type_name

    async def handle(self, context: BotContext, event: Event) -> bool:
        """フィルタに一致すればアクションを実行して True"""
        if not self.filters.matches(context, event):
            return False
        await self.action.handle(context, event)
        return True


def parse_rule(data: Any) -> Rule:
    """1件分のルール定義を Rule に変換"""
    if not isinstance(data, dict):
        raise ValueError("rule must be an object")
    event_name = data.get("event")
    try:
        event = EventType(event_name)
    except ValueError:
        event = None
    if event not in RULE_EVENT_TYPES:
        allowed = ", ".join(e.value for e in RULE_EVENT_TYPES)
        raise ValueError(f"unsupported event {event_name!r} (expected one of {allowed})")

    filters = data.get("filters") or {}
    if not isinstance(filters, dict):
        raise ValueError("filters must be an object")

    return Rule(
        event=event,
        filters=FILTER_TYPES[event].from_dict(filters),
        action=parse_action(data.get("action")),
    )


def parse_rules(document: Any) -> List[Rule]:
    """{"rules": [...]} 形式の文書全体を変換"""
    if document is None:
        return []
    if not isinstance(document, dict) or not isinstance(document.get("rules", []), list):
        raise RuleConfigError('rule file must be an object with a "rules" list')

    rules = []
    for index, rule_data in enumerate(document.get("rules", [])):
        try:
            rules.append(parse_rule(rule_data))
        except ValueError as e:
            raise RuleConfigError(f"rule #{index}: {e}") from e
    return rules


YAML_SUFFIXES = (".yaml", ".yml")


def _read_document(f, path: str) -> Any:
    """拡張子が .yaml / .yml なら YAML、それ以外は JSON として読む"""
    if path.lower().endswith(YAML_SUFFIXES):
        return yaml.safe_load(f)
    return json.load(f)


def load_rules(path: str, logger: logging.Logger) -> List[Rule]:
    """ルールファイルを読み込む"""
    if not os.path.exists(path):
        logger.warning("⚠️ Rule file not found: %s (running without rules)", path)
        return []

    try:
        with open(path, "r", encoding="utf-8") as f:
            document = _read_document(f, path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise RuleConfigError(f"Could not read rule file {path}: {e}") from e

    rules = parse_rules(document)
    logger.info("✅ Rule file loaded: %s (%d rules)", path, len(rules))
    return rules
