# -*- coding: utf-8 -*-
"""
アクション定義
ルールの条件に一致したときに実行する処理（Webhook / Echo / React / AddRole / RemoveRole）

各アクションは2段構成:
    Options  ... ルールファイルに書かれた設定
    Data     ... Options + 実行対象の ID（イベントから決まる、または Webhook の応答で渡される）
"""

import base64
import binascii
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Type, Union

import discord
import httpx

from discord_api import BotContext
from gateway_events import MessageCreateEvent, ReactionAddEvent
from utils import safe_log, to_snowflake

Event = Union[MessageCreateEvent, ReactionAddEvent]

# RFC 7230 token
HEADER_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


class ActionError(Exception):
    """アクションを完了できなかった"""


# --- 入力チェック用ヘルパー ---

def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value

def _required_str(data: Dict[str, Any], key: str) -> str:
    value = _optional_str(data, key)
    if not value:
        raise ValueError(f"{key} is required")
    return value

def _optional_str_list(data: Dict[str, Any], key: str) -> Optional[List[str]]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{key} must be a list of strings")
    return list(value)

def _require_mapping(data: Any, what: str) -> Dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be an object")
    return data


class Action(ABC):
    """アクション（Options）の基底クラス"""
    type_name: ClassVar[str] = ""

    @classmethod
    @abstractmethod
    def from_dict(cls, options: Dict[str, Any]) -> "Action":
        pass

    @abstractmethod
    async def handle(self, context: BotContext, event: Event) -> None:
        """イベントから実行データを作って実行する"""


class ActionData(ABC):
    """実行データの基底クラス"""
    type_name: ClassVar[str] = ""

    @classmethod
    @abstractmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionData":
        pass

    @abstractmethod
    async def execute(self, context: BotContext) -> None:
        pass


# --- Webhook ---

@dataclass
class WebhookOptions(Action):
    type_name: ClassVar[str] = "Webhook"

    url: str
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> "WebhookOptions":
        url = _required_str(options, "url")
        headers = _require_mapping(options.get("headers"), "headers")
        for name, value in headers.items():
            if not HEADER_NAME_RE.match(name):
                raise ValueError(f"invalid HTTP header name {name!r}")
            if not isinstance(value, str):
                raise ValueError(f"HTTP header {name!r} must have a string value")
        return cls(url=url, headers=dict(headers))

    async def handle(self, context: BotContext, event: Event) -> None:
        await WebhookData(meta=self, payload=event.to_payload()).execute(context)


@dataclass
class WebhookData(ActionData):
    type_name: ClassVar[str] = "Webhook"

    meta: WebhookOptions
    payload: Dict[str, Any]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WebhookData":
        return cls(
            meta=WebhookOptions.from_dict(data),
            payload=_require_mapping(data.get("payload"), "payload"),
        )

    async def execute(self, context: BotContext) -> None:
        await context.rate_limiter.acquire("webhook")
        headers = dict(self.meta.headers)
        headers["content-type"] = "application/json"
        try:
            response = await context.http.post(
                self.meta.url,
                json=self.payload,
                headers=headers,
                timeout=context.webhook_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ActionError(f"Webhook request to {self.meta.url} failed: {e}") from e

        context.logger.debug("Webhook %s answered %d", self.meta.url, response.status_code)
        if not response.content.strip():
            return

        try:
            body = response.json()
        except ValueError as e:
            raise ActionError(f"Could not parse webhook response: {e}") from e
        if isinstance(body, dict) and self.type_name in body:
            raise ActionError("Webhook not allowed as action response")
        try:
            follow_up = parse_action_data(body)
        except ValueError as e:
            raise ActionError(f"Could not parse webhook response: {e}") from e

        safe_log(context.logger, "🔁 webhook follow-up: ", follow_up.type_name)
        await follow_up.execute(context)


# --- Echo ---

@dataclass
class Base64File:
    contents: str  # base64
    filename: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Base64File":
        return cls(
            contents=_required_str(data, "contents"),
            filename=_required_str(data, "filename"),
        )


@dataclass
class EchoOptions(Action):
    type_name: ClassVar[str] = "Echo"

    content: Optional[str] = None
    file: Optional[Base64File] = None

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> "EchoOptions":
        file_data = options.get("file")
        return cls(
            content=_optional_str(options, "content"),
            file=Base64File.from_dict(_require_mapping(file_data, "file")) if file_data is not None else None,
        )

    async def handle(self, context: BotContext, event: Event) -> None:
        await EchoData(meta=self, channel_id=event.channel_id).execute(context)


@dataclass
class EchoData(ActionData):
    type_name: ClassVar[str] = "Echo"

    meta: EchoOptions
    channel_id: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EchoData":
        return cls(
            meta=EchoOptions.from_dict(data),
            channel_id=to_snowflake(data.get("channel_id"), "channel_id"),
        )

    async def execute(self, context: BotContext) -> None:
        context.logger.info("Executing echo action in channel %s", self.channel_id)
        if self.meta.content:
            await context.rate_limiter.acquire("message")
            await context.api.create_message(self.channel_id, self.meta.content)

        if self.meta.file is None:
            return
        try:
            data = base64.b64decode(self.meta.file.contents, validate=True)
        except (binascii.Error, ValueError):
            context.logger.error("Unable to decode file %r in echo action", self.meta.file.filename)
            return

        await context.rate_limiter.acquire("message")
        try:
            await context.api.send_file(self.channel_id, self.meta.file.filename, data)
        except discord.HTTPException as e:
            raise ActionError(f"Unable to send file {self.meta.file.filename!r}: {e}") from e
        context.logger.info("Sent %s", self.meta.file.filename)


# --- React ---

@dataclass
class ReactOptions(Action):
    type_name: ClassVar[str] = "React"

    emojis: Optional[List[str]] = None
    custom_emojis: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> "ReactOptions":
        return cls(
            emojis=_optional_str_list(options, "emojis"),
            custom_emojis=_optional_str_list(options, "custom_emojis"),
        )

    async def handle(self, context: BotContext, event: Event) -> None:
        # カスタム絵文字の検索にギルドが要る
        if event.guild_id is None:
            return
        message_id = event.id if isinstance(event, MessageCreateEvent) else event.message_id
        data = ReactData(
            meta=self,
            guild_id=event.guild_id,
            channel_id=event.channel_id,
            message_id=message_id,
        )
        await data.execute(context)


@dataclass
class ReactData(ActionData):
    type_name: ClassVar[str] = "React"

    meta: ReactOptions
    guild_id: int
    channel_id: int
    message_id: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReactData":
        return cls(
            meta=ReactOptions.from_dict(data),
            guild_id=to_snowflake(data.get("guild_id"), "guild_id"),
            channel_id=to_snowflake(data.get("channel_id"), "channel_id"),
            message_id=to_snowflake(data.get("message_id"), "message_id"),
        )

    async def _react(self, context: BotContext, emoji: str) -> None:
        await context.rate_limiter.acquire("reaction")
        try:
            await context.api.create_reaction(self.channel_id, self.message_id, emoji)
        except discord.HTTPException as e:
            context.logger.warning("Could not add reaction %s to %s: %s", emoji, self.message_id, e)

    async def execute(self, context: BotContext) -> None:
        for emoji in self.meta.emojis or []:
            await self._react(context, emoji)

        for emoji_name in self.meta.custom_emojis or []:
            context.logger.debug("Searching guild %s emojis for %s", self.guild_id, emoji_name)
            emoji = context.api.custom_emoji(self.guild_id, emoji_name)
            if emoji is None:
                context.logger.warning("Custom emoji %r not found in guild %s", emoji_name, self.guild_id)
                continue
            await self._react(context, emoji)


# --- AddRole / RemoveRole ---

@dataclass
class RoleData(ActionData):
    guild_id: int
    user_id: int
    role_id: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoleData":
        return cls(
            guild_id=to_snowflake(data.get("guild_id"), "guild_id"),
            user_id=to_snowflake(data.get("user_id"), "user_id"),
            role_id=to_snowflake(data.get("role_id"), "role_id"),
        )


class AddRoleData(RoleData):
    type_name: ClassVar[str] = "AddRole"

    async def execute(self, context: BotContext) -> None:
        try:
            await context.api.add_member_role(self.guild_id, self.user_id, self.role_id, reason="glennbot rule")
        except discord.HTTPException as e:
            raise ActionError(f"Could not add guild member role: {e}") from e


class RemoveRoleData(RoleData):
    type_name: ClassVar[str] = "RemoveRole"

    async def execute(self, context: BotContext) -> None:
        try:
            await context.api.remove_member_role(self.guild_id, self.user_id, self.role_id, reason="glennbot rule")
        except discord.HTTPException as e:
            raise ActionError(f"Could not remove guild member role: {e}") from e


@dataclass
class RoleOptions(Action):
    data_class: ClassVar[Type[RoleData]] = RoleData

    role_name: Optional[str] = None
    role_id: Optional[int] = None

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> "RoleOptions":
        role_id = options.get("role_id")
        instance = cls(
            role_name=_optional_str(options, "role_name"),
            role_id=to_snowflake(role_id, "role_id") if role_id is not None else None,
        )
        if instance.role_id is None and instance.role_name is None:
            raise ValueError("role_id or role_name is required")
        return instance

    def _resolve_role_id(self, context: BotContext, guild_id: int) -> Optional[int]:
        if self.role_id is not None:
            return self.role_id
        return context.api.role_id_by_name(guild_id, self.role_name)

    async def handle(self, context: BotContext, event: Event) -> None:
        if event.guild_id is None:
            return
        role_id = self._resolve_role_id(context, event.guild_id)
        user_id = event.user_id
        if role_id is None or user_id is None:
            raise ActionError("Could not get role_id or user_id for role action")
        await self.data_class(guild_id=event.guild_id, user_id=user_id, role_id=role_id).execute(context)


class AddRoleOptions(RoleOptions):
    type_name: ClassVar[str] = "AddRole"
    data_class: ClassVar[Type[RoleData]] = AddRoleData


class RemoveRoleOptions(RoleOptions):
    type_name: ClassVar[str] = "RemoveRole"
    data_class: ClassVar[Type[RoleData]] = RemoveRoleData


# --- 登録テーブル ---

ACTION_TYPES: Dict[str, Type[Action]] = {
    cls.type_name: cls
    for cls in (WebhookOptions, EchoOptions, ReactOptions, AddRoleOptions, RemoveRoleOptions)
}

ACTION_DATA_TYPES: Dict[str, Type[ActionData]] = {
    cls.type_name: cls
    for cls in (WebhookData, EchoData, ReactData, AddRoleData, RemoveRoleData)
}


def parse_action(action_def: Any) -> Action:
    """ルールファイルの {"type": ..., "options": {...}} を Action に変換"""
    action_def = _require_mapping(action_def, "action")
    type_name = action_def.get("type")
    action_class = ACTION_TYPES.get(type_name) if isinstance(type_name, str) else None
    if action_class is None:
        raise ValueError(f"unknown action type {type_name!r} (expected one of {', '.join(ACTION_TYPES)})")
    return action_class.from_dict(_require_mapping(action_def.get("options"), f"{type_name} options"))


def parse_action_data(body: Any) -> ActionData:
    """Webhook 応答の {"React": {...}} 形式を ActionData に変換"""
    if not isinstance(body, dict) or len(body) != 1:
        raise ValueError("expected an object with exactly one action name")
    (type_name, data), = body.items()
    data_class = ACTION_DATA_TYPES.get(type_name) if isinstance(type_name, str) else None
    if data_class is None:
        raise ValueError(f"unknown action {type_name!r}")
    return data_class.from_dict(_require_mapping(data, type_name))
