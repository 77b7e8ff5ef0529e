# -*- coding: utf-8 -*-
"""
ゲートウェイイベントモデル
discord.py のオブジェクトをルールエンジン用の軽いデータに変換する
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional


class EventType(str, Enum):
    """ゲートウェイイベント種別"""
    MESSAGE_CREATE = "MESSAGE_CREATE"
    MESSAGE_REACTION_ADD = "MESSAGE_REACTION_ADD"
    GUILD_CREATE = "GUILD_CREATE"
    READY = "READY"


# ルールを設定できるイベント
RULE_EVENT_TYPES = (EventType.MESSAGE_CREATE, EventType.MESSAGE_REACTION_ADD)


def _snowflake(value: Optional[int]) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass(frozen=True)
class Author:
    """メッセージ送信者 / リアクションしたユーザー"""
    id: int
    username: str
    discriminator: str = "0"
    bot: bool = False

    @property
    def tag(self) -> str:
        return f"{self.username}#{self.discriminator}"

    @classmethod
    def from_user(cls, user) -> "Author":
        return cls(
            id=user.id,
            username=user.name,
            discriminator=str(getattr(user, "discriminator", "0")),
            bot=bool(getattr(user, "bot", False)),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "username": self.username,
            "discriminator": self.discriminator,
            "bot": self.bot,
        }


@dataclass(frozen=True)
class Attachment:
    id: int
    filename: str
    url: str


@dataclass(frozen=True)
class MessageCreateEvent:
    """MESSAGE_CREATE"""
    event_type: ClassVar[EventType] = EventType.MESSAGE_CREATE

    id: int
    channel_id: int
    guild_id: Optional[int]
    author: Author
    content: str
    attachments: List[Attachment] = field(default_factory=list)

    @property
    def user_id(self) -> int:
        return self.author.id

    @classmethod
    def from_message(cls, message) -> "MessageCreateEvent":
        guild = getattr(message, "guild", None)
        return cls(
            id=message.id,
            channel_id=message.channel.id,
            guild_id=guild.id if guild is not None else None,
            author=Author.from_user(message.author),
            content=message.content or "",
            attachments=[
                Attachment(id=a.id, filename=a.filename, url=a.url)
                for a in message.attachments
            ],
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "t": self.event_type.value,
            "d": {
                "id": str(self.id),
                "channel_id": str(self.channel_id),
                "guild_id": _snowflake(self.guild_id),
                "author": self.author.to_payload(),
                "content": self.content,
                "attachments": [
                    {"id": str(a.id), "filename": a.filename, "url": a.url}
                    for a in self.attachments
                ],
            },
        }


@dataclass(frozen=True)
class ReactionAddEvent:
    """MESSAGE_REACTION_ADD"""
    event_type: ClassVar[EventType] = EventType.MESSAGE_REACTION_ADD

    message_id: int
    channel_id: int
    guild_id: Optional[int]
    user_id: int
    emoji_name: Optional[str]
    emoji_id: Optional[int] = None
    member: Optional[Author] = None

    @classmethod
    def from_payload(cls, payload) -> "ReactionAddEvent":
        """discord.RawReactionActionEvent から変換"""
        member = getattr(payload, "member", None)
        return cls(
            message_id=payload.message_id,
            channel_id=payload.channel_id,
            guild_id=payload.guild_id,
            user_id=payload.user_id,
            emoji_name=payload.emoji.name,
            emoji_id=payload.emoji.id,
            member=Author.from_user(member) if member is not None else None,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "t": self.event_type.value,
            "d": {
                "message_id": str(self.message_id),
                "channel_id": str(self.channel_id),
                "guild_id": _snowflake(self.guild_id),
                "user_id": str(self.user_id),
                "emoji": {"name": self.emoji_name, "id": _snowflake(self.emoji_id)},
                "member": self.member.to_payload() if self.member else None,
            },
        }
