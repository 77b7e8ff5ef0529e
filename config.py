# -*- coding: utf-8 -*-
"""
Bot設定管理モジュール
環境変数の読み込みと検証を一元管理
"""

import logging
import math
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple


class ConfigError(Exception):
    """起動時の設定エラー（終了コード 2）"""


@dataclass
class ConfigItem:
    """設定項目の定義"""
    env_var: str
    description: str
    required: bool = True
    default: Optional[str] = None
    is_secret: bool = True


class BotConfig:
    """Bot設定管理クラス"""

    # 設定項目の定義
    CONFIG_ITEMS = {
        # 必須設定
        "DISCORD_TOKEN": ConfigItem(
            "DISCORD_BOT_TOKEN",
            "Discord Bot Token",
            required=True
        ),

        # オプション設定
        "GUILD_NAME": ConfigItem(
            "GUILD_NAME",
            "Guild the bot is expected to join",
            required=False,
            default="",
            is_secret=False
        ),
        "RULES_PATH": ConfigItem(
            "GLENNBOT_RULES_PATH",
            "Rule definitions (JSON or YAML)",
            required=False,
            default="config.json",
            is_secret=False
        ),
        "LOG_LEVEL": ConfigItem(
            "LOG_LEVEL",
            "Log verbosity (off/error/warn/info/debug/trace, name=level overrides)",
            required=False,
            default="debug",
            is_secret=False
        ),
        "LOG_FORMAT": ConfigItem(
            "LOG_FORMAT",
            "Log line format (text/json)",
            required=False,
            default="text",
            is_secret=False
        ),
        "SHUTDOWN_GRACE_SECONDS": ConfigItem(
            "SHUTDOWN_GRACE_SECONDS",
            "Seconds allowed for a clean shutdown after SIGTERM",
            required=False,
            default="10",
            is_secret=False
        ),
        "WEBHOOK_TIMEOUT_SECONDS": ConfigItem(
            "WEBHOOK_TIMEOUT_SECONDS",
            "Timeout for webhook actions",
            required=False,
            default="10",
            is_secret=False
        ),
        "REACTION_COOLDOWN_SECONDS": ConfigItem(
            "REACTION_COOLDOWN_SECONDS",
            "Minimum interval between reactions added by the bot",
            required=False,
            default="0.5",
            is_secret=False
        ),
    }

    NUMERIC_KEYS = ("SHUTDOWN_GRACE_SECONDS", "WEBHOOK_TIMEOUT_SECONDS", "REACTION_COOLDOWN_SECONDS")

    def __init__(self):
        self.config: Dict[str, Any] = {}
        self.missing_required: List[Tuple[str, ConfigItem]] = []
        self.warnings: List[str] = []

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'BotConfig':
        """環境変数から設定を読み込む（失敗しない。検証は validate() で行う）"""
        instance = cls()
        instance._load_config(os.environ if environ is None else environ)
        instance._check_values()
        return instance

    def _load_config(self, environ: Mapping[str, str]):
        """環境変数から設定を読み込む"""
        for key, config_item in self.CONFIG_ITEMS.items():
            value = environ.get(config_item.env_var, config_item.default)

            if value is None or not value.strip():
                if config_item.required:
                    self.missing_required.append((key, config_item))
                value = config_item.default or ""

            self.config[key] = value.strip() if isinstance(value, str) else value

    def _check_values(self):
        """数値設定の妥当性をチェック（不正なら既定値に戻す）"""
        for key in self.NUMERIC_KEYS:
            item = self.CONFIG_ITEMS[key]
            try:
                number = float(self.config[key])
                if not math.isfinite(number) or number < 0:
                    raise ValueError(number)
            except ValueError:
                self.warnings.append(
                    f"{item.env_var}={self.config[key]!r} is not a finite non-negative number, using {item.default}"
                )
                self.config[key] = item.default

    def validate(self, logger: logging.Logger) -> 'BotConfig':
        """警告をログに出し、必須項目が欠けていれば ConfigError"""
        for warning in self.warnings:
            logger.warning("⚠️ Configuration issue: %s", warning)

        if self.missing_required:
            names = ", ".join(item.env_var for _, item in self.missing_required)
            for _, config_item in self.missing_required:
                logger.error("🚨 MISSING: %s (%s)", config_item.env_var, config_item.description)
            raise ConfigError(f"Required environment variables are missing: {names}")

        summary = self.get_config_summary()
        logger.info(
            "✅ Configuration validation completed: %d/%d optional configs set",
            summary["configured_optional"], summary["optional_configs"],
        )
        return self

    def get(self, key: str, default: Any = None) -> Any:
        """設定値を取得"""
        return self.config.get(key, default)

    def get_required(self, key: str) -> str:
        """必須設定値を取得（存在しない場合は例外）"""
        value = self.config.get(key)
        if not value:
            raise ConfigError(f"Required config '{key}' is not set")
        return value

    def get_float(self, key: str) -> float:
        return float(self.config[key])

    @property
    def shutdown_grace_seconds(self) -> float:
        return self.get_float("SHUTDOWN_GRACE_SECONDS")

    @property
    def webhook_timeout_seconds(self) -> float:
        return self.get_float("WEBHOOK_TIMEOUT_SECONDS")

    @property
    def reaction_cooldown_seconds(self) -> float:
        return self.get_float("REACTION_COOLDOWN_SECONDS")

    def get_config_summary(self) -> Dict[str, Any]:
        """設定サマリーを取得（シークレットは伏せる）"""
        values = {}
        for key, item in self.CONFIG_ITEMS.items():
            value = self.config.get(key)
            if item.is_secret:
                value = "***" if value else ""
            values[key] = value
        return {
            "total_configs": len(self.CONFIG_ITEMS),
            "required_configs": sum(1 for item in self.CONFIG_ITEMS.values() if item.required),
            "optional_configs": sum(1 for item in self.CONFIG_ITEMS.values() if not item.required),
            "configured_optional": sum(
                1 for key, item in self.CONFIG_ITEMS.items()
                if not item.required and self.config.get(key)
            ),
            "warnings_count": len(self.warnings),
            "values": values,
        }
