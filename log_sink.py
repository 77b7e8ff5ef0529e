# -*- coding: utf-8 -*-
"""
ログ出力管理モジュール
環境変数 LOG_LEVEL からログレベルを一度だけ決定し、プロセス全体のロガーを構成する

LOG_LEVEL の書式:
    debug                          -> 全体を debug に
    info,discord=warn              -> 全体は info、discord ロガーだけ warn
    trace,glennbot.actions=error   -> 個別ロガーの上書きは何個でも可
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, IO, List, Optional, Tuple

# logging に TRACE は無いので DEBUG の下に追加する
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_LEVEL_ENV = "LOG_LEVEL"
LOG_FORMAT_ENV = "LOG_FORMAT"
ROOT_LOGGER_NAME = "glennbot"
# 構成済みのルートロガーに付ける印（Sink インスタンスをまたいで一回だけ）
SINK_MARKER = "_glennbot_sink"
LIBRARY_LOGGERS = ("discord", "httpx")


class LogLevel(Enum):
    """認識できるログレベル"""
    OFF = logging.CRITICAL + 10
    ERROR = logging.ERROR
    WARN = logging.WARNING
    INFO = logging.INFO
    DEBUG = logging.DEBUG
    TRACE = TRACE

    @property
    def label(self) -> str:
        return self.name.lower()


LEVEL_NAMES: Dict[str, LogLevel] = {
    "off": LogLevel.OFF,
    "error": LogLevel.ERROR,
    "warn": LogLevel.WARN,
    "warning": LogLevel.WARN,
    "info": LogLevel.INFO,
    "debug": LogLevel.DEBUG,
    "trace": LogLevel.TRACE,
}

DEFAULT_LOG_LEVEL = LogLevel.DEBUG


def parse_log_level(value: Optional[str]) -> Optional[LogLevel]:
    """レベル名を LogLevel に変換（不明なら None）"""
    if value is None:
        return None
    return LEVEL_NAMES.get(value.strip().lower())


@dataclass(frozen=True)
class LogSettings:
    """ログ設定（起動時に一度だけ作られ、以後変更されない）"""
    level: LogLevel = DEFAULT_LOG_LEVEL
    overrides: Dict[str, LogLevel] = field(default_factory=dict)
    use_json: bool = False
    raw: Optional[str] = None
    problems: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, raw: Optional[str], log_format: Optional[str] = None) -> "LogSettings":
        """LOG_LEVEL / LOG_FORMAT の値から設定を組み立てる。不正な値は既定値に戻す"""
        problems: List[str] = []
        level = DEFAULT_LOG_LEVEL
        overrides: Dict[str, LogLevel] = {}

        directives = [d.strip() for d in (raw or "").split(",") if d.strip()]
        for directive in directives:
            if "=" in directive:
                name, _, level_name = directive.partition("=")
                name = name.strip()
                parsed = parse_log_level(level_name)
                if not name or parsed is None:
                    problems.append(f"{LOG_LEVEL_ENV}: ignored log directive {directive!r}")
                    continue
                overrides[name] = parsed
            else:
                parsed = parse_log_level(directive)
                if parsed is None:
                    problems.append(
                        f"{LOG_LEVEL_ENV}: unrecognized log level {directive!r}, using {DEFAULT_LOG_LEVEL.label}"
                    )
                    continue
                level = parsed

        use_json = False
        if log_format:
            normalized = log_format.strip().lower()
            if normalized == "json":
                use_json = True
            elif normalized != "text":
                problems.append(f"{LOG_FORMAT_ENV}: unrecognized log format {log_format!r}, using text")

        return cls(
            level=level,
            overrides=overrides,
            use_json=use_json,
            raw=raw,
            problems=tuple(problems),
        )

    def describe(self) -> str:
        parts = [self.level.label]
        parts.extend(f"{name}={lvl.label}" for name, lvl in sorted(self.overrides.items()))
        return ",".join(parts)


class HumanReadableFormatter(logging.Formatter):
    """コンテナのログ収集向けの1行テキスト形式"""

    SHORT_NAMES = {"WARNING": "WARN", "CRITICAL": "ERROR"}

    def format(self, record: logging.LogRecord) -> str:
        levelname = self.SHORT_NAMES.get(record.levelname, record.levelname)
        message = (
            f"{self.formatTime(record, self.datefmt)} {levelname:<5} "
            f"[{record.name}] {record.getMessage()}"
        )
        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"
        return message


class StructuredFormatter(logging.Formatter):
    """1行1 JSON オブジェクト形式"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


class LoggingSink:
    """プロセス全体のログ出力先

    明示的に生成して各コンポーネントに渡す。configure() は最初の一回だけ有効。
    """

    def __init__(
        self,
        settings: LogSettings,
        stream: Optional[IO[str]] = None,
        root_name: str = ROOT_LOGGER_NAME,
        library_loggers: Tuple[str, ...] = LIBRARY_LOGGERS,
    ):
        self.settings = settings
        self.root_name = root_name
        self.library_loggers = library_loggers
        self._stream = stream
        self._handler: Optional[logging.Handler] = None
        self._configured_loggers: List[logging.Logger] = []

    @property
    def configured(self) -> bool:
        return self._handler is not None

    def configure(self) -> bool:
        """ハンドラとレベルを設定する。二回目以降は何もせず False を返す"""
        root = self.get_logger()
        owner = getattr(root, SINK_MARKER, None)
        if self._handler is not None or owner is not None:
            kept = (owner or self).settings.describe()
            root.debug("Logging sink already configured; keeping %s", kept)
            return False

        handler = logging.StreamHandler(self._stream if self._stream is not None else sys.stderr)
        if self.settings.use_json:
            handler.setFormatter(StructuredFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
        else:
            handler.setFormatter(HumanReadableFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
        self._handler = handler

        for name in (self.root_name,) + tuple(self.library_loggers):
            logger = logging.getLogger(name)
            logger.setLevel(self.settings.overrides.get(name, self.settings.level).value)
            logger.addHandler(handler)
            logger.propagate = False
            self._configured_loggers.append(logger)

        # 個別指定されたロガー（glennbot.actions や discord.gateway など）
        for name, level in self.settings.overrides.items():
            if name in (self.root_name,) + tuple(self.library_loggers):
                continue
            logger = logging.getLogger(name)
            logger.setLevel(level.value)
            if not self._is_covered(name):
                logger.addHandler(handler)
                logger.propagate = False
            self._configured_loggers.append(logger)

        setattr(root, SINK_MARKER, self)
        for problem in self.settings.problems:
            root.warning("⚠️ %s", problem)
        return True

    def _is_covered(self, name: str) -> bool:
        """既にハンドラ付きのロガー配下かどうか"""
        for parent in (self.root_name,) + tuple(self.library_loggers):
            if name.startswith(parent + "."):
                return True
        return False

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        """glennbot 配下のロガーを返す"""
        if not name:
            return logging.getLogger(self.root_name)
        if name == self.root_name or name.startswith(self.root_name + "."):
            return logging.getLogger(name)
        return logging.getLogger(f"{self.root_name}.{name}")

    def close(self) -> None:
        """ハンドラを外す（テストやプロセス終了時用）"""
        if self._handler is None:
            return
        for logger in self._configured_loggers:
            logger.removeHandler(self._handler)
        self._handler.flush()
        self._configured_loggers.clear()
        root = self.get_logger()
        if getattr(root, SINK_MARKER, None) is self:
            delattr(root, SINK_MARKER)
