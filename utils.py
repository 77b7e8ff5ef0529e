import json
import logging
import re
from typing import Any, Optional, Pattern

# --- ログ ---

def safe_log(logger: logging.Logger, prefix: str, obj: Any, level: int = logging.INFO):
    if not logger.isEnabledFor(level):
        return
    try:
        s = json.dumps(obj, ensure_ascii=False, indent=2) if isinstance(obj, (dict, list, tuple)) else str(obj)
        logger.log(level, "%s%s", prefix, s[:2000])
    except Exception as e:
        logger.log(level, "%s(log skipped: %s)", prefix, e)

# --- 正規表現 ---

def compile_pattern(pattern: Optional[str], field_name: str) -> Optional[Pattern[str]]:
    """フィルタ用の正規表現をコンパイル（不正なら ValueError）"""
    if pattern is None:
        return None
    if not isinstance(pattern, str):
        raise ValueError(f"{field_name} must be a string regex, got {type(pattern).__name__}")
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ValueError(f"invalid regex for {field_name}: {pattern!r} ({e})") from e

def pattern_matches(pattern: Optional[Pattern[str]], value: Optional[str]) -> bool:
    """パターン未指定なら常に True、値が無ければ False"""
    if pattern is None:
        return True
    if value is None:
        return False
    return pattern.search(value) is not None

# --- Discord ID ---

def to_snowflake(value: Any, field_name: str) -> int:
    """文字列/数値の Discord ID を int に変換"""
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be a Discord id")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{field_name} must be a Discord id, got {value!r}") from e
