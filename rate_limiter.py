# -*- coding: utf-8 -*-
"""
レート制限管理システム
Bot が出す Discord 操作（リアクション、メッセージ送信、Webhook）の間隔を統一管理

Discord 側の 429 応答は discord.py が処理するので、ここでは自前のバーストを均すだけ
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from utils import safe_log


@dataclass
class RateLimitConfig:
    """レート制限設定"""
    service_name: str
    requests_per_minute: int = 60
    cooldown_seconds: float = 0.0  # 最小リクエスト間隔


@dataclass
class RateLimitResult:
    """レート制限チェック結果"""
    allowed: bool
    wait_time: float = 0.0
    message: str = ""


class RateLimitBucket:
    """レート制限バケット"""

    def __init__(self, config: RateLimitConfig):
        self.config = config
        self.minute_requests: deque = deque()
        self.last_request_time: Optional[float] = None
        self.total_requests = 0
        self.delayed_requests = 0

    def check_rate_limit(self, current_time: float) -> RateLimitResult:
        """レート制限をチェック"""
        self._cleanup_old_requests(current_time)

        # クールダウンチェック
        if self.last_request_time is not None:
            elapsed = current_time - self.last_request_time
            if elapsed < self.config.cooldown_seconds:
                wait_time = self.config.cooldown_seconds - elapsed
                return RateLimitResult(
                    allowed=False,
                    wait_time=wait_time,
                    message=f"cooldown: wait {wait_time:.2f}s"
                )

        # 分単位制限チェック
        if len(self.minute_requests) >= self.config.requests_per_minute:
            wait_time = 60 - (current_time - self.minute_requests[0])
            return RateLimitResult(
                allowed=False,
                wait_time=wait_time,
                message=f"per-minute limit: wait {wait_time:.1f}s"
            )

        return RateLimitResult(allowed=True)

    def record_request(self, current_time: float) -> None:
        """リクエストを記録"""
        self.minute_requests.append(current_time)
        self.last_request_time = current_time
        self.total_requests += 1

    def _cleanup_old_requests(self, current_time: float) -> None:
        """1分より古いリクエスト記録を削除"""
        while self.minute_requests and current_time - self.minute_requests[0] >= 60:
            self.minute_requests.popleft()

    def get_stats(self) -> Dict[str, object]:
        """統計情報を取得"""
        return {
            "service_name": self.config.service_name,
            "total_requests": self.total_requests,
            "delayed_requests": self.delayed_requests,
            "current_usage": f"{len(self.minute_requests)}/{self.config.requests_per_minute}",
        }


def default_rate_limits(reaction_cooldown: float = 0.5) -> Dict[str, RateLimitConfig]:
    """Bot の操作ごとの既定値"""
    return {
        "reaction": RateLimitConfig(
            service_name="reaction",
            requests_per_minute=60,
            cooldown_seconds=reaction_cooldown
        ),
        "message": RateLimitConfig(
            service_name="message",
            requests_per_minute=60,
            cooldown_seconds=0.0
        ),
        "webhook": RateLimitConfig(
            service_name="webhook",
            requests_per_minute=120,
            cooldown_seconds=0.0
        ),
    }


class ActionRateLimiter:
    """操作ごとのバケットを管理"""

    def __init__(
        self,
        configs: Optional[Dict[str, RateLimitConfig]] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.default_configs = configs if configs is not None else default_rate_limits()
        self.buckets: Dict[str, RateLimitBucket] = {}
        self.locks: Dict[str, asyncio.Lock] = {}
        self.logger = logger or logging.getLogger("glennbot.rate_limiter")
        self._clock = clock
        self._sleep = sleep

    def get_bucket(self, service_name: str) -> RateLimitBucket:
        """レート制限バケットを取得"""
        if service_name not in self.buckets:
            config = self.default_configs.get(service_name, RateLimitConfig(service_name=service_name))
            self.buckets[service_name] = RateLimitBucket(config)
        return self.buckets[service_name]

    async def acquire(self, service_name: str) -> None:
        """スロットが空くまで待ってから記録する"""
        # 同じ操作は一列に並べる
        lock = self.locks.setdefault(service_name, asyncio.Lock())
        async with lock:
            bucket = self.get_bucket(service_name)
            while True:
                result = bucket.check_rate_limit(self._clock())
                if result.allowed:
                    bucket.record_request(self._clock())
                    return
                bucket.delayed_requests += 1
                safe_log(self.logger, "🟡 rate limit wait: ", f"{service_name} - {result.message}", logging.DEBUG)
                await self._sleep(result.wait_time)

    def get_all_stats(self) -> Dict[str, Dict]:
        """全操作の統計を取得"""
        return {name: bucket.get_stats() for name, bucket in self.buckets.items()}
