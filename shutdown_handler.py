# -*- coding: utf-8 -*-
"""
終了処理ハンドラ
SIGTERM / SIGINT を受けたら猶予時間内に後始末を行い、終了コードを決める
"""

import asyncio
import logging
import signal
from enum import IntEnum
from typing import Awaitable, Callable, List, Optional, Tuple


class ExitCode(IntEnum):
    """プロセス終了コード"""
    OK = 0
    RUNTIME_FAILURE = 1
    CONFIG_ERROR = 2
    STARTUP_FAILURE = 3


DEFAULT_SIGNALS: Tuple[signal.Signals, ...] = (signal.SIGTERM, signal.SIGINT)


class PendingSignals:
    """イベントループ開始前に届いたシグナルを記録する

    起動処理中に SIGTERM / SIGINT で殺されないよう、main() の先頭で入れて
    ループ側のハンドラに引き継ぐ。
    """

    def __init__(self, signals: Tuple[signal.Signals, ...] = DEFAULT_SIGNALS):
        self.signals = signals
        self.received: Optional[str] = None
        self._previous = {}

    def install(self) -> None:
        for sig in self.signals:
            self._previous[sig] = signal.signal(sig, self._record)

    def uninstall(self) -> None:
        for sig, previous in self._previous.items():
            signal.signal(sig, previous)
        self._previous.clear()

    def _record(self, signum, frame) -> None:
        if self.received is None:
            self.received = signal.Signals(signum).name


class GracefulShutdownHandler:
    """シグナルを受けて後始末コールバックを LIFO で実行する"""

    def __init__(self, logger: logging.Logger, grace_seconds: float = 10.0):
        self.logger = logger
        self.grace_seconds = grace_seconds
        self.cleanup_callbacks: List[Callable[[], Awaitable[None]]] = []
        self.is_shutting_down = False
        self.received_signal: Optional[str] = None
        self._shutdown_event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._installed: List[signal.Signals] = []

    def register_cleanup(self, callback: Callable[[], Awaitable[None]]) -> None:
        """後始末コールバックを登録（逆順に実行される）"""
        self.cleanup_callbacks.append(callback)
        self.logger.debug("Registered cleanup callback: %s", getattr(callback, "__qualname__", callback))

    def install(self, signals: Tuple[signal.Signals, ...] = DEFAULT_SIGNALS) -> None:
        """実行中のイベントループにシグナルハンドラを登録"""
        self._loop = asyncio.get_running_loop()
        for sig in signals:
            self._loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            self._installed.append(sig)
        self.logger.debug("Signal handlers registered: %s", ", ".join(s.name for s in signals))

    def uninstall(self) -> None:
        if self._loop is None:
            return
        for sig in self._installed:
            self._loop.remove_signal_handler(sig)
        self._installed.clear()

    def request_shutdown(self, reason: str = "request") -> None:
        """終了要求（シグナルハンドラからも呼ばれる）"""
        if self.is_shutting_down:
            self.logger.warning("Shutdown already in progress, ignoring %s", reason)
            return
        self.is_shutting_down = True
        self.received_signal = reason
        self.logger.info("🛑 Received %s, initiating graceful shutdown (grace %.1fs)", reason, self.grace_seconds)
        self._shutdown_event.set()

    async def wait(self) -> None:
        await self._shutdown_event.wait()

    async def run_cleanup(self) -> bool:
        """全コールバックを猶予時間内で実行。全部間に合えば True"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.grace_seconds
        clean = True
        callbacks = list(reversed(self.cleanup_callbacks))
        self.logger.info("Executing %d cleanup callbacks", len(callbacks))

        for idx, callback in enumerate(callbacks, 1):
            name = getattr(callback, "__qualname__", repr(callback))
            remaining = max(0.0, deadline - loop.time())
            self.logger.debug("Executing cleanup %d/%d: %s", idx, len(callbacks), name)
            try:
                await asyncio.wait_for(callback(), timeout=remaining)
            except asyncio.TimeoutError:
                clean = False
                self.logger.error("Cleanup %s did not finish within the grace period", name)
            except Exception:
                clean = False
                self.logger.exception("Error in cleanup callback %s", name)
        self.cleanup_callbacks.clear()
        return clean


async def run_until_shutdown(service: Awaitable[None], handler: GracefulShutdownHandler) -> ExitCode:
    """サービスを動かし、終了要求かサービス終了のどちらか早い方で止める

    サービス側の例外は後始末の後で再送出する。
    """
    service_task = asyncio.ensure_future(service)
    waiter = asyncio.ensure_future(handler.wait())
    try:
        await asyncio.wait({service_task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()

    if not service_task.done():
        clean = await handler.run_cleanup()
        if not service_task.done():
            service_task.cancel()
        # キャンセル済みタスクの後片付け（例外はログだけ）
        results = await asyncio.gather(service_task, return_exceptions=True)
        if isinstance(results[0], Exception):
            handler.logger.debug("Service stopped with %r during shutdown", results[0])
        handler.logger.info("👋 Shutdown %s", "completed" if clean else "finished with errors")
        return ExitCode.OK if clean else ExitCode.RUNTIME_FAILURE

    # サービスが自分で止まった（正常終了 or 例外）
    error = service_task.exception() if not service_task.cancelled() else None
    clean = await handler.run_cleanup()
    if error is not None:
        raise error
    return ExitCode.OK if clean else ExitCode.RUNTIME_FAILURE
