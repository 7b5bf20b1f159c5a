import asyncio
import time
from typing import Optional

from load_test_platform.config.logger import logger

# 截断后的最小超时，避免传给 httpx 非正数
MIN_TIMEOUT = 0.001


class CancelToken:
    """
    全局取消信号

    在步骤之间、迭代之间检查；进入排空阶段后，
    新发起的请求超时会被截断到排空截止时间。
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None
        self.drain_deadline: Optional[float] = None  # time.monotonic()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled", grace: Optional[float] = None) -> None:
        """发出取消信号，重复调用只保留第一次的原因"""
        if self._event.is_set():
            return
        self.reason = reason
        if grace is not None:
            self.begin_drain(grace)
        self._event.set()
        logger.info("Cancellation requested", reason=reason)

    def begin_drain(self, grace: float) -> None:
        if self.drain_deadline is None:
            self.drain_deadline = time.monotonic() + grace

    def remaining_grace(self) -> Optional[float]:
        if self.drain_deadline is None:
            return None
        return max(self.drain_deadline - time.monotonic(), 0.0)

    def clamp_timeout(self, timeout: float) -> float:
        remaining = self.remaining_grace()
        if remaining is None:
            return timeout
        return max(min(timeout, remaining), MIN_TIMEOUT)

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """
        可被取消打断的等待

        Returns:
            True 表示睡满，False 表示被取消提前唤醒
        """
        if self._event.is_set():
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
            return False
        except asyncio.TimeoutError:
            return True
