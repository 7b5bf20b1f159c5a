import asyncio
import time
from typing import Optional

from load_test_platform.config.logger import logger
from load_test_platform.core.cancel import CancelToken
from load_test_platform.core.metrics import MetricsAggregator
from load_test_platform.core.runner import ScenarioRunner
from load_test_platform.core.state_machine import UserState
from load_test_platform.models.virtual_user import VirtualUser


class VirtualUserExecutor:
    """虚拟用户执行器 - 循环执行场景，直到满足停止条件"""

    def __init__(
        self,
        user: VirtualUser,
        runner: ScenarioRunner,
        aggregator: MetricsAggregator,
        cancel_token: CancelToken,
        deadline: Optional[float] = None,
        max_iterations: Optional[int] = None,
    ):
        self.user = user
        self.runner = runner
        self.aggregator = aggregator
        self.cancel_token = cancel_token
        self.deadline = deadline  # time.monotonic()
        self.max_iterations = max_iterations
        self.stop_reason: Optional[str] = None

    def check_stop_condition(self) -> Optional[str]:
        """返回停止原因，None 表示继续"""
        if self.cancel_token.cancelled:
            return "cancelled"
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return "duration"
        if self.max_iterations is not None and self.user.iteration >= self.max_iterations:
            return "iterations"
        return None

    async def run(self) -> int:
        """运行虚拟用户，返回已开始的迭代数"""
        self.user.state_machine.transition(UserState.RUNNING)
        logger.debug("Virtual user starting", vu=self.user.id)

        try:
            while True:
                self.stop_reason = self.check_stop_condition()
                if self.stop_reason:
                    break

                completed = await self.runner.run_iteration(self.user, self.cancel_token)
                self.aggregator.record_iteration(completed)
                self.user.iteration += 1

                # 让出事件循环，保证调度器的计时器能被处理
                await asyncio.sleep(0)
        finally:
            self.user.state_machine.transition(UserState.STOPPED)

        logger.debug(
            "Virtual user stopped",
            vu=self.user.id,
            iterations=self.user.iteration,
            reason=self.stop_reason,
        )
        return self.user.iteration
