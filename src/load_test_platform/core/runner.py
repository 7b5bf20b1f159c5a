import random
from typing import Any, Mapping, Optional

from load_test_platform.config.logger import logger
from load_test_platform.core.cancel import CancelToken
from load_test_platform.core.metrics import MetricsAggregator
from load_test_platform.http_client.client import RequestExecutor
from load_test_platform.models.virtual_user import VirtualUser
from load_test_platform.scenarios.model import ScenarioConfig, ThinkTime


class ScenarioRunner:
    """
    场景执行器 - 按声明顺序执行一次迭代的全部步骤

    单个请求失败不会中止迭代；只有模板等配置错误会向上抛出。
    """

    def __init__(
        self,
        scenario: ScenarioConfig,
        executor: RequestExecutor,
        aggregator: MetricsAggregator,
        variables: Optional[Mapping[str, Any]] = None,
    ):
        self.scenario = scenario
        self.executor = executor
        self.aggregator = aggregator
        self.variables = dict(variables or {})

    async def run_iteration(self, user: VirtualUser, cancel_token: CancelToken) -> bool:
        """
        执行一次迭代

        Returns:
            True 表示全部步骤执行完，False 表示被取消打断
        """
        last_index = len(self.scenario.steps) - 1

        for step_index, step in enumerate(self.scenario.steps):
            # 步骤之间检查取消信号
            if cancel_token.cancelled:
                logger.debug(
                    "Iteration interrupted",
                    vu=user.id,
                    iteration=user.iteration,
                    next_step=step.name,
                )
                return False

            outcome = await self.executor.execute(
                step,
                vu_id=user.id,
                iteration=user.iteration,
                variables=self.variables,
                cancel_token=cancel_token,
            )
            self.aggregator.record(outcome)

            if not step.think_time.is_zero:
                slept = await cancel_token.sleep(self._pick(step.think_time))
                if not slept and step_index < last_index:
                    return False

        return True

    @staticmethod
    def _pick(think_time: ThinkTime) -> float:
        if think_time.min == think_time.max:
            return think_time.max
        return random.uniform(think_time.min, think_time.max)
