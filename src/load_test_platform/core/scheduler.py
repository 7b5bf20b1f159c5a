import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from load_test_platform.config.logger import logger
from load_test_platform.core.cancel import CancelToken
from load_test_platform.core.errors import ConfigError, LoadTestError, WorkerCrashedError
from load_test_platform.core.executor import VirtualUserExecutor
from load_test_platform.core.metrics import MetricsAggregator
from load_test_platform.core.runner import ScenarioRunner
from load_test_platform.core.state_machine import RunState, StateMachine, RUN_TRANSITIONS
from load_test_platform.models.virtual_user import VirtualUser
from load_test_platform.scenarios.model import RunOptions


@dataclass
class SchedulerResult:
    """调度结果"""

    iterations: Dict[int, int] = field(default_factory=dict)  # vu_id -> 迭代数
    stop_reason: str = "completed"  # completed / duration / 取消原因
    cancelled: bool = False
    forced_stops: int = 0  # 宽限期后被强制取消的虚拟用户数
    elapsed_s: float = 0.0

    @property
    def total_iterations(self) -> int:
        return sum(self.iterations.values())


class VirtualUserScheduler:
    """
    虚拟用户调度器

    在 t=0 同时启动 vus 个 worker（不做爬坡）。全部 worker 停止、
    时长到达或收到取消信号后进入 DRAINING，宽限期结束仍未停止的
    worker 会被强制取消，然后进入 TERMINATED。
    worker 抛出配置错误或意外异常时整次运行会被取消，排空后再抛出。
    """

    def __init__(
        self,
        options: RunOptions,
        runner: ScenarioRunner,
        aggregator: MetricsAggregator,
        cancel_token: Optional[CancelToken] = None,
    ):
        self.options = options
        self.runner = runner
        self.aggregator = aggregator
        self.cancel_token = cancel_token or CancelToken()

        self.state_machine = StateMachine(RunState.IDLE, RUN_TRANSITIONS)
        self.users: List[VirtualUser] = []
        self._fatal_error: Optional[LoadTestError] = None

    @property
    def state(self) -> RunState:
        return self.state_machine.get_current_state()

    def cancel(self, reason: str = "cancelled") -> None:
        """外部取消（如 SIGINT）"""
        self.cancel_token.cancel(reason, grace=self.options.grace_timeout)

    async def run(self) -> SchedulerResult:
        if not self.state_machine.transition(RunState.RUNNING):
            raise LoadTestError(f"Scheduler cannot start from state {self.state.value}")

        options = self.options
        started = time.monotonic()
        deadline = started + options.duration if options.duration else None

        # 1. 创建虚拟用户并同时启动
        self.users = [VirtualUser(id=i) for i in range(1, options.vus + 1)]
        tasks: List[asyncio.Task] = []
        for user in self.users:
            executor = VirtualUserExecutor(
                user=user,
                runner=self.runner,
                aggregator=self.aggregator,
                cancel_token=self.cancel_token,
                deadline=deadline,
                max_iterations=options.iterations,
            )
            task = asyncio.create_task(executor.run(), name=f"vu-{user.id}")
            task.add_done_callback(self._on_worker_done)
            tasks.append(task)

        logger.info(
            "Run started",
            vus=options.vus,
            duration=options.duration,
            iterations=options.iterations,
        )

        # 2. 等待：全部完成 / 时长到达 / 取消
        workers_done = asyncio.ensure_future(asyncio.wait(tasks))
        cancelled = asyncio.ensure_future(self.cancel_token.wait())
        timeout = max(deadline - time.monotonic(), 0.0) if deadline is not None else None
        await asyncio.wait({workers_done, cancelled}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)

        externally_cancelled = self.cancel_token.cancelled
        if workers_done.done():
            stop_reason = "completed"
        elif externally_cancelled:
            stop_reason = self.cancel_token.reason or "cancelled"
        else:
            stop_reason = "duration"

        # 3. 排空
        self.state_machine.transition(RunState.DRAINING)
        forced_stops = 0
        if not workers_done.done():
            self.cancel_token.begin_drain(options.grace_timeout)
            logger.info(
                "Draining virtual users",
                reason=stop_reason,
                grace_timeout=options.grace_timeout,
            )
            await asyncio.wait({workers_done}, timeout=self.cancel_token.remaining_grace())

            if not workers_done.done():
                pending = [t for t in tasks if not t.done()]
                forced_stops = len(pending)
                logger.warning("Grace timeout reached, stopping virtual users", pending=forced_stops)
                self.cancel_token.cancel("grace timeout")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        await workers_done
        cancelled.cancel()
        await asyncio.gather(cancelled, return_exceptions=True)

        self.state_machine.transition(RunState.TERMINATED)

        result = SchedulerResult(
            iterations={user.id: user.iteration for user in self.users},
            stop_reason=stop_reason,
            cancelled=externally_cancelled,
            forced_stops=forced_stops,
            elapsed_s=time.monotonic() - started,
        )
        logger.info(
            "Run finished",
            reason=stop_reason,
            iterations=result.total_iterations,
            forced_stops=forced_stops,
            elapsed_s=round(result.elapsed_s, 3),
        )

        if self._fatal_error is not None:
            raise self._fatal_error
        return result

    def _on_worker_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        if isinstance(error, ConfigError):
            logger.error("Configuration error in virtual user", task=task.get_name(), error=str(error))
            if self._fatal_error is None:
                self._fatal_error = error
            self.cancel_token.cancel("config error", grace=self.options.grace_timeout)
        else:
            logger.error(
                "Virtual user crashed",
                task=task.get_name(),
                error=f"{type(error).__name__}: {error}",
            )
            # 样本已不完整，不能再按阈值判定
            if self._fatal_error is None:
                crash = WorkerCrashedError(f"{task.get_name()} crashed: {type(error).__name__}: {error}")
                crash.__cause__ = error
                self._fatal_error = crash
            self.cancel_token.cancel("worker crashed", grace=self.options.grace_timeout)
