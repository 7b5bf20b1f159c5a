import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from load_test_platform.config.logger import logger
from load_test_platform.config.settings import settings
from load_test_platform.core.cancel import CancelToken
from load_test_platform.core.checks import CheckEvaluator
from load_test_platform.core.metrics import MetricsAggregator, MetricsSnapshot
from load_test_platform.core.runner import ScenarioRunner
from load_test_platform.core.scheduler import SchedulerResult, VirtualUserScheduler
from load_test_platform.core.thresholds import ThresholdEvaluator, ThresholdVerdict
from load_test_platform.http_client.client import RequestExecutor
from load_test_platform.reporter.report_writer import ReportWriter
from load_test_platform.scenarios.model import RunConfig


@dataclass
class RunResult:
    """一次完整运行的结果"""

    run_id: str
    config: RunConfig
    snapshot: MetricsSnapshot
    verdict: ThresholdVerdict
    scheduler_result: SchedulerResult
    report: Dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.verdict.passed


class TestOrchestrator:
    """测试编排器 - 管理整个测试执行过程"""

    __test__ = False  # 不是 pytest 测试类

    def __init__(
        self,
        config: RunConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        report_writer: Optional[ReportWriter] = None,
    ):
        self.config = config
        self.transport = transport
        self.report_writer = report_writer or ReportWriter()
        self.cancel_token = CancelToken()
        self.threshold_evaluator = ThresholdEvaluator()

    def cancel(self, reason: str = "cancelled") -> None:
        """取消测试（已发出的请求在宽限期内完成）"""
        self.cancel_token.cancel(reason, grace=self.config.options.grace_timeout)

    async def run(self) -> RunResult:
        options = self.config.options
        scenario = self.config.scenario
        run_id = str(uuid.uuid4())

        logger.info(
            "Test started",
            run_id=run_id,
            scenario=scenario.name,
            vus=options.vus,
            steps=len(scenario.steps),
        )

        # 1. 组装组件
        aggregator = MetricsAggregator(step_names=[s.name for s in scenario.steps])
        max_connections = max(settings.MAX_CONNECTIONS, options.vus * 2)

        async with RequestExecutor.create_client(max_connections, transport=self.transport) as client:
            executor = RequestExecutor(
                client,
                check_evaluator=CheckEvaluator(),
                default_timeout=options.request_timeout,
            )
            runner = ScenarioRunner(scenario, executor, aggregator, variables=options.vars)
            scheduler = VirtualUserScheduler(options, runner, aggregator, self.cancel_token)

            # 2. 运行（全部 worker 停止后才返回）
            scheduler_result = await scheduler.run()

        # 3. 聚合与阈值判定
        snapshot = aggregator.snapshot(scheduler_result.elapsed_s)
        verdict = self.threshold_evaluator.evaluate(snapshot, options.thresholds)

        report = self.report_writer.build(run_id, self.config, snapshot, verdict, scheduler_result)

        logger.info(
            "Test completed",
            run_id=run_id,
            requests=snapshot.total_requests,
            failed=snapshot.total_failed,
            passed=verdict.passed,
            violations=list(verdict.violations),
        )

        return RunResult(
            run_id=run_id,
            config=self.config,
            snapshot=snapshot,
            verdict=verdict,
            scheduler_result=scheduler_result,
            report=report,
        )
