import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from load_test_platform.config.logger import logger
from load_test_platform.core.metrics import MetricsSnapshot, latency_summary
from load_test_platform.core.scheduler import SchedulerResult
from load_test_platform.core.thresholds import ThresholdVerdict
from load_test_platform.reporter.md_renderer import render_md
from load_test_platform.scenarios.model import RunConfig
from load_test_platform.storage.json_writer import JSONResultWriter


def round_s(v: Optional[float], ndigits: int = 3) -> Optional[float]:
    if v is None:
        return None
    return round(float(v), ndigits)


def _round_summary(summary: Dict[str, Optional[float]]) -> Dict[str, Optional[float]]:
    return {k: round_s(v) for k, v in summary.items()}


class ReportWriter:
    """汇总报告：构建、保存（JSON / Markdown）"""

    def build(
        self,
        run_id: str,
        config: RunConfig,
        snapshot: MetricsSnapshot,
        verdict: ThresholdVerdict,
        scheduler_result: SchedulerResult,
    ) -> Dict[str, Any]:
        options = config.options
        passes, fails = snapshot.check_totals()
        total_requests = snapshot.total_requests

        report: Dict[str, Any] = {
            "run_id": run_id,
            "scenario": config.scenario.name,
            "source": config.source,
            "test_time": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            "options": {
                "vus": options.vus,
                "duration_s": options.duration,
                "iterations": options.iterations,
                "request_timeout_s": options.request_timeout,
                "grace_timeout_s": options.grace_timeout,
            },
            "duration_s": round_s(snapshot.duration_s),
            "stop_reason": scheduler_result.stop_reason,
            "cancelled": scheduler_result.cancelled,
            "forced_stops": scheduler_result.forced_stops,
            "iterations": {
                "completed": snapshot.iterations,
                "interrupted": snapshot.interrupted_iterations,
                "per_vu": {str(k): v for k, v in scheduler_result.iterations.items()},
            },
            "requests": {
                "total": total_requests,
                "failed": snapshot.total_failed,
                "failure_rate": round_s(snapshot.stat("http_req_failed", "rate"), 4),
                "rate_per_s": round_s(snapshot.stat("http_reqs", "rate"), 2),
            },
            "latency_ms": _round_summary(latency_summary(snapshot.latencies)),
            "checks": {
                "passes": passes,
                "fails": fails,
                "rate": round_s(snapshot.stat("checks", "rate"), 4),
            },
            "steps": [],
            "thresholds": [
                {
                    "name": r.threshold.name,
                    "expression": r.threshold.expression,
                    "observed": round_s(r.observed, 4),
                    "passed": r.passed,
                }
                for r in verdict.results
            ],
            "passed": verdict.passed,
            "violations": list(verdict.violations),
            "errors": {
                "count": snapshot.error_count,
                "samples": list(snapshot.errors),
            },
        }

        for step_config in config.scenario.steps:
            step = snapshot.steps.get(step_config.name)
            if step is None:
                continue
            report["steps"].append({
                "name": step.name,
                "method": step_config.method,
                "requests": step.requests,
                "failed": step.failed,
                "failure_rate": round_s(step.failure_rate, 4),
                "latency_ms": _round_summary(latency_summary(step.latencies)),
                "status_codes": dict(sorted(step.status_codes.items())),
                "checks": [
                    {
                        "name": check.name,
                        "passes": step.check_passes.get(check.name, 0),
                        "fails": step.check_fails.get(check.name, 0),
                    }
                    for check in step_config.checks
                ],
            })

        return report

    def write(
        self,
        report: Dict[str, Any],
        output_dir: Path,
        formats: Iterable[str] = ("json",),
    ) -> Dict[str, str]:
        """按格式保存报告，返回 {格式: 文件路径}"""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        scenario = re.sub(r"[^\w.-]+", "_", report["scenario"])
        base_name = f"load_test_report_{scenario}_{timestamp}"

        files: Dict[str, str] = {}
        for fmt in formats:
            if fmt == "json":
                path = JSONResultWriter(output_dir).write(base_name, report)
            elif fmt == "md":
                path = output_dir / f"{base_name}.md"
                render_md(report, path)
            else:
                raise ValueError(f"Unsupported report format: {fmt}")
            files[fmt] = str(path)
            logger.info("Report written", format=fmt, path=str(path))
        return files
