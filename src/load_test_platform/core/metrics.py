import math
import statistics
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from load_test_platform.config.settings import settings
from load_test_platform.models.outcome import RequestOutcome

REPORT_PERCENTILES = (50, 90, 95, 99)


def percentile(sorted_values: Sequence[float], p: float) -> Optional[float]:
    """最近秩（nearest-rank）百分位数，输入必须已排序"""
    if not sorted_values:
        return None
    if p <= 0:
        return sorted_values[0]
    n = len(sorted_values)
    # p 按十进制字面值做有理数运算
    rank = math.ceil(Fraction(str(p)) * n / 100)
    rank = min(max(rank, 1), n)
    return sorted_values[rank - 1]


def parse_percentile_stat(stat: str) -> Optional[float]:
    """p95 / p99.9 -> 95.0 / 99.9，不是百分位数时返回 None"""
    if not stat.startswith("p"):
        return None
    try:
        value = float(stat[1:])
    except ValueError:
        return None
    if 0 <= value <= 100:
        return value
    return None


def latency_summary(sorted_values: Sequence[float]) -> Dict[str, Optional[float]]:
    """响应时间统计（毫秒）"""
    if not sorted_values:
        summary: Dict[str, Optional[float]] = {"avg": None, "min": None, "med": None, "max": None}
        summary.update({f"p{p}": None for p in REPORT_PERCENTILES})
        return summary

    summary = {
        "avg": statistics.mean(sorted_values),
        "min": sorted_values[0],
        "med": statistics.median(sorted_values),
        "max": sorted_values[-1],
    }
    for p in REPORT_PERCENTILES:
        summary[f"p{p}"] = percentile(sorted_values, p)
    return summary


@dataclass
class _StepStats:
    """单个步骤的累计数据（只在锁内修改）"""
    latencies: List[float] = field(default_factory=list)
    requests: int = 0
    failed: int = 0
    status_codes: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    check_passes: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    check_fails: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass(frozen=True)
class StepSnapshot:
    name: str
    latencies: Tuple[float, ...]  # 已排序
    requests: int
    failed: int
    status_codes: Dict[str, int]
    check_passes: Dict[str, int]
    check_fails: Dict[str, int]

    @property
    def failure_rate(self) -> float:
        return self.failed / self.requests if self.requests else 0.0

    @property
    def check_names(self) -> List[str]:
        names = list(self.check_passes)
        names += [n for n in self.check_fails if n not in self.check_passes]
        return names


@dataclass(frozen=True)
class MetricsSnapshot:
    """运行结束后的聚合指标，只读"""

    duration_s: float
    steps: Dict[str, StepSnapshot]
    latencies: Tuple[float, ...]  # 全部步骤，已排序
    iterations: int
    interrupted_iterations: int
    errors: Tuple[str, ...]
    error_count: int

    @property
    def total_requests(self) -> int:
        return sum(s.requests for s in self.steps.values())

    @property
    def total_failed(self) -> int:
        return sum(s.failed for s in self.steps.values())

    def _scope(self, step: Optional[str]) -> List[StepSnapshot]:
        if step is None:
            return list(self.steps.values())
        return [self.steps[step]] if step in self.steps else []

    def check_totals(self, step: Optional[str] = None) -> Tuple[int, int]:
        passes = sum(sum(s.check_passes.values()) for s in self._scope(step))
        fails = sum(sum(s.check_fails.values()) for s in self._scope(step))
        return passes, fails

    def stat(self, metric: str, stat: str, step: Optional[str] = None) -> Optional[float]:
        """
        按指标名取值，无数据时返回 None

        metric: http_req_duration / http_req_failed / http_reqs / checks / iterations
        """
        scope = self._scope(step)

        if metric == "http_req_duration":
            if step is None:
                values: Sequence[float] = self.latencies
            else:
                values = scope[0].latencies if scope else ()
            p = parse_percentile_stat(stat)
            if p is not None:
                return percentile(values, p)
            return latency_summary(values).get(stat)

        if metric == "http_req_failed":
            requests = sum(s.requests for s in scope)
            failed = sum(s.failed for s in scope)
            if stat == "count":
                return float(failed)
            if stat == "rate":
                return failed / requests if requests else 0.0

        if metric == "http_reqs":
            requests = sum(s.requests for s in scope)
            if stat == "count":
                return float(requests)
            if stat == "rate":
                return requests / self.duration_s if self.duration_s > 0 else None

        if metric == "checks":
            passes, fails = self.check_totals(step)
            if stat == "passes":
                return float(passes)
            if stat == "fails":
                return float(fails)
            if stat == "rate":
                total = passes + fails
                return passes / total if total else None

        if metric == "iterations":
            if stat == "count":
                return float(self.iterations)
            if stat == "rate":
                return self.iterations / self.duration_s if self.duration_s > 0 else None

        return None


class MetricsAggregator:
    """
    指标聚合器

    线程安全：任意 worker 随时 record()，不丢失、不重复。
    样本只追加，不修改；百分位数在运行结束后基于完整样本计算。
    """

    def __init__(
        self,
        step_names: Iterable[str] = (),
        max_error_samples: int = settings.MAX_ERROR_SAMPLES,
    ):
        self._lock = threading.Lock()
        self._steps: Dict[str, _StepStats] = {name: _StepStats() for name in step_names}
        self._errors: List[str] = []
        self._error_count = 0
        self._iterations = 0
        self._interrupted_iterations = 0
        self.max_error_samples = max_error_samples

    def record(self, outcome: RequestOutcome) -> None:
        """追加一次请求结果"""
        with self._lock:
            stats = self._steps.get(outcome.step)
            if stats is None:
                stats = self._steps[outcome.step] = _StepStats()

            stats.latencies.append(outcome.latency_ms)
            stats.requests += 1
            if outcome.failed:
                stats.failed += 1
            stats.status_codes[str(outcome.status) if outcome.status is not None else "error"] += 1

            for name, passed in outcome.checks.items():
                if passed:
                    stats.check_passes[name] += 1
                else:
                    stats.check_fails[name] += 1

            if outcome.error:
                self._error_count += 1
                if len(self._errors) < self.max_error_samples:
                    self._errors.append(
                        f"[{outcome.step}] vu={outcome.vu_id} iter={outcome.iteration}: {outcome.error}"
                    )

    def record_iteration(self, completed: bool = True) -> None:
        """记录一次迭代结束，completed=False 表示被取消打断"""
        with self._lock:
            if completed:
                self._iterations += 1
            else:
                self._interrupted_iterations += 1

    def request_count(self, step: Optional[str] = None) -> int:
        with self._lock:
            if step is not None:
                stats = self._steps.get(step)
                return stats.requests if stats else 0
            return sum(s.requests for s in self._steps.values())

    def snapshot(self, duration_s: float) -> MetricsSnapshot:
        """生成只读快照（复制数据，不影响已记录的样本）"""
        with self._lock:
            steps = {
                name: StepSnapshot(
                    name=name,
                    latencies=tuple(sorted(s.latencies)),
                    requests=s.requests,
                    failed=s.failed,
                    status_codes=dict(s.status_codes),
                    check_passes=dict(s.check_passes),
                    check_fails=dict(s.check_fails),
                )
                for name, s in self._steps.items()
            }
            all_latencies = tuple(sorted(v for s in self._steps.values() for v in s.latencies))
            return MetricsSnapshot(
                duration_s=duration_s,
                steps=steps,
                latencies=all_latencies,
                iterations=self._iterations,
                interrupted_iterations=self._interrupted_iterations,
                errors=tuple(self._errors),
                error_count=self._error_count,
            )
