"""
阈值解析与判定

支持两种写法：

- k6 风格: ``{"http_req_duration": ["p(95)<700"], "http_req_failed": ["rate<0.01"]}``
- 点号风格: ``{"http_req_duration.p95": "<700"}``

指标名可带步骤标签: ``http_req_duration{step:create post}``。
"""

import operator
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from load_test_platform.core.errors import ConfigError, ThresholdViolation
from load_test_platform.core.metrics import MetricsSnapshot, parse_percentile_stat
from load_test_platform.scenarios.model import Threshold

OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

METRIC_STATS: Dict[str, Tuple[str, ...]] = {
    "http_req_duration": ("avg", "min", "med", "max"),  # 另外支持 pN
    "http_req_failed": ("rate", "count"),
    "http_reqs": ("count", "rate"),
    "checks": ("rate", "passes", "fails"),
    "iterations": ("count", "rate"),
}

METRIC_KEY = re.compile(
    r"^(?P<metric>[a-z_]+)(?:\{(?P<tag>[^}]*)\})?(?:\.(?P<stat>[\w.()]+))?$"
)
EXPRESSION = re.compile(
    r"^\s*(?P<stat>[a-z]+(?:\(\s*\d+(?:\.\d+)?\s*\))?)?\s*"
    r"(?P<op><=|>=|==|!=|<|>)\s*(?P<limit>-?\d+(?:\.\d+)?)\s*$"
)
PERCENTILE_CALL = re.compile(r"^p\(\s*(\d+(?:\.\d+)?)\s*\)$")


def _normalize_stat(stat: str) -> str:
    """p(95) -> p95"""
    match = PERCENTILE_CALL.match(stat)
    if match:
        value = match.group(1)
        if value.endswith(".0"):
            value = value[:-2]
        return f"p{value}"
    return stat


def split_metric(metric_key: str) -> Tuple[str, Optional[str]]:
    """http_req_duration{step:create post} -> ("http_req_duration", "create post")"""
    match = METRIC_KEY.match(metric_key)
    if not match or match.group("stat"):
        return metric_key, None
    return match.group("metric"), _parse_tag(metric_key, match.group("tag"))


def _parse_tag(key: str, tag: Optional[str]) -> Optional[str]:
    if tag is None:
        return None
    name, _, value = tag.partition(":")
    if name.strip() != "step" or not value.strip():
        raise ConfigError(f"Threshold '{key}': only {{step:<name>}} tags are supported")
    return value.strip()


def _validate_stat(key: str, metric: str, stat: str) -> None:
    if metric not in METRIC_STATS:
        raise ConfigError(
            f"Threshold '{key}': unknown metric '{metric}' "
            f"(expected one of {', '.join(METRIC_STATS)})"
        )
    if metric == "http_req_duration" and parse_percentile_stat(stat) is not None:
        return
    if stat not in METRIC_STATS[metric]:
        raise ConfigError(f"Threshold '{key}': unsupported stat '{stat}' for {metric}")


def parse_threshold(key: str, expression: str) -> Threshold:
    """解析单个阈值表达式"""
    key_match = METRIC_KEY.match(key.strip())
    if not key_match:
        raise ConfigError(f"Invalid threshold metric name: '{key}'")

    expr_match = EXPRESSION.match(str(expression))
    if not expr_match:
        raise ConfigError(f"Invalid threshold expression for '{key}': '{expression}'")

    key_stat = key_match.group("stat")
    expr_stat = expr_match.group("stat")
    if key_stat and expr_stat:
        raise ConfigError(f"Threshold '{key}': stat given twice ('{key_stat}' and '{expr_stat}')")
    stat = _normalize_stat(key_stat or expr_stat or "")
    if not stat:
        raise ConfigError(f"Threshold '{key}': missing stat in '{expression}'")

    metric = key_match.group("metric")
    _validate_stat(key, metric, stat)
    tag = key_match.group("tag")
    step = _parse_tag(key, tag)

    metric_key = metric if step is None else f"{metric}{{step:{step}}}"
    return Threshold(
        name=f"{metric_key}.{stat}",
        metric=metric_key,
        stat=stat,
        operator=expr_match.group("op"),
        limit=float(expr_match.group("limit")),
        expression=str(expression).strip(),
    )


def parse_thresholds(mapping: Mapping[str, Any]) -> Tuple[Threshold, ...]:
    """解析配置里的 thresholds 段"""
    thresholds: List[Threshold] = []
    for key, expressions in (mapping or {}).items():
        if isinstance(expressions, str):
            expressions = [expressions]
        if not isinstance(expressions, (list, tuple)) or not expressions:
            raise ConfigError(f"Threshold '{key}' must be an expression or a list of expressions")
        for expression in expressions:
            thresholds.append(parse_threshold(key, expression))
    return tuple(thresholds)


@dataclass(frozen=True)
class ThresholdResult:
    threshold: Threshold
    observed: Optional[float]
    passed: bool


@dataclass(frozen=True)
class ThresholdVerdict:
    """阈值判定结果"""

    passed: bool
    violations: Tuple[str, ...]
    results: Tuple[ThresholdResult, ...]

    def raise_for_violations(self) -> None:
        if not self.passed:
            raise ThresholdViolation(self.violations)


class ThresholdEvaluator:
    """阈值判定 - 纯函数，不修改指标，同样输入得到同样输出"""

    def evaluate(self, snapshot: MetricsSnapshot, thresholds: Iterable[Threshold]) -> ThresholdVerdict:
        results = tuple(self._evaluate_one(snapshot, t) for t in thresholds)
        violations: List[str] = []
        for result in results:
            if not result.passed and result.threshold.name not in violations:
                violations.append(result.threshold.name)
        return ThresholdVerdict(
            passed=not violations,
            violations=tuple(violations),
            results=results,
        )

    @staticmethod
    def _evaluate_one(snapshot: MetricsSnapshot, threshold: Threshold) -> ThresholdResult:
        metric, step = split_metric(threshold.metric)
        observed = snapshot.stat(metric, threshold.stat, step=step)
        # 无数据视为未通过
        if observed is None:
            return ThresholdResult(threshold=threshold, observed=None, passed=False)
        passed = OPERATORS[threshold.operator](observed, threshold.limit)
        return ThresholdResult(threshold=threshold, observed=observed, passed=passed)
