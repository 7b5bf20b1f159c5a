from typing import Iterable, Tuple


class LoadTestError(Exception):
    """压测平台异常基类"""


class ConfigError(LoadTestError):
    """配置错误 - 致命，调度开始前（或运行中发现时）立即中止"""


class TemplateError(ConfigError):
    """请求模板渲染失败，如引用了未定义的变量"""


class RequestError(LoadTestError):
    """单次请求失败（连接拒绝、超时、DNS 等），只作为结果数据记录"""


class CheckEvaluationError(LoadTestError):
    """单个检查项求值失败，记为检查不通过"""


class ThresholdViolation(LoadTestError):
    """运行结束时存在未通过的阈值"""

    def __init__(self, violations: Iterable[str]):
        self.violations: Tuple[str, ...] = tuple(violations)
        super().__init__(f"Thresholds violated: {', '.join(self.violations)}")


class WorkerCrashedError(LoadTestError):
    """虚拟用户因未预期的异常退出，样本不完整，整次运行作废"""
