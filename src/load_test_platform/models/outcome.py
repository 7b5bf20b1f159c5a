from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional


@dataclass(frozen=True)
class RequestOutcome:
    """单次 HTTP 调用的结果，生成后不可变"""

    step: str
    vu_id: int
    iteration: int
    method: str
    url: str
    status: Optional[int]
    latency_ms: float
    error: Optional[str] = None
    checks: Mapping[str, bool] = field(default_factory=dict)

    def __post_init__(self):
        # 冻结检查结果
        object.__setattr__(self, "checks", MappingProxyType(dict(self.checks)))

    @property
    def failed(self) -> bool:
        """与 http_req_failed 一致：网络错误或状态码 >= 400"""
        return self.error is not None or self.status is None or self.status >= 400

    @property
    def checks_passed(self) -> bool:
        return all(self.checks.values())
