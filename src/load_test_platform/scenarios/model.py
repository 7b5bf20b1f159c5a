from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class CheckKind(str, Enum):
    """检查项类型"""
    STATUS_EQUALS = "status_equals"
    STATUS_IN = "status_in"
    JSON_PATH_EXISTS = "json_path_exists"
    JSON_PATH_IS_ARRAY = "json_path_is_array"


@dataclass(frozen=True)
class CheckSpec:
    """单个命名检查项"""

    name: str
    kind: CheckKind
    value: Any = None  # status_equals / status_in 使用
    path: Optional[str] = None  # json_path_* 使用，如 "data.id"


@dataclass(frozen=True)
class ThinkTime:
    """步骤之后的停顿（秒），min == max 时为固定值"""

    min: float = 0.0
    max: float = 0.0

    @property
    def is_zero(self) -> bool:
        return self.max <= 0


@dataclass(frozen=True)
class StepConfig:
    """单个步骤配置：请求模板 + 检查项"""

    name: str
    method: str = "GET"
    url: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: Union[Dict[str, Any], list, str, None] = None

    checks: Tuple[CheckSpec, ...] = ()
    think_time: ThinkTime = field(default_factory=ThinkTime)
    timeout: Optional[float] = None  # 为空时使用 RunOptions.request_timeout


@dataclass(frozen=True)
class ScenarioConfig:
    """测试场景：按顺序执行的步骤，加载后不可变"""

    name: str
    steps: Tuple[StepConfig, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class Threshold:
    """单个阈值，name 形如 http_req_duration.p95"""

    name: str
    metric: str
    stat: str
    operator: str
    limit: float
    expression: str


@dataclass(frozen=True)
class RunOptions:
    """单次运行的配置，按值传给调度器"""

    vus: int = 1
    duration: Optional[float] = None  # 秒
    iterations: Optional[int] = None  # 每个虚拟用户的迭代上限
    thresholds: Tuple[Threshold, ...] = ()
    request_timeout: float = 60.0
    grace_timeout: float = 30.0
    vars: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RunConfig:
    """完整运行配置"""

    options: RunOptions
    scenario: ScenarioConfig
    source: Optional[str] = None  # 配置文件路径
