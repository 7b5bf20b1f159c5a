from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional, Dict, Any, List, Union

from load_test_platform.scenarios.model import CheckKind

# 时长：数字（秒）或 "30s" / "500ms" / "1m30s"
DurationValue = Union[float, str]


class CheckDocument(BaseModel):
    """检查项"""
    model_config = ConfigDict(extra="forbid")

    name: str
    type: CheckKind
    value: Optional[Union[int, List[int]]] = None  # 状态码或状态码列表
    path: Optional[str] = None

    @model_validator(mode="after")
    def _require_operand(self):
        if self.type in (CheckKind.STATUS_EQUALS, CheckKind.STATUS_IN) and self.value is None:
            raise ValueError(f"check '{self.name}' ({self.type.value}) requires 'value'")
        if self.type == CheckKind.STATUS_EQUALS and not isinstance(self.value, int):
            raise ValueError(f"check '{self.name}' (status_equals) requires an integer 'value'")
        if self.type == CheckKind.STATUS_IN and not isinstance(self.value, list):
            raise ValueError(f"check '{self.name}' (status_in) requires a list 'value'")
        if self.type in (CheckKind.JSON_PATH_EXISTS, CheckKind.JSON_PATH_IS_ARRAY) and self.path is None:
            raise ValueError(f"check '{self.name}' ({self.type.value}) requires 'path'")
        return self


class StepDocument(BaseModel):
    """场景步骤"""
    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    name: str
    method: str = "GET"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Union[Dict[str, Any], List[Any], str]] = None
    checks: List[CheckDocument] = Field(default_factory=list)
    think_time: Optional[DurationValue] = None  # 也支持 "1-3s" 区间
    timeout: Optional[DurationValue] = None


class OptionsDocument(BaseModel):
    """运行参数"""
    model_config = ConfigDict(extra="forbid")

    vus: int = Field(1, ge=1)
    duration: Optional[DurationValue] = None
    iterations: Optional[int] = Field(None, ge=1)
    request_timeout: Optional[DurationValue] = None
    grace_timeout: Optional[DurationValue] = None
    thresholds: Dict[str, Union[str, List[str]]] = Field(default_factory=dict)


class RunDocument(BaseModel):
    """完整的 YAML 配置文档"""
    model_config = ConfigDict(extra="forbid")

    name: str = "scenario"
    description: str = ""
    options: OptionsDocument = Field(default_factory=OptionsDocument)
    vars: Dict[str, Any] = Field(default_factory=dict)
    scenario: List[StepDocument] = Field(..., min_length=1)
