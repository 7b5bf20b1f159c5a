import dataclasses
import re
import yaml
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from load_test_platform.config.logger import logger
from load_test_platform.config.settings import settings
from load_test_platform.core.errors import ConfigError
from load_test_platform.core.template import BUILTIN_VARIABLES, find_placeholders
from load_test_platform.core.thresholds import parse_thresholds, split_metric
from load_test_platform.scenarios.model import (
    CheckSpec,
    RunConfig,
    RunOptions,
    ScenarioConfig,
    StepConfig,
    ThinkTime,
)
from load_test_platform.scenarios.schemas import RunDocument, StepDocument

DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Union[int, float, str, None], field_name: str = "duration") -> Optional[float]:
    """
    解析时长为秒

    支持数字（秒）、"500ms"、"30s"、"1m30s"、"1h"。
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip().lower()
        try:
            seconds = float(text)
        except ValueError:
            parts = DURATION_PART.findall(text)
            if not parts or "".join(n + u for n, u in parts) != text:
                raise ConfigError(f"Invalid {field_name}: '{value}'") from None
            seconds = sum(float(n) * UNIT_SECONDS[u] for n, u in parts)
    if seconds < 0:
        raise ConfigError(f"{field_name} must be >= 0, got {value}")
    return seconds


def parse_think_time(value: Union[int, float, str, None]) -> ThinkTime:
    """解析 think time：固定值 "1s" 或区间 "1-3s" """
    if value is None:
        return ThinkTime()
    if isinstance(value, str) and "-" in value:
        text = value.strip().lower()
        unit_match = re.search(r"(ms|s|m|h)$", text)
        unit = unit_match.group(1) if unit_match else ""
        low, _, high = text[: len(text) - len(unit)].partition("-")
        min_s = parse_duration(low.strip() + unit, "think_time")
        max_s = parse_duration(high.strip() + unit, "think_time")
        if max_s < min_s:
            raise ConfigError(f"Invalid think_time range: '{value}'")
        return ThinkTime(min=min_s, max=max_s)
    seconds = parse_duration(value, "think_time")
    return ThinkTime(min=seconds, max=seconds)


class ScenarioLoader:
    """YAML 运行配置加载器"""

    def __init__(self, scenarios_dir: Optional[Path] = None):
        self.scenarios_dir = Path(scenarios_dir or settings.SCENARIOS_DIR)

    def resolve(self, name_or_path: Union[str, Path]) -> Path:
        """文件路径或内置场景名（scenarios_dir 下的 <name>.yaml）"""
        path = Path(name_or_path)
        if path.exists():
            return path
        candidate = self.scenarios_dir / f"{name_or_path}.yaml"
        if candidate.exists():
            return candidate
        raise ConfigError(f"Scenario file not found: {name_or_path}")

    def load(self, name_or_path: Union[str, Path]) -> RunConfig:
        """加载并校验运行配置"""
        file_path = self.resolve(name_or_path)

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {file_path}: {e}") from e

        config = self.parse(data, source=str(file_path))
        logger.info(
            "Loaded scenario",
            scenario=config.scenario.name,
            steps=len(config.scenario.steps),
            source=str(file_path),
        )
        return config

    def parse(self, data: Any, source: Optional[str] = None) -> RunConfig:
        """解析 YAML 数据为 RunConfig"""
        if not isinstance(data, dict):
            raise ConfigError("Configuration document must be a mapping")

        try:
            document = RunDocument.model_validate(data)
        except ValidationError as e:
            raise ConfigError(_format_validation_error(e)) from e

        options_doc = document.options
        if options_doc.duration is not None and options_doc.iterations is not None:
            raise ConfigError("duration and iterations are mutually exclusive")

        duration = parse_duration(options_doc.duration)
        iterations = options_doc.iterations
        if duration is not None and duration <= 0:
            raise ConfigError("duration must be > 0")
        if duration is None and iterations is None:
            iterations = 1

        options = RunOptions(
            vus=options_doc.vus,
            duration=duration,
            iterations=iterations,
            thresholds=parse_thresholds(options_doc.thresholds),
            request_timeout=(
                parse_duration(options_doc.request_timeout, "request_timeout")
                or settings.DEFAULT_REQUEST_TIMEOUT
            ),
            grace_timeout=(
                parse_duration(options_doc.grace_timeout, "grace_timeout")
                if options_doc.grace_timeout is not None
                else settings.DEFAULT_GRACE_TIMEOUT
            ),
            vars=dict(document.vars),
        )

        scenario = ScenarioConfig(
            name=document.name,
            description=document.description,
            steps=tuple(self._parse_step(step) for step in document.scenario),
        )

        config = RunConfig(options=options, scenario=scenario, source=source)
        validate_config(config)
        return config

    @staticmethod
    def _parse_step(step: StepDocument) -> StepConfig:
        return StepConfig(
            name=step.name,
            method=step.method.upper(),
            url=step.url,
            headers=dict(step.headers),
            body=step.body,
            checks=tuple(
                CheckSpec(name=c.name, kind=c.type, value=c.value, path=c.path)
                for c in step.checks
            ),
            think_time=parse_think_time(step.think_time),
            timeout=parse_duration(step.timeout, "timeout") or None,
        )


def validate_config(config: RunConfig) -> None:
    """
    跨字段校验

    Raises:
        ConfigError: 步骤名重复、检查名重复、模板引用未定义变量、
            阈值引用不存在的步骤等
    """
    options = config.options
    if options.vus < 1:
        raise ConfigError("vus must be >= 1")
    if options.duration is not None and options.iterations is not None:
        raise ConfigError("duration and iterations are mutually exclusive")
    if options.duration is None and options.iterations is None:
        raise ConfigError("one of duration or iterations is required")

    known_vars = set(BUILTIN_VARIABLES) | set(options.vars)
    step_names = set()
    for step in config.scenario.steps:
        if step.name in step_names:
            raise ConfigError(f"Duplicate step name: '{step.name}'")
        step_names.add(step.name)

        check_names = [c.name for c in step.checks]
        if len(check_names) != len(set(check_names)):
            raise ConfigError(f"Step '{step.name}' has duplicate check names")

        used = find_placeholders(step.url) | find_placeholders(step.headers) | find_placeholders(step.body)
        undefined = sorted(used - known_vars)
        if undefined:
            raise ConfigError(
                f"Step '{step.name}' references undefined variables: "
                + ", ".join("{" + name + "}" for name in undefined)
            )

    for threshold in options.thresholds:
        _, step = split_metric(threshold.metric)
        if step is not None and step not in step_names:
            raise ConfigError(f"Threshold '{threshold.name}' references unknown step '{step}'")


def apply_overrides(
    config: RunConfig,
    vus: Optional[int] = None,
    duration: Union[float, str, None] = None,
    iterations: Optional[int] = None,
) -> RunConfig:
    """命令行参数覆盖文件配置；duration 与 iterations 互相清除"""
    if duration is not None and iterations is not None:
        raise ConfigError("duration and iterations are mutually exclusive")

    changes = {}
    if vus is not None:
        changes["vus"] = vus
    if duration is not None:
        seconds = parse_duration(duration)
        if not seconds:
            raise ConfigError("duration must be > 0")
        changes["duration"] = seconds
        changes["iterations"] = None
    if iterations is not None:
        if iterations < 1:
            raise ConfigError("iterations must be >= 1")
        changes["iterations"] = iterations
        changes["duration"] = None

    if not changes:
        return config

    options = dataclasses.replace(config.options, **changes)
    updated = dataclasses.replace(config, options=options)
    validate_config(updated)
    return updated


def _format_validation_error(error: ValidationError) -> str:
    lines = ["Invalid configuration:"]
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        lines.append(f"  {location or '<root>'}: {item.get('msg')}")
    return "\n".join(lines)
