from typing import Any, Dict, Optional, Sequence

import httpx

from load_test_platform.config.logger import logger
from load_test_platform.core.errors import CheckEvaluationError
from load_test_platform.scenarios.model import CheckKind, CheckSpec

MISSING = object()


def resolve_path(document: Any, path: str) -> Any:
    """
    简单的 JSON 路径提取：data.id / data.items.0 / $.data

    路径不存在时返回 MISSING（与值为 null 区分）。
    """
    value = document
    parts = [p for p in path.split(".") if p and p != "$"]
    for part in parts:
        if isinstance(value, dict):
            if part not in value:
                return MISSING
            value = value[part]
        elif isinstance(value, list) and part.isdigit():
            index = int(part)
            if index >= len(value):
                return MISSING
            value = value[index]
        else:
            return MISSING
    return value


class _ResponseBody:
    """每次求值最多解析一次 JSON"""

    def __init__(self, response: httpx.Response):
        self.response = response
        self._parsed = False
        self._value: Any = None
        self._error: Optional[Exception] = None

    def json(self) -> Any:
        if not self._parsed:
            self._parsed = True
            try:
                self._value = self.response.json()
            except ValueError as e:
                self._error = e
        if self._error is not None:
            raise CheckEvaluationError(f"Response body is not valid JSON: {self._error}")
        return self._value


class CheckEvaluator:
    """检查项求值器 - 无副作用，求值异常记为不通过"""

    def evaluate(
        self,
        response: Optional[httpx.Response],
        checks: Sequence[CheckSpec],
    ) -> Dict[str, bool]:
        results: Dict[str, bool] = {}
        if not checks:
            return results

        # 网络错误：没有响应，全部检查不通过
        if response is None:
            return {check.name: False for check in checks}

        body = _ResponseBody(response)
        for check in checks:
            try:
                results[check.name] = self._evaluate_one(check, response, body)
            except (CheckEvaluationError, TypeError, ValueError) as e:
                logger.debug("Check evaluation failed", check=check.name, error=str(e))
                results[check.name] = False
        return results

    def _evaluate_one(self, check: CheckSpec, response: httpx.Response, body: _ResponseBody) -> bool:
        if check.kind == CheckKind.STATUS_EQUALS:
            return response.status_code == _status_code(check.value)

        if check.kind == CheckKind.STATUS_IN:
            return response.status_code in {_status_code(v) for v in check.value}

        if check.kind == CheckKind.JSON_PATH_EXISTS:
            return resolve_path(body.json(), check.path or "") is not MISSING

        if check.kind == CheckKind.JSON_PATH_IS_ARRAY:
            return isinstance(resolve_path(body.json(), check.path or ""), list)

        raise CheckEvaluationError(f"Unsupported check kind: {check.kind}")


def _status_code(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise CheckEvaluationError(f"Invalid status code operand: {value!r}") from None
