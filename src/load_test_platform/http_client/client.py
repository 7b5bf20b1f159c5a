import time
from typing import Any, Dict, Mapping, Optional

import httpx

from load_test_platform.config.logger import logger
from load_test_platform.config.settings import settings
from load_test_platform.core.cancel import CancelToken
from load_test_platform.core.checks import CheckEvaluator
from load_test_platform.core.errors import RequestError, TemplateError
from load_test_platform.core.template import build_variables, render
from load_test_platform.models.outcome import RequestOutcome
from load_test_platform.scenarios.model import StepConfig


class RequestExecutor:
    """异步 HTTP 请求执行器，所有虚拟用户共享同一个连接池"""

    def __init__(
        self,
        client: httpx.AsyncClient,
        check_evaluator: Optional[CheckEvaluator] = None,
        default_timeout: float = settings.DEFAULT_REQUEST_TIMEOUT,
    ):
        self.client = client
        self.check_evaluator = check_evaluator or CheckEvaluator()
        self.default_timeout = default_timeout

    @staticmethod
    def create_client(
        max_connections: int = settings.MAX_CONNECTIONS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> httpx.AsyncClient:
        """创建共享的 AsyncClient"""
        limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_connections,
        )
        return httpx.AsyncClient(limits=limits, transport=transport, follow_redirects=True)

    async def execute(
        self,
        step: StepConfig,
        vu_id: int,
        iteration: int,
        variables: Mapping[str, Any],
        cancel_token: Optional[CancelToken] = None,
    ) -> RequestOutcome:
        """
        执行一个步骤的请求

        网络错误记录在结果里，不会抛出；
        模板错误（TemplateError）属于配置错误，向上抛出。
        """
        # 1. 渲染请求
        template_vars = build_variables(vu_id, iteration, variables)
        method = step.method.upper()
        url = str(render(step.url, template_vars))
        headers = {k: str(v) for k, v in render(step.headers, template_vars).items()}
        body = render(step.body, template_vars)

        timeout = step.timeout or self.default_timeout
        if cancel_token is not None:
            timeout = cancel_token.clamp_timeout(timeout)

        # 2. 发送请求
        response = None
        error = None
        start_time = time.perf_counter()
        try:
            response = await self._send(method, url, headers, body, timeout)
        except RequestError as e:
            error = str(e)
        latency_ms = (time.perf_counter() - start_time) * 1000

        # 3. 检查
        checks = self.check_evaluator.evaluate(response, step.checks)

        outcome = RequestOutcome(
            step=step.name,
            vu_id=vu_id,
            iteration=iteration,
            method=method,
            url=url,
            status=response.status_code if response is not None else None,
            latency_ms=latency_ms,
            error=error,
            checks=checks,
        )

        if error:
            logger.debug(
                "Request failed",
                step=step.name,
                vu=vu_id,
                iteration=iteration,
                error=error,
            )
        return outcome

    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Any,
        timeout: float,
    ) -> httpx.Response:
        kwargs: Dict[str, Any] = {"headers": headers, "timeout": timeout}
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        elif body is not None:
            kwargs["content"] = str(body)

        # 请求头只能是 ASCII，渲染出非法值属于配置错误
        try:
            request = self.client.build_request(method, url, **kwargs)
        except httpx.InvalidURL as e:
            raise RequestError(f"Invalid URL {url!r}: {e}") from e
        except (UnicodeEncodeError, TypeError, ValueError) as e:
            raise TemplateError(f"Cannot build request {method} {url}: {e}") from e

        try:
            return await self.client.send(request)
        except httpx.TimeoutException as e:
            raise RequestError(f"Timeout after {timeout:.3f}s: {type(e).__name__}") from e
        except httpx.HTTPError as e:
            raise RequestError(f"{type(e).__name__}: {e}") from e
        except httpx.InvalidURL as e:
            raise RequestError(f"Invalid URL {url!r}: {e}") from e
