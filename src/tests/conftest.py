"""
Pytest configuration and shared fixtures

目标服务用 httpx.MockTransport 模拟，不发真实网络请求。
"""
import itertools
import json
import threading

import httpx
import pytest
import structlog

from load_test_platform.scenarios.loader import ScenarioLoader
from load_test_platform.scenarios.model import CheckKind, CheckSpec, StepConfig

BASE_URL = "http://posts.test/api/post"


@pytest.fixture(autouse=True)
def _reset_structlog():
    """setup_logging() 绑定当前 sys.stderr（pytest 的捕获流），测试结束后恢复默认配置"""
    yield
    structlog.reset_defaults()


class PostsService:
    """帖子接口的内存实现：POST 返回 201 + data.id，GET 返回 data 数组"""

    def __init__(self, fail_get: bool = False):
        self.fail_get = fail_get
        self.requests = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
        if request.method == "POST":
            payload = json.loads(request.content or b"{}")
            return httpx.Response(201, json={"data": {"id": next(self._ids), **payload}})
        if self.fail_get:
            return httpx.Response(500, json={"error": "internal"})
        return httpx.Response(200, json={"data": [{"id": 1, "title": "hello"}]})


@pytest.fixture
def posts_service():
    return PostsService()


@pytest.fixture
def posts_transport(posts_service):
    return httpx.MockTransport(posts_service)


@pytest.fixture
def loader(tmp_path):
    return ScenarioLoader(scenarios_dir=tmp_path)


def make_step(name="get_posts", method="GET", url=BASE_URL, checks=(), **kwargs) -> StepConfig:
    return StepConfig(name=name, method=method, url=url, checks=tuple(checks), **kwargs)


def status_check(name, status) -> CheckSpec:
    return CheckSpec(name=name, kind=CheckKind.STATUS_EQUALS, value=status)


def scenario_document(**options):
    """最小可运行的 YAML 文档（dict 形式）"""
    return {
        "name": "posts",
        "options": {"vus": 2, "iterations": 3, "grace_timeout": 1, **options},
        "vars": {"base_url": BASE_URL},
        "scenario": [
            {
                "name": "create_post",
                "method": "POST",
                "url": "{base_url}",
                "body": {"title": "title {vu}-{iter}"},
                "checks": [
                    {"name": "created", "type": "status_equals", "value": 201},
                    {"name": "has id", "type": "json_path_exists", "path": "data.id"},
                ],
            },
            {
                "name": "list_posts",
                "url": "{base_url}",
                "checks": [
                    {"name": "ok", "type": "status_equals", "value": 200},
                    {"name": "is array", "type": "json_path_is_array", "path": "data"},
                ],
            },
        ],
    }
