import asyncio
import time

import httpx
import pytest

from conftest import make_step, status_check
from load_test_platform.core.cancel import CancelToken
from load_test_platform.core.errors import TemplateError
from load_test_platform.core.metrics import MetricsAggregator
from load_test_platform.core.runner import ScenarioRunner
from load_test_platform.http_client.client import RequestExecutor
from load_test_platform.models.virtual_user import VirtualUser
from load_test_platform.scenarios.model import ScenarioConfig, ThinkTime


def _runner(client, steps, variables=None):
    scenario = ScenarioConfig(name="test", steps=tuple(steps))
    aggregator = MetricsAggregator(step_names=[s.name for s in steps])
    runner = ScenarioRunner(scenario, RequestExecutor(client), aggregator, variables=variables)
    return runner, aggregator


@pytest.mark.asyncio
async def test_steps_run_in_declared_order(posts_service, posts_transport):
    steps = [
        make_step("create", method="POST", body={"n": "{iter}"}),
        make_step("list_1"),
        make_step("list_2"),
    ]
    async with RequestExecutor.create_client(transport=posts_transport) as client:
        runner, aggregator = _runner(client, steps)
        completed = await runner.run_iteration(VirtualUser(id=1), CancelToken())

    assert completed is True
    assert [r.method for r in posts_service.requests] == ["POST", "GET", "GET"]
    snapshot = aggregator.snapshot(1.0)
    assert {name: s.requests for name, s in snapshot.steps.items()} == {
        "create": 1,
        "list_1": 1,
        "list_2": 1,
    }


@pytest.mark.asyncio
async def test_failed_request_does_not_abort_iteration(posts_service):
    def flaky(request):
        if request.url.path.endswith("/boom"):
            raise httpx.ConnectError("refused", request=request)
        return posts_service(request)

    steps = [
        make_step("boom", url="http://posts.test/boom", checks=[status_check("ok", 200)]),
        make_step("list", checks=[status_check("ok", 200)]),
    ]
    async with RequestExecutor.create_client(transport=httpx.MockTransport(flaky)) as client:
        runner, aggregator = _runner(client, steps)
        completed = await runner.run_iteration(VirtualUser(id=1), CancelToken())

    assert completed is True
    snapshot = aggregator.snapshot(1.0)
    assert snapshot.steps["boom"].failed == 1
    assert snapshot.steps["boom"].check_fails == {"ok": 1}
    assert snapshot.steps["list"].check_passes == {"ok": 1}


@pytest.mark.asyncio
async def test_cancel_wakes_think_time_and_skips_remaining_steps(posts_service, posts_transport):
    steps = [
        make_step("first", think_time=ThinkTime(10.0, 10.0)),
        make_step("second"),
    ]
    token = CancelToken()

    async with RequestExecutor.create_client(transport=posts_transport) as client:
        runner, aggregator = _runner(client, steps)
        started = time.monotonic()
        task = asyncio.create_task(runner.run_iteration(VirtualUser(id=1), token))
        await asyncio.sleep(0.05)
        token.cancel("test")
        completed = await task

    assert completed is False
    assert time.monotonic() - started < 2.0
    assert len(posts_service.requests) == 1
    assert aggregator.request_count("second") == 0


@pytest.mark.asyncio
async def test_cancelled_before_start_sends_nothing(posts_service, posts_transport):
    token = CancelToken()
    token.cancel("test")
    async with RequestExecutor.create_client(transport=posts_transport) as client:
        runner, _ = _runner(client, [make_step()])
        completed = await runner.run_iteration(VirtualUser(id=1), token)

    assert completed is False
    assert posts_service.requests == []


@pytest.mark.asyncio
async def test_template_error_propagates(posts_transport):
    async with RequestExecutor.create_client(transport=posts_transport) as client:
        runner, _ = _runner(client, [make_step(url="{nope}")])
        with pytest.raises(TemplateError):
            await runner.run_iteration(VirtualUser(id=1), CancelToken())


def test_think_time_range_is_sampled_within_bounds():
    for _ in range(50):
        value = ScenarioRunner._pick(ThinkTime(0.2, 0.4))
        assert 0.2 <= value <= 0.4
    assert ScenarioRunner._pick(ThinkTime(1.0, 1.0)) == 1.0
