import threading

import pytest

from load_test_platform.core.metrics import (
    MetricsAggregator,
    latency_summary,
    parse_percentile_stat,
    percentile,
)
from load_test_platform.models.outcome import RequestOutcome


def _outcome(step="get", latency=10.0, status=200, error=None, checks=None, vu=1, iteration=0):
    return RequestOutcome(
        step=step,
        vu_id=vu,
        iteration=iteration,
        method="GET",
        url="http://posts.test",
        status=status,
        latency_ms=latency,
        error=error,
        checks=checks or {},
    )


def test_percentile_nearest_rank():
    values = [float(v) for v in range(1, 101)]
    assert percentile(values, 50) == 50.0
    assert percentile(values, 95) == 95.0
    assert percentile(values, 99) == 99.0
    assert percentile(values, 100) == 100.0
    assert percentile([7.0], 95) == 7.0
    assert percentile([], 95) is None


def test_percentile_monotonic():
    values = sorted([3.0, 1.0, 9.0, 4.0, 4.0, 12.0, 0.5])
    results = [percentile(values, p) for p in (0, 10, 50, 90, 95, 99, 100)]
    assert results == sorted(results)


def test_parse_percentile_stat():
    assert parse_percentile_stat("p95") == 95.0
    assert parse_percentile_stat("p99.9") == 99.9
    assert parse_percentile_stat("avg") is None
    assert parse_percentile_stat("p101") is None


def test_latency_summary_empty():
    summary = latency_summary([])
    assert summary["p95"] is None
    assert summary["avg"] is None


def test_record_and_snapshot():
    aggregator = MetricsAggregator(step_names=["post", "get"])
    aggregator.record(_outcome("post", 30.0, 201, checks={"created": True}))
    aggregator.record(_outcome("post", 10.0, 500, checks={"created": False}))
    aggregator.record(_outcome("get", 20.0, None, error="ConnectError: refused"))
    aggregator.record_iteration(completed=True)
    aggregator.record_iteration(completed=False)

    snapshot = aggregator.snapshot(duration_s=2.0)

    assert snapshot.total_requests == 3
    assert snapshot.total_failed == 2
    assert snapshot.latencies == (10.0, 20.0, 30.0)
    assert snapshot.steps["post"].latencies == (10.0, 30.0)
    assert snapshot.steps["post"].status_codes == {"201": 1, "500": 1}
    assert snapshot.steps["get"].status_codes == {"error": 1}
    assert snapshot.check_totals("post") == (1, 1)
    assert snapshot.iterations == 1
    assert snapshot.interrupted_iterations == 1
    assert snapshot.error_count == 1
    assert snapshot.errors[0].startswith("[get] vu=1 iter=0")

    assert snapshot.stat("http_req_failed", "rate") == pytest.approx(2 / 3)
    assert snapshot.stat("http_reqs", "rate") == pytest.approx(1.5)
    assert snapshot.stat("http_req_duration", "p95", step="post") == 30.0
    assert snapshot.stat("checks", "rate") == 0.5
    assert snapshot.stat("http_req_duration", "p95", step="unknown") is None


def test_snapshot_is_independent_of_later_records():
    aggregator = MetricsAggregator()
    aggregator.record(_outcome(latency=1.0))
    snapshot = aggregator.snapshot(1.0)
    aggregator.record(_outcome(latency=2.0))
    assert snapshot.total_requests == 1
    assert aggregator.request_count() == 2


def test_error_samples_are_capped():
    aggregator = MetricsAggregator(max_error_samples=3)
    for i in range(10):
        aggregator.record(_outcome(status=None, error=f"boom {i}"))
    snapshot = aggregator.snapshot(1.0)
    assert snapshot.error_count == 10
    assert len(snapshot.errors) == 3


def test_concurrent_records_are_not_lost():
    aggregator = MetricsAggregator(step_names=["get"])
    workers, per_worker = 8, 500

    def worker(vu):
        for i in range(per_worker):
            aggregator.record(_outcome(latency=float(i), vu=vu, iteration=i, checks={"ok": True}))

    threads = [threading.Thread(target=worker, args=(vu,)) for vu in range(1, workers + 1)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    snapshot = aggregator.snapshot(1.0)
    assert snapshot.total_requests == workers * per_worker
    assert len(snapshot.latencies) == workers * per_worker
    assert snapshot.check_totals() == (workers * per_worker, 0)


def test_percentile_odd_ranks_are_exact():
    values = [float(v) for v in range(1, 101)]
    assert percentile(values, 7) == 7.0
    assert percentile(values, 55) == 55.0
    assert percentile(values, 99.9) == 100.0
    assert percentile([float(v) for v in range(1, 1001)], 99.9) == 999.0
    for p in range(1, 101):
        assert percentile(values, p) == float(p)
