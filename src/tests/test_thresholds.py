import pytest

from load_test_platform.core.errors import ConfigError, ThresholdViolation
from load_test_platform.core.metrics import MetricsAggregator
from load_test_platform.core.thresholds import (
    ThresholdEvaluator,
    parse_threshold,
    parse_thresholds,
    split_metric,
)
from load_test_platform.models.outcome import RequestOutcome


def _snapshot(latencies, failed=0, step="get"):
    aggregator = MetricsAggregator(step_names=[step])
    for i, latency in enumerate(latencies):
        aggregator.record(RequestOutcome(
            step=step,
            vu_id=1,
            iteration=i,
            method="GET",
            url="http://posts.test",
            status=500 if i < failed else 200,
            latency_ms=latency,
        ))
    return aggregator.snapshot(duration_s=1.0)


class TestParsing:
    def test_k6_style(self):
        threshold = parse_threshold("http_req_duration", "p(95)<700")
        assert threshold.name == "http_req_duration.p95"
        assert threshold.stat == "p95"
        assert threshold.operator == "<"
        assert threshold.limit == 700.0

    def test_dotted_style(self):
        threshold = parse_threshold("http_req_failed.rate", "<= 0.01")
        assert threshold.name == "http_req_failed.rate"
        assert threshold.operator == "<="
        assert threshold.limit == 0.01

    def test_step_tag(self):
        threshold = parse_threshold("http_req_duration{step:create post}", "p(99)<1500")
        assert threshold.name == "http_req_duration{step:create post}.p99"
        assert split_metric(threshold.metric) == ("http_req_duration", "create post")

    def test_mapping_with_lists(self):
        thresholds = parse_thresholds({
            "http_req_duration": ["p(95)<700", "avg<300"],
            "http_req_failed": "rate<0.01",
        })
        assert [t.name for t in thresholds] == [
            "http_req_duration.p95",
            "http_req_duration.avg",
            "http_req_failed.rate",
        ]

    @pytest.mark.parametrize(
        "key, expression",
        [
            ("http_req_duration", "p95 << 700"),
            ("http_req_duration", "<700"),
            ("http_req_duration.p95", "p(95)<700"),
            ("unknown_metric", "rate<1"),
            ("http_req_failed", "p(95)<1"),
            ("http_req_duration{group:x}", "p(95)<700"),
        ],
    )
    def test_invalid(self, key, expression):
        with pytest.raises(ConfigError):
            parse_threshold(key, expression)


class TestEvaluation:
    def test_pass_and_fail(self):
        snapshot = _snapshot([float(v) for v in range(1, 101)], failed=2)
        thresholds = parse_thresholds({
            "http_req_duration": ["p(95)<700"],
            "http_req_failed": ["rate<0.01"],
        })

        verdict = ThresholdEvaluator().evaluate(snapshot, thresholds)

        assert not verdict.passed
        assert verdict.violations == ("http_req_failed.rate",)
        observed = {r.threshold.name: r.observed for r in verdict.results}
        assert observed["http_req_duration.p95"] == 95.0
        assert observed["http_req_failed.rate"] == pytest.approx(0.02)

        with pytest.raises(ThresholdViolation) as exc_info:
            verdict.raise_for_violations()
        assert exc_info.value.violations == ("http_req_failed.rate",)

    def test_deterministic(self):
        snapshot = _snapshot([5.0, 900.0, 20.0, 40.0])
        thresholds = parse_thresholds({"http_req_duration": ["p(95)<700", "med<100"]})
        evaluator = ThresholdEvaluator()
        assert evaluator.evaluate(snapshot, thresholds) == evaluator.evaluate(snapshot, thresholds)

    def test_no_data_is_a_violation(self):
        snapshot = _snapshot([])
        thresholds = parse_thresholds({"http_req_duration": "p(95)<700"})
        verdict = ThresholdEvaluator().evaluate(snapshot, thresholds)
        assert not verdict.passed
        assert verdict.results[0].observed is None

    def test_per_step_threshold(self):
        snapshot = _snapshot([10.0, 20.0], step="create post")
        thresholds = parse_thresholds({"http_req_duration{step:create post}": "max<15"})
        verdict = ThresholdEvaluator().evaluate(snapshot, thresholds)
        assert verdict.violations == ("http_req_duration{step:create post}.max",)

    def test_no_thresholds_passes(self):
        verdict = ThresholdEvaluator().evaluate(_snapshot([1.0]), ())
        assert verdict.passed
        verdict.raise_for_violations()
