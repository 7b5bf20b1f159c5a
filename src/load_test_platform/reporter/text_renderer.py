from typing import Any, Dict, List


def _ms(v) -> str:
    return "-" if v is None else f"{v:.1f}ms"


def render_text(report: Dict[str, Any]) -> str:
    """生成终端输出的文本报告"""
    lines: List[str] = []
    opts = report["options"]

    lines.append("=" * 80)
    lines.append(f"Load Test Report: {report['scenario']}")
    lines.append("=" * 80)
    lines.append(f"Run ID: {report['run_id']}    Time: {report['test_time']}")
    limit = f"duration={opts['duration_s']}s" if opts["duration_s"] else f"iterations={opts['iterations']}/vu"
    lines.append(f"VUs: {opts['vus']}    {limit}    elapsed={report['duration_s']}s ({report['stop_reason']})")
    if report["forced_stops"]:
        lines.append(f"Forced stops after grace timeout: {report['forced_stops']}")

    its = report["iterations"]
    reqs = report["requests"]
    lines.append("")
    lines.append(f"  iterations ....... {its['completed']} completed, {its['interrupted']} interrupted")
    lines.append(f"  http_reqs ........ {reqs['total']} ({reqs['rate_per_s'] or 0:.2f}/s)")
    lines.append(f"  http_req_failed .. {(reqs['failure_rate'] or 0) * 100:.2f}% ({reqs['failed']})")
    checks = report["checks"]
    check_rate = checks["rate"]
    rate_text = "-" if check_rate is None else f"{check_rate * 100:.2f}%"
    lines.append(f"  checks ........... {rate_text} ({checks['passes']} passed, {checks['fails']} failed)")
    lat = report["latency_ms"]
    lines.append(
        f"  http_req_duration  avg={_ms(lat['avg'])} min={_ms(lat['min'])} med={_ms(lat['med'])} "
        f"max={_ms(lat['max'])} p(90)={_ms(lat['p90'])} p(95)={_ms(lat['p95'])}"
    )

    lines.append("")
    header = f"{'Step':<28}{'Reqs':>7}{'Fail%':>8}{'P50':>10}{'P90':>10}{'P95':>10}{'P99':>10}"
    lines.append(header)
    lines.append("-" * len(header))
    for s in report["steps"]:
        slat = s["latency_ms"]
        name = f"{s['method']} {s['name']}"[:27]
        lines.append(
            f"{name:<28}{s['requests']:>7}{s['failure_rate'] * 100:>7.2f}%"
            f"{_ms(slat['p50']):>10}{_ms(slat['p90']):>10}{_ms(slat['p95']):>10}{_ms(slat['p99']):>10}"
        )
        for c in s["checks"]:
            mark = "✓" if c["fails"] == 0 else "✗"
            lines.append(f"    {mark} {c['name']} ({c['passes']}/{c['passes'] + c['fails']})")

    if report["thresholds"]:
        lines.append("")
        lines.append("Thresholds")
        lines.append("-" * 60)
        for t in report["thresholds"]:
            status = "PASS" if t["passed"] else "FAIL"
            observed = "no data" if t["observed"] is None else f"{t['observed']}"
            lines.append(f"  {status:<6}{t['name']:<36}{t['expression']:<14}actual={observed}")

    errors = report["errors"]
    if errors["samples"]:
        lines.append("")
        lines.append(f"Errors (first {len(errors['samples'])} of {errors['count']})")
        for e in errors["samples"]:
            lines.append(f"  {e}")

    lines.append("")
    lines.append(f"Overall: {'PASS' if report['passed'] else 'FAIL'}")
    lines.append("=" * 80)
    return "\n".join(lines)
