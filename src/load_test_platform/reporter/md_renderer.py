def _fmt_ms(v):
    return "-" if v is None else f"{v:.1f}"


def render_md(report, path):
    lines = [f"# 压测报告：{report['scenario']}\n"]

    opts = report["options"]
    limit = f"duration={opts['duration_s']}s" if opts["duration_s"] else f"iterations={opts['iterations']}"
    lines.append(f"- 运行 ID：{report['run_id']}")
    lines.append(f"- 配置：vus={opts['vus']}, {limit}")
    lines.append(f"- 实际时长：{report['duration_s']}s（{report['stop_reason']}）")
    lines.append(f"- 结果：{'PASS' if report['passed'] else 'FAIL'}\n")

    lines.append("## 步骤统计\n")
    lines.append("| 步骤 | 请求数 | 失败率 | P50 (ms) | P90 (ms) | P95 (ms) | P99 (ms) |")
    lines.append("|---|---|---|---|---|---|---|")
    for s in report["steps"]:
        lat = s["latency_ms"]
        lines.append(
            f"| {s['method']} {s['name']} | {s['requests']} | {s['failure_rate'] * 100:.2f}% "
            f"| {_fmt_ms(lat['p50'])} | {_fmt_ms(lat['p90'])} | {_fmt_ms(lat['p95'])} | {_fmt_ms(lat['p99'])} |"
        )

    lines.append("\n## 检查项\n")
    for s in report["steps"]:
        for c in s["checks"]:
            mark = "✓" if c["fails"] == 0 else "✗"
            lines.append(f"- {mark} {c['name']}：{c['passes']} 通过 / {c['fails']} 失败")

    if report["thresholds"]:
        lines.append("\n## 阈值\n")
        for t in report["thresholds"]:
            mark = "✓" if t["passed"] else "✗"
            lines.append(f"- {mark} `{t['name']}` {t['expression']}（实际：{t['observed']}）")

    if report["errors"]["samples"]:
        lines.append("\n## 错误信息\n")
        for e in report["errors"]["samples"]:
            lines.append(f"- {e}")

    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines) + "\n")
