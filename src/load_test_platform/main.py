"""
load-test-platform 命令行入口

    load-test-platform run posts_api --vus 20 --duration 1m --format json --format md
    load-test-platform validate path/to/scenario.yaml

退出码：
    0   全部阈值通过
    1   存在未通过的阈值
    2   配置错误 / 脚本错误（含虚拟用户崩溃）
    130 报告生成前被中断
"""
import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import List, Optional

import httpx

from load_test_platform.config.logger import logger, setup_logging
from load_test_platform.config.settings import settings
from load_test_platform.core.errors import ConfigError, ThresholdViolation, WorkerCrashedError
from load_test_platform.core.orchestrator import RunResult, TestOrchestrator
from load_test_platform.reporter.report_writer import ReportWriter
from load_test_platform.reporter.text_renderer import render_text
from load_test_platform.scenarios.loader import ScenarioLoader, apply_overrides

EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_SCRIPT_ERROR = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="load-test-platform",
        description="Run scripted HTTP load tests described in YAML.",
    )
    parser.add_argument("--log-level", default=None, help="DEBUG / INFO / WARNING / ERROR")
    parser.add_argument("--log-format", choices=("console", "json"), default=None)
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a scenario and evaluate thresholds")
    run_parser.add_argument("config", help="Scenario YAML path or bundled scenario name")
    run_parser.add_argument("--vus", type=int, default=None, help="Number of virtual users")
    limit = run_parser.add_mutually_exclusive_group()
    limit.add_argument("--duration", default=None, help="Run duration, e.g. 30s, 1m30s")
    limit.add_argument("--iterations", type=int, default=None, help="Iterations per virtual user")
    run_parser.add_argument(
        "--report-dir",
        type=Path,
        default=None,
        help=f"Directory for written reports (default: {settings.REPORTS_DIR})",
    )
    run_parser.add_argument(
        "--format",
        dest="formats",
        action="append",
        choices=("json", "md"),
        default=None,
        help="Write a report file in this format (repeatable)",
    )
    run_parser.add_argument("--quiet", action="store_true", help="Do not print the text summary")

    validate_parser = subparsers.add_parser("validate", help="Validate a scenario without running it")
    validate_parser.add_argument("config", help="Scenario YAML path or bundled scenario name")

    return parser


async def run_scenario(orchestrator: TestOrchestrator) -> RunResult:
    """运行并把 SIGINT / SIGTERM 转成优雅取消"""
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.cancel, sig.name.lower())
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Windows 或非主线程：退回到 KeyboardInterrupt
            pass
    try:
        return await orchestrator.run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def cmd_validate(args: argparse.Namespace) -> int:
    config = ScenarioLoader().load(args.config)
    print(
        f"OK: {config.scenario.name} "
        f"({len(config.scenario.steps)} steps, {len(config.options.thresholds)} thresholds)"
    )
    return EXIT_PASS


def cmd_run(args: argparse.Namespace, transport: Optional[httpx.AsyncBaseTransport] = None) -> int:
    config = ScenarioLoader().load(args.config)
    config = apply_overrides(
        config,
        vus=args.vus,
        duration=args.duration,
        iterations=args.iterations,
    )

    writer = ReportWriter()
    orchestrator = TestOrchestrator(config, transport=transport, report_writer=writer)
    result = asyncio.run(run_scenario(orchestrator))

    if not args.quiet:
        print(render_text(result.report))

    if args.formats:
        output_dir = args.report_dir or settings.REPORTS_DIR
        files = writer.write(result.report, output_dir, formats=dict.fromkeys(args.formats))
        for fmt, path in files.items():
            print(f"📄 {fmt.upper()} report: {path}")

    result.verdict.raise_for_violations()
    return EXIT_PASS


def main(argv: Optional[List[str]] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level, args.log_format)

    try:
        if args.command == "validate":
            return cmd_validate(args)
        return cmd_run(args, transport=transport)
    except ThresholdViolation as e:
        logger.warning("Thresholds violated", violations=list(e.violations))
        return EXIT_THRESHOLD_BREACH
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR
    except WorkerCrashedError as e:
        print(f"Run aborted: {e}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    raise SystemExit(main())
