"""
loadbench - command line entry point.

Builds the run plan from settings, loads the dataset, runs every scenario and
exits with the verdict:

    0    all thresholds passed
    1    at least one threshold failed
    2    invalid configuration (nothing was run)
    130  interrupted
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional, Sequence

from loadbench.config import Settings, get_settings
from loadbench.core.dataset import load_dataset
from loadbench.core.orchestrator import Orchestrator, RunResult
from loadbench.core.summary import log_summary
from loadbench.errors import ConfigurationError, ThresholdViolation
from loadbench.scenarios.wordpress import build_plan

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_THRESHOLDS = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the WordPress load test scenarios and gate on thresholds."
    )
    parser.add_argument(
        "--base-url",
        default=None,
        help="Target site (overrides BASE_URL).",
    )
    parser.add_argument(
        "--dataset",
        default=None,
        help="Path to the form dataset CSV (overrides DATASET_PATH).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (overrides LOG_LEVEL).",
    )
    parser.add_argument(
        "--enable-ui",
        action="store_true",
        help="Include the browser scenario (same as SCENARIO_UI_ENABLED=true).",
    )
    return parser


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.base_url:
        overrides["BASE_URL"] = str(args.base_url)
    if args.dataset:
        overrides["DATASET_PATH"] = str(args.dataset)
    if args.log_level:
        overrides["LOG_LEVEL"] = str(args.log_level)
    if args.enable_ui:
        overrides["SCENARIO_UI_ENABLED"] = True
    if not overrides:
        return settings
    return settings.model_copy(update=overrides)


def configure_logging(settings: Settings) -> None:
    level = getattr(logging, str(settings.LOG_LEVEL).upper(), None)
    if not isinstance(level, int):
        raise ConfigurationError(f"Invalid LOG_LEVEL: {settings.LOG_LEVEL!r}")
    logging.basicConfig(
        level=level,
        format=settings.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(settings.LOG_FILE)
            if settings.LOG_FILE
            else logging.NullHandler(),
        ],
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def run(settings: Settings, orchestrator: Optional[Orchestrator] = None) -> RunResult:
    """
    Plan, load and run; SIGINT drains every scenario instead of killing the run.

    Raises:
        ConfigurationError: Before any scenario starts.
        ThresholdViolation: After the summary is logged, if the verdict failed.
    """
    if orchestrator is None:
        plan = build_plan(settings)
        dataset = load_dataset(
            settings.DATASET_PATH, delimiter=settings.DATASET_DELIMITER
        )
        orchestrator = Orchestrator(plan, dataset, settings=settings)

    loop = asyncio.get_running_loop()
    handled = False
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.stop)
        handled = True
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler not supported on this platform")

    try:
        result = await orchestrator.run()
    finally:
        if handled:
            loop.remove_signal_handler(signal.SIGINT)

    log_summary(result)
    if not result.passed:
        raise ThresholdViolation(result.verdict)
    return result


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        settings = _apply_overrides(get_settings(), args)
        configure_logging(settings)
        result = asyncio.run(run(settings))
    except ConfigurationError as e:
        print(f"[loadbench] configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except ThresholdViolation as e:
        logger.error("%s", e)
        return EXIT_THRESHOLDS
    except KeyboardInterrupt:
        print("[loadbench] interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    if result.interrupted:
        return EXIT_INTERRUPTED
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
