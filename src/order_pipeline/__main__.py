"""Order retry pipeline worker. Use --help for usage."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from config import load_config, set_config
from core.errors.exceptions import ConfigurationError
from core.logging.setup import setup_logging
from core.utils import generate_worker_id
from order_pipeline.common.metrics import start_metrics_server
from order_pipeline.common.signals import setup_shutdown_signal_handlers
from order_pipeline.orders.worker import OrderWorker

# __main__.py is at src/order_pipeline/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the order consumer with retry and dead-letter routing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with the bundled config
    python -m order_pipeline

    # Fail every other order, retry twice with a 500 ms backoff
    python -m order_pipeline --failure-rate 0.5 --max-retries 2 --retry-delay-ms 500

    # Run without the metrics endpoint, logging to stdout only
    python -m order_pipeline --metrics-port 0 --log-to-stdout
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: src/config/config.yaml)",
    )

    parser.add_argument(
        "--metrics-port",
        type=int,
        default=8000,
        help="Port for Prometheus metrics server, 0 disables it (default: 8000)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )

    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping file handlers. "
        "Can also be set via LOG_TO_STDOUT environment variable.",
    )

    parser.add_argument(
        "--max-retries",
        type=int,
        default=None,
        help="Retry budget before dead-lettering (overrides config)",
    )

    parser.add_argument(
        "--retry-delay-ms",
        type=int,
        default=None,
        help="Backoff after each retry publish in milliseconds (overrides config)",
    )

    parser.add_argument(
        "--failure-rate",
        type=float,
        default=None,
        help="Probability that processing an order fails (overrides config)",
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for the failure source, for reproducible runs (overrides config)",
    )

    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Map CLI flags onto the config file layout. Unset flags are left out."""
    overrides: dict[str, Any] = {}
    if args.max_retries is not None:
        overrides.setdefault("retry", {})["max_retries"] = args.max_retries
    if args.retry_delay_ms is not None:
        overrides.setdefault("retry", {})["retry_delay_ms"] = args.retry_delay_ms
    if args.failure_rate is not None:
        overrides.setdefault("processing", {})["failure_rate"] = args.failure_rate
    if args.seed is not None:
        overrides.setdefault("processing", {})["seed"] = args.seed
    return overrides


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() in ("true", "1", "yes")


def _setup_logging(args: argparse.Namespace, worker_id: str) -> None:
    log_dir = Path(args.log_dir or os.getenv("LOG_DIR") or "logs")
    setup_logging(
        name="order_pipeline",
        stage="order_consumer",
        domain="orders",
        log_dir=log_dir,
        json_format=os.getenv("JSON_LOGS", "true").lower() in ("true", "1", "yes"),
        console_level=getattr(logging, args.log_level),
        worker_id=worker_id,
        log_to_stdout=args.log_to_stdout or _env_flag("LOG_TO_STDOUT"),
    )


def _start_metrics(port: int) -> None:
    if port <= 0:
        logger.info("Metrics server disabled")
        return

    actual_port = start_metrics_server(port)
    if actual_port != port:
        logger.info(
            "Metrics server started on fallback port",
            extra={"actual_port": actual_port, "preferred_port": port},
        )
    else:
        logger.info("Metrics server started", extra={"port": actual_port})


async def run_worker(worker: OrderWorker) -> None:
    setup_shutdown_signal_handlers(worker.request_shutdown)
    await worker.run()


def main(argv: list[str] | None = None) -> int:
    global logger

    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    worker_id = os.getenv("WORKER_ID") or generate_worker_id("order_consumer")
    _setup_logging(args, worker_id)
    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config, overrides=build_overrides(args))
    except (ConfigurationError, FileNotFoundError) as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 2
    set_config(config)

    _start_metrics(args.metrics_port)

    worker = OrderWorker(config)
    try:
        asyncio.run(run_worker(worker))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    except Exception as e:
        logger.error("Fatal error", extra={"error": str(e)}, exc_info=True)
        return 1

    logger.info("Pipeline shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
