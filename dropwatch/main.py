"""Command line entry point.

    python -m dropwatch.main run
    python -m dropwatch.main check --limit 25
    python -m dropwatch.main train --lookback-days 60
    python -m dropwatch.main train-hours
"""

import argparse
import asyncio
import logging
import signal
from typing import Optional

from prometheus_client import start_http_server

from dropwatch.config import settings
from dropwatch.db.models import Base
from dropwatch.db.session import engine
from dropwatch.logging_config import setup_logging
from dropwatch.worker.scheduler import setup_scheduler
from dropwatch.worker.tasks import task_runner

logger = logging.getLogger(__name__)


async def init_db():
    """Create tables that don't exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def run_service():
    """Run the scheduler and metrics endpoint until interrupted."""
    logger.info("Starting dropwatch...")
    await init_db()
    await task_runner.initialize()

    start_http_server(settings.metrics_port)
    logger.info(f"Metrics exposed on :{settings.metrics_port}")

    scheduler = setup_scheduler(task_runner)
    scheduler.start()
    logger.info("Scheduler started")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops
            pass

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        scheduler.shutdown(wait=False)
        await task_runner.close()
        await engine.dispose()
        logger.info("Shutdown complete")


async def run_check(limit: Optional[int]):
    await init_db()
    try:
        result = await task_runner.run_candidate_checks(limit)
    finally:
        await task_runner.close()
        await engine.dispose()

    if result is None:
        logger.error("Candidate check failed")
        return 1
    print(f"checked={result.checked} live_found={result.live_found}")
    return 0


async def run_train(args: argparse.Namespace):
    await init_db()
    try:
        calibrator = await task_runner.train_drop_classifier(
            lookback_days=args.lookback_days,
            horizon_minutes=args.horizon_minutes,
            history_window_days=args.history_window_days,
            sample_step_minutes=args.sample_step_minutes,
            max_samples=args.max_samples,
        )
    finally:
        await engine.dispose()

    if calibrator is None:
        print("No calibrator trained (insufficient data or error)")
        return 1
    print(
        f"a={calibrator.a:.4f} b={calibrator.b:.4f} rows={calibrator.rows} "
        f"auc={calibrator.auc} precisionAt10={calibrator.precision_at10}"
    )
    return 0


async def run_train_hours(horizon_days: Optional[int]):
    await init_db()
    try:
        model = await task_runner.hour_weights.train(task_runner.session_factory, horizon_days)
    finally:
        await engine.dispose()
    print(f"retailers={len(model['retailers'])} horizonDays={model['horizonDays']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dropwatch", description="Drop signal detection pipeline")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Run the scheduler and metrics server")

    check = subparsers.add_parser("check", help="Check one batch of candidate URLs")
    check.add_argument(
        "--limit",
        type=int,
        default=None,
        help=f"Candidates to check (default: {settings.url_candidate_batch_size})",
    )

    train = subparsers.add_parser("train", help="Train the drop classifier calibration")
    train.add_argument("--lookback-days", type=int, default=None)
    train.add_argument("--horizon-minutes", type=int, default=None)
    train.add_argument("--history-window-days", type=int, default=None)
    train.add_argument("--sample-step-minutes", type=int, default=None)
    train.add_argument("--max-samples", type=int, default=None)

    hours = subparsers.add_parser("train-hours", help="Train the per-retailer hour weight model")
    hours.add_argument("--horizon-days", type=int, default=None)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    if args.command == "run":
        asyncio.run(run_service())
        return 0
    if args.command == "check":
        return asyncio.run(run_check(args.limit))
    if args.command == "train":
        return asyncio.run(run_train(args))
    if args.command == "train-hours":
        return asyncio.run(run_train_hours(args.horizon_days))
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
