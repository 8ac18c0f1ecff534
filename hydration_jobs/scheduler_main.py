"""CLI entrypoint for the hydration scheduler."""

import argparse
import asyncio
import logging
import signal
import sys

import aioboto3

from hydration_jobs.config import HydrationConfig
from hydration_jobs.ddl import ALL_DDL
from hydration_jobs.metrics import start_metrics_server
from hydration_jobs.outbox import OutboxDispatcher, run_outbox_dispatcher_loop
from hydration_jobs.reconciler import HydrationReconciler
from hydration_jobs.scheduler import run_scheduler_loop
from hydration_jobs.worker_main import create_db_pool, setup_logging


async def run_scheduler(config: HydrationConfig, db_pool, sqs_client, logger, shutdown_event):
    """Run the reconcile loop and the outbox drain loop side by side."""
    dispatcher = OutboxDispatcher(
        db_pool, sqs_client, config.sqs_queue_url, config.queue_name, logger
    )
    await asyncio.gather(
        run_scheduler_loop(
            config=config,
            db_pool=db_pool,
            logger=logger,
            shutdown_event=shutdown_event,
        ),
        run_outbox_dispatcher_loop(
            dispatcher,
            logger,
            poll_seconds=config.outbox_poll_seconds,
            batch_size=config.outbox_batch_size,
            shutdown_event=shutdown_event,
        ),
    )


def main():
    """Main entrypoint for scheduler."""
    setup_logging()
    logger = logging.getLogger(__name__)

    parser = argparse.ArgumentParser(description="Content Hydration Scheduler")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single reconciliation pass and exit",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create the hydration tables before starting",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Serve Prometheus metrics on this port (default: HYDRATION_METRICS_PORT)",
    )

    args = parser.parse_args()

    try:
        config = HydrationConfig.from_env()
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    if args.metrics_port is not None:
        config.metrics_port = args.metrics_port

    # Setup shutdown event
    shutdown_event = asyncio.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    async def run():
        """Async main function."""
        db_pool = None
        try:
            logger.info("Creating database connection pool...")
            db_pool = await create_db_pool(config)

            if args.init_db:
                async with db_pool.acquire() as conn:
                    await conn.execute(ALL_DDL)
                logger.info("Hydration tables created")

            if args.once:
                report = await HydrationReconciler(config, db_pool, logger).reconcile()
                logger.info(f"Single pass finished: {report!r}")
                return

            logger.info("Starting scheduler loop...")
            start_metrics_server(config.metrics_port, logger)
            async with aioboto3.Session().client("sqs") as sqs_client:
                await run_scheduler(config, db_pool, sqs_client, logger, shutdown_event)
        except Exception as e:
            logger.error(f"Fatal error in scheduler: {e}", exc_info=True)
            sys.exit(1)
        finally:
            if db_pool:
                logger.info("Closing database connection pool...")
                await db_pool.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
