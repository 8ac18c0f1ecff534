"""CLI entrypoint and programmatic interface for the hydration worker."""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Optional

import aioboto3
import asyncpg

from hydration_jobs.config import HydrationConfig
from hydration_jobs.generation import GenerationBackend, GenerationHttpClient
from hydration_jobs.metrics import start_metrics_server
from hydration_jobs.registry import HandlerRegistry, handler_registry
from hydration_jobs.worker import JobProcessor, run_worker_loop


def setup_logging():
    """Setup logging configuration."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def create_db_pool(config: HydrationConfig):
    """Create database connection pool."""
    return await asyncpg.create_pool(
        config.db_dsn, min_size=2, max_size=max(10, config.worker_concurrency * 2)
    )


def load_handlers(registry: HandlerRegistry) -> None:
    """Register the built-in handlers and make sure every job type has one."""
    import hydration_jobs.handlers  # noqa: F401

    registry.verify_complete()


async def run_worker(
    config: Optional[HydrationConfig] = None,
    db_pool=None,
    sqs_client=None,
    generator: Optional[GenerationBackend] = None,
    registry: Optional[HandlerRegistry] = None,
    logger: Optional[logging.Logger] = None,
    shutdown_event: Optional[asyncio.Event] = None,
    max_messages: int = 10,
    wait_time_seconds: int = 20,
):
    """
    Run the worker programmatically.

    Args:
        config: HydrationConfig instance. If None, will load from environment.
        db_pool: Database connection pool. If None, will create from config.
        sqs_client: aioboto3 SQS client. If None, one is opened for the run.
        generator: Generation backend. If None, uses the HTTP client from config.
        registry: HandlerRegistry instance. If None, uses the global handler_registry.
        logger: Logger instance. If None, will create default logger.
        shutdown_event: Optional asyncio.Event for graceful shutdown.
        max_messages: Max messages to receive per poll.
        wait_time_seconds: Long poll wait time in seconds.

    Example:
        ```python
        from hydration_jobs import HydrationConfig, run_worker
        import asyncio

        asyncio.run(run_worker(config=HydrationConfig.from_env()))
        ```
    """
    if config is None:
        config = HydrationConfig.from_env()

    if logger is None:
        logger = logging.getLogger(__name__)

    if registry is None:
        registry = handler_registry

    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    load_handlers(registry)

    if generator is None:
        if not config.generation_url:
            raise ValueError("HYDRATION_GENERATION_URL is required to run the worker")
        generator = GenerationHttpClient(config.generation_url, config.generation_token)

    db_pool_provided = db_pool is not None
    if db_pool is None:
        db_pool = await create_db_pool(config)

    try:
        processor = JobProcessor(config, db_pool, registry, generator, logger=logger)
        if sqs_client is None:
            async with aioboto3.Session().client("sqs") as client:
                await run_worker_loop(
                    config=config,
                    db_pool=db_pool,
                    sqs_client=client,
                    processor=processor,
                    logger=logger,
                    max_messages=max_messages,
                    wait_time_seconds=wait_time_seconds,
                    shutdown_event=shutdown_event,
                )
        else:
            await run_worker_loop(
                config=config,
                db_pool=db_pool,
                sqs_client=sqs_client,
                processor=processor,
                logger=logger,
                max_messages=max_messages,
                wait_time_seconds=wait_time_seconds,
                shutdown_event=shutdown_event,
            )
    finally:
        if not db_pool_provided and db_pool:
            await db_pool.close()


def main():
    """Main entrypoint for worker."""
    setup_logging()
    logger = logging.getLogger(__name__)

    parser = argparse.ArgumentParser(description="Content Hydration Worker")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Jobs processed at once (default: HYDRATION_WORKER_CONCURRENCY or 3)",
    )
    parser.add_argument(
        "--max-messages",
        type=int,
        default=10,
        help="Max messages to receive per poll (default: 10)",
    )
    parser.add_argument(
        "--wait-time-seconds",
        type=int,
        default=20,
        help="Long poll wait time in seconds (default: 20)",
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

    if args.concurrency is not None:
        config.worker_concurrency = max(1, args.concurrency)
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
        try:
            logger.info("Starting hydration worker...")
            start_metrics_server(config.metrics_port, logger)
            await run_worker(
                config=config,
                logger=logger,
                shutdown_event=shutdown_event,
                max_messages=args.max_messages,
                wait_time_seconds=args.wait_time_seconds,
            )
        except Exception as e:
            logger.error(f"Fatal error in worker: {e}", exc_info=True)
            sys.exit(1)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
