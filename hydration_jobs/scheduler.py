"""Scheduler logic for hydration jobs."""

import asyncio
import logging
import time
from typing import Optional

import asyncpg

from hydration_jobs.config import HydrationConfig
from hydration_jobs.reconciler import HydrationReconciler
from hydration_jobs.service import HydrationJobService


async def run_scheduler_loop(
    config: HydrationConfig,
    db_pool: asyncpg.Pool,
    logger: logging.Logger,
    reconciler: Optional[HydrationReconciler] = None,
    loop_interval_seconds: int = 5,
    reaper_interval_seconds: int = 60,
    shutdown_event: asyncio.Event = None,
) -> None:
    """
    Run the scheduler loop that reconciles roots and reaps stale claims.

    Args:
        config: Hydration configuration
        db_pool: Database connection pool
        logger: Logger instance
        reconciler: Reconciler to run (created from config if omitted)
        loop_interval_seconds: Time to sleep between iterations
        reaper_interval_seconds: Time between stale-claim reaper runs
        shutdown_event: Optional event to signal shutdown
    """
    job_service = HydrationJobService(config, db_pool, logger=logger)
    reconciler = reconciler or HydrationReconciler(config, db_pool, logger)

    logger.info(
        f"Starting scheduler loop (reconcile every {config.reconcile_interval_seconds}s)"
    )

    last_reconcile: Optional[float] = None
    last_reaper_run = time.monotonic()

    while True:
        if shutdown_event and shutdown_event.is_set():
            logger.info("Shutdown signal received, exiting scheduler loop")
            break

        now = time.monotonic()

        if now - last_reaper_run >= reaper_interval_seconds:
            try:
                await job_service.reap_stale_claims()
            except Exception as e:
                logger.error(f"Error in stale-claim reaper: {str(e)}", exc_info=True)
            last_reaper_run = now

        if last_reconcile is None or now - last_reconcile >= config.reconcile_interval_seconds:
            try:
                await reconciler.reconcile()
            except Exception as e:
                logger.error(f"Error in reconciler: {str(e)}", exc_info=True)
            last_reconcile = now

        await asyncio.sleep(loop_interval_seconds)
