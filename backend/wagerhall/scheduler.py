"""Job scheduler using APScheduler."""

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from wagerhall.config import Settings
from wagerhall.distribution import FeeDistributor

logger = logging.getLogger(__name__)


async def distribution_job(distributor: FeeDistributor) -> None:
    """Scheduler job wrapper for one fee distribution run."""
    try:
        report = await distributor.run_once()
        if report is not None:
            logger.info(
                "Fee distribution: %d transfers, %d failed, baseline advanced: %s",
                len(report.transfers),
                len(report.failed),
                report.baseline_advanced,
            )
    except Exception as exc:
        logger.error("Fee distribution run failed: %s", exc, exc_info=True)


def build_scheduler(settings: Settings, distributor: FeeDistributor | None) -> AsyncIOScheduler:
    """Create the scheduler; the distribution job runs immediately, then on its interval."""
    scheduler = AsyncIOScheduler(timezone=timezone.utc)

    if distributor is not None:
        scheduler.add_job(
            distribution_job,
            IntervalTrigger(seconds=settings.distribution.interval_seconds),
            args=[distributor],
            id="fee-distribution",
            name="Fee Distribution",
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            f"Registered job: Fee Distribution "
            f"(every {settings.distribution.interval_seconds:g}s)"
        )

    return scheduler
