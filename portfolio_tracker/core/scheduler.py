"""
In-process periodic price refresh.

The UI process owns the DuckDB file, so the recurring refresh tick runs
inside it. The job is a thin wrapper: the trading-window policy lives in
the refresh service.
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from portfolio_tracker.core.errors import RefreshError
from portfolio_tracker.core.refresh import RefreshResult
from portfolio_tracker.core.tracker import Tracker


logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60
REFRESH_JOB_ID = "price_refresh"


def run_scheduled_refresh(tracker: Tracker) -> RefreshResult | None:
    """One scheduled cycle. Failures are logged, the next tick tries again."""
    try:
        result = tracker.trigger_refresh()
    except RefreshError as e:
        logger.error("Scheduled refresh failed: %s", e)
        return None

    logger.info("Scheduled refresh: %s", result.message)
    return result


def start_scheduler(
    tracker: Tracker,
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    scheduler: BackgroundScheduler | None = None,
) -> BackgroundScheduler:
    """
    Register the refresh job and start the scheduler.

    A tick that fires while the previous one is still running is skipped.
    """
    if scheduler is None:
        scheduler = BackgroundScheduler(timezone=tracker.refresher.tz)

    scheduler.add_job(
        run_scheduled_refresh,
        trigger=IntervalTrigger(seconds=interval_seconds),
        args=[tracker],
        id=REFRESH_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()

    logger.info("Scheduler started, refreshing every %ss", interval_seconds)
    return scheduler


def shutdown_scheduler(scheduler: BackgroundScheduler | None) -> None:
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shut down")
