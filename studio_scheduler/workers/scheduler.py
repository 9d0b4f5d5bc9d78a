import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..config import get_settings
from ..core.errors import SchedulingUnavailable
from ..services.scheduling_service import SchedulingEngine

logger = logging.getLogger(__name__)


def reconcile_index(engine: SchedulingEngine) -> dict[str, int] | None:
    try:
        report = engine.reconcile()
    except SchedulingUnavailable:
        logger.warning("Index reconciliation skipped; storage unavailable", exc_info=True)
        return None
    if report["resynced"] or report["participant_drift"]:
        logger.warning("Index reconciliation found drift", extra=report)
    else:
        logger.info("Index reconciliation clean", extra=report)
    return report


def get_scheduler(engine: SchedulingEngine) -> AsyncIOScheduler:
    settings = get_settings()
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        reconcile_index,
        "interval",
        minutes=settings.reconcile_interval_minutes,
        args=[engine],
        id="reconcile_index",
        max_instances=1,
        coalesce=True,
    )
    return scheduler
