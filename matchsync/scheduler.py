# matchsync/scheduler.py
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from . import config
from .aggregators import prune_viewer_scenarios
from .services import get_store
from .utils import logger

scheduler = BackgroundScheduler(timezone=config.SCHEDULE_TIMEZONE)


def prune_job():
    try:
        prune_viewer_scenarios(get_store())
    except Exception:
        logger.exception("Scheduled scenario pruning failed")


# daily at 03:00 local schedule time
scheduler.add_job(
    prune_job,
    CronTrigger(hour=3, minute=0, timezone=config.SCHEDULE_TIMEZONE),
    id="prune_viewer_scenarios",
    replace_existing=True,
)


def start_scheduler():
    if not config.SCHEDULER_ENABLED or scheduler.running:
        return
    scheduler.start()
    logger.info("Scheduler started")


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
