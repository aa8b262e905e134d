"""
Background scheduler for refresh token housekeeping.
Deletes expired refresh tokens every day at 03:00 UTC.
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from django.conf import settings
from django_apscheduler.jobstores import DjangoJobStore

logger = logging.getLogger(__name__)

_scheduler = None


def clean_expired_tokens_job():
    """
    Job function: remove expired refresh tokens
    """
    from apps.accounts.services import CredentialService

    try:
        deleted = CredentialService.clean_expired()
        logger.info("Token cleanup finished, %s rows removed", deleted)
    except Exception:
        logger.exception("Error in token cleanup job")


def start_scheduler():
    """
    Start the background scheduler (once per process)
    """
    global _scheduler
    if _scheduler is not None:
        return _scheduler

    scheduler = BackgroundScheduler(timezone=settings.TIME_ZONE)
    scheduler.add_jobstore(DjangoJobStore(), "default")

    scheduler.add_job(
        clean_expired_tokens_job,
        trigger=CronTrigger(hour=3, minute=0),
        id='clean_expired_tokens_job',
        name='Clean expired refresh tokens daily',
        replace_existing=True,
        max_instances=1,
    )

    scheduler.start()
    _scheduler = scheduler
    logger.info("Token cleanup scheduler started. Will run every day at 03:00 %s.", settings.TIME_ZONE)
    return scheduler
