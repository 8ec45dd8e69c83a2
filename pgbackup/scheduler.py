"""
APScheduler configuration for running pgbackup as a long-lived process.

An alternative to cron: the backup job is triggered by a cron expression
(SCHEDULE_CRON) and never runs twice at the same time.
"""

import logging
import sys

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from pgbackup import configure_logging
from pgbackup.backup.executor import run_backup
from pgbackup.config import Config, ConfigError


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'pgbackup'

# Global scheduler instance
scheduler = None


def init_scheduler(config: Config):
    """
    Initialize and configure APScheduler.

    Args:
        config: Job configuration

    Returns:
        The scheduler instance

    Raises:
        ValueError: If SCHEDULE_CRON is not a valid cron expression
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending runs into one
        'max_instances': 1,  # Never overlap two runs
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(
        executors=executors,
        job_defaults=job_defaults
    )

    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[config],
        trigger=CronTrigger.from_crontab(config.schedule_cron),
        id=BACKUP_JOB_ID,
        name=f"Backup: {config.backup_prefix}",
        replace_existing=True
    )

    logger.info(f"Scheduled backup job: {config.backup_prefix} ({config.schedule_cron})")
    return scheduler


def start_scheduler():
    """
    Start the scheduler. Blocks until the scheduler is shut down.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    scheduler.start()


def stop_scheduler():
    """Stop the scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None


def _execute_backup_wrapper(config: Config):
    """
    Run one backup in scheduler context.

    Args:
        config: Job configuration
    """
    try:
        logger.info("Scheduler executing backup job")
        result = run_backup(config)
        logger.info(f"Backup job completed with status: {result.status.value}")
    except Exception as e:
        logger.exception(f"Scheduler backup job failed: {e}")


def main() -> int:
    """Entry point for the pgbackup-scheduler command."""
    try:
        config = Config.from_env()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    try:
        configure_logging(config)
    except OSError as e:
        print(f"ERROR: Failed to open log file {config.log_file}: {e}", file=sys.stderr)
        return 1

    try:
        init_scheduler(config)
    except ValueError as e:
        logger.error(f"Invalid SCHEDULE_CRON {config.schedule_cron!r}: {e}")
        return 2

    try:
        start_scheduler()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down scheduler")
    finally:
        stop_scheduler()

    return 0


if __name__ == '__main__':
    sys.exit(main())
