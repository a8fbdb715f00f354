"""
Background worker for the follow-up scheduler.

Usage:
    python -m flock.worker

Runs the follow-up checks on start and then every
FOLLOWUP_CHECK_INTERVAL_SECONDS, and delivers due scheduled announcements
every ANNOUNCEMENT_CHECK_INTERVAL_SECONDS. Run it as a separate process
(systemd service, container) or through flock.worker_service.
"""

import asyncio
import logging

from flock.core.config import settings
from flock.core.monitoring import report_exception, setup_monitoring
from flock.core.structured_logging import build_log_context
from flock.db.session import SessionLocal
from flock.services import announcement_service, followup_scheduler_service

monitoring = setup_monitoring("flock-worker")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


async def run_followup_tick() -> dict:
    """Run every follow-up rule once in a fresh session."""
    with SessionLocal() as db:
        return await followup_scheduler_service.run_followup_checks(db)


async def run_announcement_tick() -> dict:
    with SessionLocal() as db:
        return await announcement_service.process_scheduled_announcements(db)


async def _periodic(name: str, tick, interval_seconds: int) -> None:
    while True:
        try:
            await tick()
        except Exception:
            report_exception(build_log_context(rule=name))
            logger.exception("Error in %s loop", name)

        await asyncio.sleep(interval_seconds)


async def followup_loop() -> None:
    await _periodic("followup_checks", run_followup_tick, settings.FOLLOWUP_CHECK_INTERVAL_SECONDS)


async def announcement_loop() -> None:
    await _periodic(
        "scheduled_announcements",
        run_announcement_tick,
        settings.ANNOUNCEMENT_CHECK_INTERVAL_SECONDS,
    )


async def worker_loop() -> None:
    """Main worker loop - runs the follow-up and announcement schedules."""
    logger.info(
        "Worker starting (follow-up interval: %ss, announcement interval: %ss)",
        settings.FOLLOWUP_CHECK_INTERVAL_SECONDS,
        settings.ANNOUNCEMENT_CHECK_INTERVAL_SECONDS,
    )

    if not settings.email_configured:
        logger.warning("RESEND_API_KEY not set - reminder emails will fail and be retried")
    if not settings.sms_configured:
        logger.warning("ClickSend credentials not set - SMS/MMS sends will fail")

    await asyncio.gather(followup_loop(), announcement_loop())


def main() -> None:
    """Entry point for the worker."""
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        report_exception(build_log_context(rule="worker"))
        logger.exception("Worker crashed")
        raise


if __name__ == "__main__":
    main()
