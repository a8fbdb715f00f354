"""Error reporting helpers (Sentry)."""

from dataclasses import dataclass
import logging
import os

from flock.core.config import settings


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Monitoring:
    """Holds the error reporting state for a process."""

    sentry_enabled: bool


def _monitoring_enabled() -> bool:
    if settings.ENV == "dev":
        return False
    if os.getenv("TESTING", "").lower() in ("1", "true", "yes"):
        return False
    return bool(settings.SENTRY_DSN)


def setup_monitoring(service_name: str) -> Monitoring:
    """
    Initialize Sentry error tracking when a DSN is configured.

    Never raises: a missing or broken monitoring setup must not stop the worker.
    """
    if not _monitoring_enabled():
        return Monitoring(sentry_enabled=False)

    try:
        import sentry_sdk
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENV,
            release=settings.VERSION,
            server_name=service_name,
            integrations=[SqlalchemyIntegration()],
            traces_sample_rate=0.1,
            send_default_pii=False,
        )
    except Exception as exc:
        logger.warning("Sentry setup failed: %s", exc)
        return Monitoring(sentry_enabled=False)

    logger.info("Sentry initialized for error tracking")
    return Monitoring(sentry_enabled=True)


def report_exception(context: dict | None = None) -> None:
    """Report the current exception to Sentry, if enabled."""
    if not _monitoring_enabled():
        return

    try:
        import sentry_sdk

        with sentry_sdk.new_scope() as scope:
            for key, value in (context or {}).items():
                scope.set_tag(key, value)
            sentry_sdk.capture_exception()
    except Exception as exc:
        logger.warning("Failed to report exception: %s", exc)
