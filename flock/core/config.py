"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.03.00"

    # Database
    DATABASE_URL: str

    # Public site (contact link in reminder emails)
    FRONTEND_URL: str = "http://localhost:3000"

    # Email provider (Resend)
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@resend.dev"

    # SMS/MMS provider (ClickSend)
    CLICKSEND_USERNAME: str = ""
    CLICKSEND_API_KEY: str = ""
    CLICKSEND_SOURCE: str = "flock-followup"

    # Outbound HTTP timeout for provider calls
    HTTP_TIMEOUT_SECONDS: float = 20.0

    # Scheduler intervals
    FOLLOWUP_CHECK_INTERVAL_SECONDS: int = 3600
    ANNOUNCEMENT_CHECK_INTERVAL_SECONDS: int = 60
    # SENDING announcements older than this were abandoned by a dead worker
    ANNOUNCEMENT_SENDING_TIMEOUT_MINUTES: int = 30

    # Follow-up workflow thresholds (days)
    CONTACT_REMINDER_DAYS: int = 14
    FOLLOWUP_PROGRESSION_DAYS: int = 20
    NEVER_CONTACTED_DAYS: int = 30

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    @property
    def contact_url(self) -> str:
        """Public contact page linked from reminder emails."""
        return f"{self.FRONTEND_URL.rstrip('/')}/contact"

    @property
    def email_configured(self) -> bool:
        return bool(self.RESEND_API_KEY)

    @property
    def sms_configured(self) -> bool:
        return bool(self.CLICKSEND_USERNAME and self.CLICKSEND_API_KEY)


settings = Settings()
