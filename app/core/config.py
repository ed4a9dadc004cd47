"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Comma-separated list. Empty = default list in app.main.
    cors_origins: str = ""
    # Trusted proxy IPs (comma-separated). Used for X-Forwarded-For in production.
    trusted_proxy_ips: str = ""
    # Public URL of the site, used to build OxaPay callback/return URLs.
    base_url: str = "http://localhost:3000"

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # Docker-compose variables (not used by app directly)
    postgres_db: str | None = None
    postgres_user: str | None = None
    postgres_password: str | None = None

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # AUTH
    # ===========================================
    session_secret: str  # Required, no default
    session_cookie_name: str = "session"
    session_ttl: int = 30 * 24 * 3600  # 30 days
    admin_api_key: str | None = None  # Admin routes are closed while unset
    cron_secret: str | None = None

    # ===========================================
    # OXAPAY (crypto payments)
    # ===========================================
    oxapay_api_url: str = "https://api.oxapay.com"
    oxapay_api_key: str = ""
    oxapay_merchant_id: str = ""
    oxapay_timeout: float = 30.0
    oxapay_invoice_lifetime_minutes: int = 30
    oxapay_white_label_lifetime_minutes: int = 60

    # ===========================================
    # VIP PRICING
    # ===========================================
    payment_test_mode: bool = False
    vip_price: float = 50.0
    vip_test_price: float = 1.0
    vip_currency: str = "USD"
    # Underpayment tolerance in percent
    vip_under_paid_cover: float = 1.0
    vip_test_under_paid_cover: float = 10.0
    recent_pending_window_hours: int = 24

    # ===========================================
    # CHAT
    # ===========================================
    support_email: str = "support@example.com"
    support_username: str = "Support"
    support_welcome_message: str = "Hello! How can we help you today?"
    chat_message_max_length: int = 5000
    chat_preview_length: int = 100

    # ===========================================
    # FEED CACHE
    # ===========================================
    feed_cache_max_size: int = 2000
    feed_cache_ttl: int = 60

    # ===========================================
    # INTERNAL SERVICES
    # ===========================================
    http_client_timeout: float = 10.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    request_id_header: str = "X-Request-Id"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    @property
    def vip_webhook_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/payment/vip-webhook"

    @field_validator("session_secret")
    @classmethod
    def validate_session_secret(cls, v: str) -> str:
        """Ensure session secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("session_secret must be at least 16 characters")
        if v in ("changeme", "secret", "password", "admin"):
            raise ValueError("session_secret is too weak, please change it")
        return v

    @field_validator("base_url")
    @classmethod
    def strip_base_url(cls, v: str) -> str:
        return v.strip().rstrip("/")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
