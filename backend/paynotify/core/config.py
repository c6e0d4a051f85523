from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./paynotify.db"
    redis_url: str = "redis://localhost:6379/0"

    log_level: str = "INFO"
    log_json: bool = True

    # Inbound webhook
    stripe_webhook_secret: str | None = None
    signature_tolerance_seconds: int = 300
    max_body_bytes: int = 1_048_576  # 1 MiB

    # Webhook receiver -> enqueue endpoint
    enqueue_url: str | None = None
    enqueue_secret: str | None = None

    # Worker collaborators
    stripe_secret_key: str | None = None
    stripe_api_base: str = "https://api.stripe.com"
    resend_api_key: str | None = None
    resend_from: str | None = None
    resend_api_base: str = "https://api.resend.com"
    email_subject: str = "Codigo de acesso"
    http_timeout_seconds: float = 10.0

    # Job queue
    worker_batch_size: int = 10
    job_max_attempts: int = 5
    backoff_base_seconds: int = 30
    backoff_max_seconds: int = 3600
    stale_processing_seconds: int = 900

    # Rate limits, keyed "<endpoint>:<client-ip>"
    webhook_rate_limit: int = 120
    webhook_rate_window_ms: int = 60_000
    status_rate_limit: int = 10
    status_rate_window_ms: int = 30_000

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def webhook_configured(self) -> bool:
        return bool(
            self.stripe_webhook_secret and self.enqueue_url and self.enqueue_secret
        )

    @property
    def worker_configured(self) -> bool:
        return bool(self.stripe_secret_key and self.resend_api_key and self.resend_from)


@lru_cache
def get_settings() -> Settings:
    return Settings()
