"""Central environment-driven settings shared by all services.

Each service process loads this once at startup. Service-specific behavior is
controlled by environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "unknown-service"
    environment: str = "local"
    log_level: str = "INFO"
    kafka_bootstrap_servers: str = "kafka:9092"
    postgres_dsn: str
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    tracing_enabled: bool = True
    admin_roles: list[str] = ["admin", "moderator"]
    recheck_roles: list[str] = ["admin"]
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_base_url: str = "https://api.razorpay.com"
    gateway_timeout_seconds: float = 10.0
    segment_stale_after_seconds: int = 3600
    audience_estimate_mode: str = "heuristic"
    audience_role_weights: dict[str, int] = {
        "everyone": 1000,
        "user": 800,
        "scrapper": 50,
        "field_executive": 50,
        "moderator": 10,
        "admin": 5,
    }
    audience_location_factor: float = 0.5
    audience_activity_factors: dict[str, float] = {"active": 0.7, "inactive": 0.2, "new": 0.1}
    scheduler_interval_seconds: float = 30.0
    outbox_batch_size: int = 100
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
