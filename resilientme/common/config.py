"""Central environment-driven settings shared by all services.

Each service process loads this once at startup. Service-specific behavior is
controlled by environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "unknown-service"
    log_level: str = "INFO"
    kafka_bootstrap_servers: str = "kafka:9092"
    redis_url: str = "redis://redis:6379/0"
    postgres_dsn: str
    api_key: str
    admin_api_key: str = ""
    ledger_url: str = "http://ledger:8001"
    aggregator_url: str = "http://aggregator:8002"
    notification_url: str = "http://notification:8003"
    community_url: str = "http://community:8004"
    text_generator_url: str = "http://text-generator:8080/v1/generate"
    push_gateway_url: str = "http://push-gateway:8090/v1/multicast"
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    tracing_enabled: bool = True
    internal_timeout_seconds: float = 5.0

    transaction_max_attempts: int = 5

    rate_limit_create_entry: int = 5
    rate_limit_create_entry_window_seconds: int = 600
    rate_limit_create_post: int = 5
    rate_limit_create_post_window_seconds: int = 600
    rate_limit_react: int = 20
    rate_limit_react_window_seconds: int = 60
    rate_limit_report: int = 10
    rate_limit_report_window_seconds: int = 60
    rate_limit_export: int = 3
    rate_limit_export_window_seconds: int = 600
    rate_limit_recovery_plan: int = 10
    rate_limit_recovery_plan_window_seconds: int = 3600
    retention_days: int = 7
    retention_sweep_interval_seconds: int = 3600

    high_impact_threshold: float = 7.0
    followup_delay_hours: int = 24
    score_window_days: int = 7
    insight_window_size: int = 200
    challenge_hour_utc: int = 5

    notification_tick_seconds: float = 60.0
    notification_batch_size: int = 20
    notification_lease_seconds: int = 300

    export_bucket: str = "resilientme-exports"
    image_bucket: str = "resilientme-images"
    export_url_ttl_seconds: int = 3600
    aws_region: str = "us-east-1"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
