from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Core
    environment: str = Field("development", alias="STOREFRONT_ENVIRONMENT")
    log_level: str = Field("INFO", alias="STOREFRONT_LOG_LEVEL")

    # Behavioral vector
    recency_window_ms: int = Field(300_000, alias="STOREFRONT_RECENCY_WINDOW_MS", gt=0)

    # Pattern detection
    cluster_radius: float = Field(50.0, alias="STOREFRONT_CLUSTER_RADIUS", gt=0)
    cluster_method: Literal["greedy", "dbscan"] = Field("greedy", alias="STOREFRONT_CLUSTER_METHOD")
    min_occurrences_for_pattern: int = Field(3, alias="STOREFRONT_MIN_OCCURRENCES")
    min_session_percent_for_pattern: float = Field(5.0, alias="STOREFRONT_MIN_SESSION_PERCENT")

    # Insight filtering
    min_signal_strength: int = Field(30, alias="STOREFRONT_MIN_SIGNAL_STRENGTH")
    max_insights_per_report: int = Field(10, alias="STOREFRONT_MAX_INSIGHTS")

    # Default business config
    average_order_value: float = Field(75.0, alias="STOREFRONT_AVERAGE_ORDER_VALUE")
    monthly_visitors: int = Field(1000, alias="STOREFRONT_MONTHLY_VISITORS")
    current_conversion_rate: float = Field(3.0, alias="STOREFRONT_CONVERSION_RATE")

    # Identity classification backend (optional)
    classifier_endpoint: str | None = Field(None, alias="STOREFRONT_CLASSIFIER_ENDPOINT")
    classifier_api_key: str | None = Field(None, alias="STOREFRONT_CLASSIFIER_API_KEY")
    classifier_model: str = Field("identity-classifier", alias="STOREFRONT_CLASSIFIER_MODEL")
    classifier_timeout_seconds: float = Field(5.0, alias="STOREFRONT_CLASSIFIER_TIMEOUT")
    identity_cache_ttl_seconds: float = Field(60.0, alias="STOREFRONT_IDENTITY_CACHE_TTL")
    breaker_failure_threshold: int = Field(5, alias="STOREFRONT_BREAKER_FAILURE_THRESHOLD")
    breaker_recovery_timeout: float = Field(60.0, alias="STOREFRONT_BREAKER_RECOVERY_TIMEOUT")

    # Learning loop
    learning_event_threshold: int = Field(50, alias="STOREFRONT_LEARNING_EVENT_THRESHOLD")
    learning_cooldown_seconds: float = Field(300.0, alias="STOREFRONT_LEARNING_COOLDOWN")
    auto_apply_rule_confidence: float = Field(0.9, alias="STOREFRONT_AUTO_APPLY_RULE_CONFIDENCE")
    auto_apply_identity_confidence: float = Field(0.8, alias="STOREFRONT_AUTO_APPLY_IDENTITY_CONFIDENCE")
    min_events_for_metrics: int = Field(20, alias="STOREFRONT_MIN_EVENTS_FOR_METRICS")
    significance_threshold: float = Field(0.95, alias="STOREFRONT_SIGNIFICANCE_THRESHOLD")
    cycle_history_limit: int = Field(100, alias="STOREFRONT_CYCLE_HISTORY_LIMIT")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "allow"
        populate_by_name = True

    def business_defaults(self) -> dict:
        return {
            "average_order_value": self.average_order_value,
            "monthly_visitors": self.monthly_visitors,
            "current_conversion_rate": self.current_conversion_rate,
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def reset_settings() -> None:
    get_settings.cache_clear()
