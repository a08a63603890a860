"""Auditor configuration derived from environment (AUDIT_ prefix)."""
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Auditor settings with defaults for an unattended autoplay audit."""

    model_config = ConfigDict(env_prefix="AUDIT_")

    # Service
    debug: bool = False
    log_level: str = "INFO"
    redis_url: str = "redis://localhost:6379/0"

    # Spin orchestration
    settlement_timeout_seconds: float = 8.0  # max wait for one spin to settle
    min_bet: float = 0.10
    max_bet: float = 100.0
    allowed_bets: list[float] = []  # empty = any amount within [min_bet, max_bet]

    # Autoplay defaults
    default_bet: float = 1.0
    default_starting_balance: float = 1000.0
    simulated_settle_delay_seconds: float = 0.0
    max_retained_sessions: int = 1000  # stopped sessions beyond this are evicted, oldest first

    # Distribution test
    confidence_level: float = 0.95
    min_expected_count: float = 5.0

    # Pooled distribution store (Redis key namespace)
    store_key_prefix: str = "dist"


settings = Settings()
