from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


class RedisConfig(BaseModel):
    """Connection settings shared by the Redis job queue and notifier."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class QueueConfig(BaseModel):
    """Execution queue settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    workers: int = Field(default=5, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base: float = 2.0
    backoff_max: float = 60.0
    poll_interval: float = 1.0
    redis: RedisConfig = RedisConfig()
    queue_name: str = "stepflow:jobs"


class RetryConfig(BaseModel):
    """Retry policy applied around outbound module calls."""

    max_retries: int = Field(default=3, ge=0)
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout: float = 60.0
    monitoring_period: float = 60.0


class NotifierConfig(BaseModel):
    backend: Literal["inmemory", "logging", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()
    channel_prefix: str = "stepflow:execution"


class MarketplaceConfig(BaseModel):
    """Settings for the marketplace advertising API connector."""

    base_url: str = "https://advert-api.wb.ru"
    token: Optional[str] = None
    timeout: float = 30.0


class StepflowConfig(BaseModel):
    """Top-level configuration model."""

    queue: QueueConfig = QueueConfig()
    retry: RetryConfig = RetryConfig()
    circuit_breaker: CircuitBreakerConfig = CircuitBreakerConfig()
    notifier: NotifierConfig = NotifierConfig()
    marketplace: MarketplaceConfig = MarketplaceConfig()
    http_timeout: float = 30.0
    pause_poll_interval: float = 0.5
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> StepflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StepflowConfig(**data)
    else:
        config = StepflowConfig()

    env_db_url = os.getenv("STEPFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_queue = os.getenv("STEPFLOW_JOB_QUEUE")
    if env_queue:
        config.queue.backend = env_queue.lower()
    env_notifier = os.getenv("STEPFLOW_NOTIFIER")
    if env_notifier:
        config.notifier.backend = env_notifier.lower()
    env_token = os.getenv("STEPFLOW_MARKETPLACE_TOKEN")
    if env_token:
        config.marketplace.token = env_token
    return config
