"""Built-in step modules."""

from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable, Optional

import httpx

from ..config import StepflowConfig
from ..utils.circuit_breaker import CircuitBreakerRegistry
from ..utils.retry import RetryPolicy
from .data_aggregator import data_aggregator
from .data_filter import data_filter
from .data_transformer import data_transformer
from .delay import DelayModule
from .http_request import RETRYABLE_ERRORS, HttpRequestModule
from .marketplace import (
    GetCampaignsModule,
    GetStatsModule,
    MarketplaceClient,
    campaign_stats_merge,
    marketplace_host,
)
from .metric_calculator import metric_calculator

if TYPE_CHECKING:  # pragma: no cover
    from ..registry import ModuleRegistry


def build_retry_policy(
    settings: StepflowConfig, sleep: Optional[Callable[[float], Awaitable[None]]] = None
) -> RetryPolicy:
    kwargs = {"sleep": sleep} if sleep is not None else {}
    return RetryPolicy(
        max_retries=settings.retry.max_retries,
        base_delay=settings.retry.base_delay,
        max_delay=settings.retry.max_delay,
        backoff_factor=settings.retry.backoff_factor,
        retry_on=RETRYABLE_ERRORS,
        **kwargs,
    )


def build_breakers(settings: StepflowConfig) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(
        failure_threshold=settings.circuit_breaker.failure_threshold,
        reset_timeout=settings.circuit_breaker.reset_timeout,
        monitoring_period=settings.circuit_breaker.monitoring_period,
        expected_exceptions=RETRYABLE_ERRORS,
    )


def register_builtin_modules(
    registry: "ModuleRegistry",
    settings: Optional[StepflowConfig] = None,
    breakers: Optional[CircuitBreakerRegistry] = None,
    client_factory: Callable[..., httpx.AsyncClient] = httpx.AsyncClient,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> "ModuleRegistry":
    """Register every built-in module on ``registry``.

    Outbound modules share one retry policy and draw their circuit breakers
    from ``breakers`` (one per remote host).
    """
    settings = settings or StepflowConfig()
    breakers = breakers or build_breakers(settings)
    retry_policy = build_retry_policy(settings, sleep)

    registry.register("data-filter", data_filter, "Keep list items matching every predicate")
    registry.register(
        "metric-calculator", metric_calculator, "Evaluate arithmetic formulas per item"
    )
    registry.register(
        "data-aggregator", data_aggregator, "Group and aggregate numeric fields"
    )
    registry.register(
        "data-transformer", data_transformer, "Rename, compute, remove and format fields"
    )
    registry.register(
        "http-request",
        HttpRequestModule(
            retry_policy, breakers, timeout=settings.http_timeout, client_factory=client_factory
        ),
        "Guarded outbound HTTP call",
    )
    registry.register(
        "delay",
        DelayModule(sleep) if sleep is not None else DelayModule(),
        "Wait, then pass the input through",
    )

    client = MarketplaceClient(
        settings.marketplace,
        retry_policy,
        breakers.get(marketplace_host(settings.marketplace)),
        client_factory=client_factory,
    )
    registry.register(
        "wb-get-campaigns", GetCampaignsModule(client), "Fetch advertising campaigns"
    )
    registry.register("wb-get-stats", GetStatsModule(client), "Fetch campaign statistics")
    registry.register(
        "campaign-stats-merge", campaign_stats_merge, "Join campaigns with their statistics"
    )
    return registry


__all__ = [
    "data_filter",
    "metric_calculator",
    "data_aggregator",
    "data_transformer",
    "HttpRequestModule",
    "DelayModule",
    "MarketplaceClient",
    "GetCampaignsModule",
    "GetStatsModule",
    "campaign_stats_merge",
    "build_retry_policy",
    "build_breakers",
    "register_builtin_modules",
]
