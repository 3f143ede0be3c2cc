"""Connector modules for the marketplace advertising API.

``wb-get-campaigns`` and ``wb-get-stats`` fetch data through
:class:`MarketplaceClient`, whose calls run inside a per-host circuit breaker
wrapping the retry policy. ``campaign-stats-merge`` joins the two results.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

import httpx

from ..config import MarketplaceConfig
from ..errors import ModuleConfigurationError
from ..utils.circuit_breaker import CircuitBreaker
from ..utils.retry import RetryPolicy
from .fields import get_path
from .http_request import check_response, parse_body

logger = logging.getLogger(__name__)

CAMPAIGN_STATUS_CODES = {"active": 9, "paused": 11, "ended": 7}


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class MarketplaceClient:
    """Thin async client for the advertising API endpoints the workflows use."""

    def __init__(
        self,
        config: MarketplaceConfig,
        retry_policy: RetryPolicy,
        breaker: CircuitBreaker,
        client_factory: Callable[..., httpx.AsyncClient] = httpx.AsyncClient,
    ) -> None:
        self.base_url = config.base_url.rstrip("/")
        self.default_token = config.token
        self.timeout = config.timeout
        self._retry = retry_policy
        self._breaker = breaker
        self._client_factory = client_factory

    async def _request(self, method: str, path: str, token: Optional[str], **kwargs: Any) -> Any:
        token = token or self.default_token
        if not token:
            raise ModuleConfigurationError("Marketplace API token is not configured")
        headers = {"Authorization": token, "Content-Type": "application/json"}

        async def _call() -> Any:
            async with self._client_factory(
                base_url=self.base_url, timeout=self.timeout
            ) as client:
                response = await client.request(method, path, headers=headers, **kwargs)
            return parse_body(check_response(response))

        return await self._breaker.execute(lambda: self._retry.execute(_call))

    async def get_campaigns(self, token: Optional[str] = None) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/adv/v1/promotion/count", token)
        return normalize_campaigns(data)

    async def get_campaign_stats(
        self,
        campaign_ids: List[int],
        date_from: str,
        date_to: str,
        token: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        data = await self._request(
            "POST",
            "/adv/v2/fullstats",
            token,
            json={"campaigns": campaign_ids, "interval": {"begin": date_from, "end": date_to}},
        )
        return normalize_stats(data)


def normalize_campaigns(data: Any) -> List[Dict[str, Any]]:
    """Flatten the grouped ``adverts`` response into one row per campaign."""
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        return []
    campaigns: List[Dict[str, Any]] = []
    for group in data.get("adverts") or []:
        for advert in group.get("advert_list") or []:
            campaigns.append(
                {
                    "campaignId": advert.get("advertId"),
                    "name": advert.get("name"),
                    "type": group.get("type"),
                    "status": group.get("status"),
                    "updated": advert.get("changeTime"),
                }
            )
    return campaigns


def normalize_stats(data: Any) -> List[Dict[str, Any]]:
    rows = data if isinstance(data, list) else (data or {}).get("stats") or []
    normalized = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        entry = dict(row)
        if "campaignId" not in entry and "advertId" in entry:
            entry["campaignId"] = entry.pop("advertId")
        normalized.append(entry)
    return normalized


def _filter_campaigns(campaigns: List[Dict[str, Any]], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
    status = filters.get("status")
    if status is not None:
        code = CAMPAIGN_STATUS_CODES.get(status, status)
        campaigns = [c for c in campaigns if c.get("status") in (code, status)]
    if filters.get("type") is not None:
        campaigns = [c for c in campaigns if c.get("type") == filters["type"]]
    return campaigns


def _campaign_ids(configuration: Dict[str, Any], input_data: Any) -> List[int]:
    ids = configuration.get("campaignIds")
    if ids:
        return list(ids)
    campaigns = get_path(input_data, "campaigns.campaigns") or get_path(input_data, "campaigns")
    if not isinstance(campaigns, list):
        data = get_path(input_data, "data.campaigns") or get_path(input_data, "data")
        campaigns = data if isinstance(data, list) else []
    return [c["campaignId"] for c in campaigns if isinstance(c, dict) and "campaignId" in c]


class GetCampaignsModule:
    def __init__(self, client: MarketplaceClient) -> None:
        self._client = client

    async def __call__(self, configuration: Dict[str, Any], input_data: Any) -> Dict[str, Any]:
        campaigns = await self._client.get_campaigns(configuration.get("authToken"))
        campaigns = _filter_campaigns(campaigns, configuration.get("filters") or {})
        logger.info(f"Fetched {len(campaigns)} marketplace campaigns")
        return {"campaigns": campaigns, "count": len(campaigns), "timestamp": _timestamp()}


class GetStatsModule:
    def __init__(self, client: MarketplaceClient) -> None:
        self._client = client

    async def __call__(self, configuration: Dict[str, Any], input_data: Any) -> Dict[str, Any]:
        date_from = configuration.get("dateFrom")
        date_to = configuration.get("dateTo")
        if not date_from or not date_to:
            raise ModuleConfigurationError("wb-get-stats requires 'dateFrom' and 'dateTo'")
        campaign_ids = _campaign_ids(configuration, input_data)
        if not campaign_ids:
            raise ModuleConfigurationError("wb-get-stats found no campaign ids")
        stats = await self._client.get_campaign_stats(
            campaign_ids, date_from, date_to, configuration.get("authToken")
        )
        logger.info(f"Fetched {len(stats)} stats rows for {len(campaign_ids)} campaigns")
        return {
            "stats": stats,
            "count": len(stats),
            "period": {"from": date_from, "to": date_to},
            "timestamp": _timestamp(),
        }


def _rows(value: Any, key: str) -> List[Dict[str, Any]]:
    # accepts a raw list or a connector module output wrapping it under ``key``
    if isinstance(value, dict):
        value = value.get(key)
    return [row for row in value or [] if isinstance(row, dict)]


def campaign_stats_merge(configuration: Dict[str, Any], input_data: Any) -> Dict[str, Any]:
    """Attach stats rows and view/click totals to each campaign."""
    if not isinstance(input_data, dict):
        raise ModuleConfigurationError("campaign-stats-merge expects a map with campaigns and stats")
    campaigns = _rows(input_data.get("campaigns"), "campaigns")
    stats = _rows(input_data.get("stats"), "stats")

    by_campaign: Dict[Any, List[Dict[str, Any]]] = {}
    for row in stats:
        by_campaign.setdefault(row.get("campaignId"), []).append(row)

    aggregated = []
    for campaign in campaigns:
        campaign_id = campaign.get("campaignId", campaign.get("id"))
        rows = by_campaign.get(campaign_id, [])
        aggregated.append(
            {
                "campaignId": campaign_id,
                "campaignName": campaign.get("name"),
                "stats": rows,
                "totalViews": sum(r.get("views") or 0 for r in rows),
                "totalClicks": sum(r.get("clicks") or 0 for r in rows),
            }
        )
    return {"aggregated": aggregated, "count": len(aggregated), "timestamp": _timestamp()}


def marketplace_host(config: MarketplaceConfig) -> str:
    return urlsplit(config.base_url).netloc or config.base_url
