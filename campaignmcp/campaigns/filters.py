"""Filtering, pagination and aggregation over in-memory campaign rows."""

from __future__ import annotations

import json
import math
from datetime import date, datetime
from typing import Any, Iterable

from loguru import logger

from campaignmcp.campaigns.models import Campaign, CampaignFilters, Pagination

DEFAULT_ROAS_DAY = 7


def _contains(haystack: str, needle: str | None) -> bool:
    return not needle or needle.lower() in (haystack or "").lower()


def parse_month(value: str | None) -> date | None:
    """"2024-01", "2024-01-15" or an ISO timestamp -> date; None if unparseable."""
    if not value:
        return None
    text = str(value).strip()
    for fmt in ("%Y-%m-%d", "%Y-%m"):
        try:
            return datetime.strptime(text[:10] if fmt == "%Y-%m-%d" else text[:7], fmt).date()
        except ValueError:
            continue
    return None


def matches(campaign: Campaign, filters: CampaignFilters) -> bool:
    if not _contains(campaign.game, filters.game):
        return False
    if not _contains(campaign.network, filters.network):
        return False
    if filters.store and campaign.store != filters.store:
        return False
    if not _contains(campaign.campaign_name, filters.campaign_name):
        return False

    if filters.month_from or filters.month_to:
        month = parse_month(campaign.month)
        if month is not None:
            low = parse_month(filters.month_from)
            high = parse_month(filters.month_to)
            if low is not None and month < low:
                return False
            if high is not None and month > high:
                return False

    if filters.min_cpi is not None and campaign.cpi < filters.min_cpi:
        return False
    if filters.max_cpi is not None and campaign.cpi > filters.max_cpi:
        return False

    if filters.min_roas is not None or filters.max_roas is not None:
        roas = campaign.roas_value(filters.roas_day if filters.roas_day is not None else DEFAULT_ROAS_DAY)
        if filters.min_roas is not None and roas < filters.min_roas:
            return False
        if filters.max_roas is not None and roas > filters.max_roas:
            return False
    return True


def apply_campaign_filters(campaigns: Iterable[Campaign], filters: CampaignFilters) -> list[Campaign]:
    return [c for c in campaigns if matches(c, filters)]


def paginate(items: list[Any], page: int = 1, page_size: int = 50) -> tuple[list[Any], Pagination]:
    total = len(items)
    start = (page - 1) * page_size
    return items[start:start + page_size], Pagination(
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if page_size else 0,
        total_records=total,
    )


def parse_filter_expression(expression: str | None) -> dict[str, Any]:
    """JSON object of field -> exact value. Invalid input means no filter."""
    if not expression:
        return {}
    try:
        parsed = json.loads(expression)
    except json.JSONDecodeError:
        logger.warning("Failed to parse filter expression: {}", expression)
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Filter expression is not an object: {}", expression)
        return {}
    return parsed


def apply_expression_filters(campaigns: Iterable[Campaign], expression: dict[str, Any]) -> list[Campaign]:
    """Keep rows whose top-level fields equal every value in expression."""
    if not expression:
        return list(campaigns)
    kept = []
    for campaign in campaigns:
        record = campaign.to_record()
        if all(record.get(key) == value for key, value in expression.items()):
            kept.append(campaign)
    return kept


def metric_value(campaign: Campaign, metric: str) -> float:
    if metric == "cpi":
        return float(campaign.cpi)
    if metric == "acquired_users":
        return float(campaign.acquired_users)
    kind, _, day = metric.partition("_d")
    if day.isdigit():
        if kind == "roas":
            return campaign.roas_value(int(day))
        if kind == "retention":
            return campaign.retention_value(int(day))
    return 0.0


def group_key(campaign: Campaign, group_by: str) -> str:
    if group_by in ("month", "network", "store", "campaign_name"):
        return str(getattr(campaign, group_by))
    return "unknown"


def aggregate_values(values: list[float], aggregation: str) -> float:
    values = [v for v in values if not math.isnan(v)]
    if not values:
        return 0.0
    if aggregation == "sum":
        return sum(values)
    if aggregation == "avg":
        return sum(values) / len(values)
    if aggregation == "min":
        return min(values)
    if aggregation == "max":
        return max(values)
    return 0.0
