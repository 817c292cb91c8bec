"""CampaignDataProvider: the data capability consumed by the campaign tools."""

from __future__ import annotations

import csv
import json
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from campaignmcp.campaigns.filters import (
    aggregate_values,
    apply_campaign_filters,
    apply_expression_filters,
    group_key,
    metric_value,
    paginate,
    parse_filter_expression,
)
from campaignmcp.campaigns.models import (
    AggregateResult,
    AggregateRow,
    Campaign,
    CampaignFilters,
    CampaignPage,
    ExportResult,
)
from campaignmcp.utils.exceptions import ValidationError

CSV_HEADERS = [
    "id",
    "game",
    "campaign_name",
    "network",
    "store",
    "month",
    "acquired_users",
    "cpi",
    "roas_d0",
    "roas_d7",
    "roas_d30",
    "roas_d365",
    "retention_d0",
    "retention_d7",
    "retention_d30",
    "retention_d365",
]

_REQUIRED_STR = ("game", "campaign_name", "network", "store", "month")


class CampaignDataProvider(Protocol):
    def list_filtered(self, filters: CampaignFilters) -> CampaignPage: ...

    def get_by_id(self, campaign_id: str) -> Campaign | None: ...

    def aggregate(
        self,
        group_by: str,
        metric: str,
        aggregation: str,
        filters: str | None = None,
    ) -> AggregateResult: ...

    def export(self, format: str, filters: str | None = None) -> ExportResult: ...


def generate_campaign_id(item: dict[str, Any]) -> str:
    """Existing string id, else "<campaign_name>_<month>" with non-alphanumerics as "_"."""
    existing = item.get("id")
    if isinstance(existing, str) and existing:
        return existing
    name = re.sub(r"[^a-zA-Z0-9]", "_", str(item.get("campaign_name", "")))
    month = re.sub(r"[^a-zA-Z0-9]", "_", str(item.get("month", "")))
    return f"{name}_{month}"


def _is_valid_row(item: Any) -> bool:
    if not isinstance(item, dict):
        return False
    if any(not isinstance(item.get(key), str) for key in _REQUIRED_STR):
        return False
    for key in ("acquired_users", "cpi"):
        value = item.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
    return isinstance(item.get("roas"), dict) and isinstance(item.get("retention"), dict)


def sample_campaigns() -> list[Campaign]:
    rows = [
        {
            "id": "1",
            "game": "Sample Game",
            "campaign_name": "Sample Campaign 1",
            "network": "Facebook",
            "store": "ios",
            "month": "2024-01",
            "acquired_users": 1000,
            "cpi": 2.50,
            "roas": {"ROAS d0": "0.15", "ROAS d7": "0.45", "ROAS d30": "1.20", "ROAS d365": "3.50"},
            "retention": {
                "Retention d0": "100%",
                "Retention d7": "25%",
                "Retention d30": "12%",
                "Retention d365": "5%",
            },
        },
        {
            "id": "2",
            "game": "Sample Game",
            "campaign_name": "Sample Campaign 2",
            "network": "Google",
            "store": "android",
            "month": "2024-01",
            "acquired_users": 1500,
            "cpi": 1.80,
            "roas": {"ROAS d0": "0.20", "ROAS d7": "0.60", "ROAS d30": "1.50", "ROAS d365": "4.20"},
            "retention": {
                "Retention d0": "100%",
                "Retention d7": "30%",
                "Retention d30": "15%",
                "Retention d365": "7%",
            },
        },
    ]
    return [Campaign(**row) for row in rows]


def load_campaigns(path: str | Path) -> list[Campaign]:
    """
    Read campaign rows from a JSON array file.

    A missing or unreadable file falls back to sample data so the server can
    still answer; a malformed row is an error.
    """
    path = Path(path).expanduser()
    if not path.exists():
        logger.warning("Data file not found at {}. Using sample data.", path)
        return sample_campaigns()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Failed to read campaign data from {}: {}. Using sample data.", path, e)
        return sample_campaigns()
    if not isinstance(data, list):
        raise ValueError("Data file must contain an array of campaigns")

    campaigns: list[Campaign] = []
    for index, item in enumerate(data):
        if not _is_valid_row(item):
            raise ValueError(f"Invalid campaign data at index {index}")
        campaigns.append(Campaign(**{**item, "id": generate_campaign_id(item)}))
    logger.info("Loaded {} campaigns from {}", len(campaigns), path)
    return campaigns


class InMemoryCampaignProvider:
    """CampaignDataProvider over a fixed list of rows."""

    def __init__(
        self,
        campaigns: list[Campaign] | None = None,
        *,
        exports_dir: str | Path = "./exports",
        base_url: str = "http://localhost:3000",
    ):
        self._campaigns = list(campaigns) if campaigns is not None else sample_campaigns()
        self._exports_dir = Path(exports_dir).expanduser()
        self._base_url = base_url.rstrip("/")

    @classmethod
    def from_path(cls, path: str | Path, **kwargs: Any) -> "InMemoryCampaignProvider":
        return cls(load_campaigns(path), **kwargs)

    @property
    def campaigns(self) -> list[Campaign]:
        return list(self._campaigns)

    def list_filtered(self, filters: CampaignFilters) -> CampaignPage:
        rows = apply_campaign_filters(self._campaigns, filters)
        page_rows, pagination = paginate(rows, filters.page, filters.page_size)
        return CampaignPage(data=[c.to_record() for c in page_rows], pagination=pagination)

    def get_by_id(self, campaign_id: str) -> Campaign | None:
        for campaign in self._campaigns:
            if campaign.id == campaign_id:
                return campaign
        return None

    def aggregate(
        self,
        group_by: str,
        metric: str,
        aggregation: str,
        filters: str | None = None,
    ) -> AggregateResult:
        rows = apply_expression_filters(self._campaigns, parse_filter_expression(filters))
        groups: dict[str, list[Campaign]] = {}
        for campaign in rows:
            groups.setdefault(group_key(campaign, group_by), []).append(campaign)
        results = [
            AggregateRow(group=group, value=aggregate_values([metric_value(c, metric) for c in members], aggregation))
            for group, members in groups.items()
        ]
        return AggregateResult(group_by=group_by, metric=metric, aggregation=aggregation, results=results)

    def export(self, format: str, filters: str | None = None) -> ExportResult:
        if format not in ("csv", "json"):
            raise ValidationError(f"Unsupported export format: {format}", field="format")
        rows = apply_expression_filters(self._campaigns, parse_filter_expression(filters))
        self._exports_dir.mkdir(parents=True, exist_ok=True)
        file_name = f"campaigns_export_{int(time.time() * 1000)}.{format}"
        path = self._exports_dir / file_name
        if format == "csv":
            self._write_csv(rows, path)
        else:
            self._write_json(rows, path)
        logger.info("Exported {} campaigns to {}", len(rows), path)
        return ExportResult(url=f"{self._base_url}/exports/{file_name}", file_name=file_name, total_records=len(rows))

    @staticmethod
    def _write_csv(rows: list[Campaign], path: Path) -> None:
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADERS)
            for c in rows:
                writer.writerow([
                    c.id, c.game, c.campaign_name, c.network, c.store, c.month,
                    c.acquired_users, c.cpi,
                    c.roas.d0, c.roas.d7, c.roas.d30, c.roas.d365,
                    c.retention.d0, c.retention.d7, c.retention.d30, c.retention.d365,
                ])

    @staticmethod
    def _write_json(rows: list[Campaign], path: Path) -> None:
        payload = {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "total_records": len(rows),
            "data": [c.to_record() for c in rows],
        }
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
