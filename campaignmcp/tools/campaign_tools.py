"""Campaign performance tools backed by a CampaignDataProvider."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict

from campaignmcp import __version__
from campaignmcp.campaigns.models import Aggregation, CampaignFilters, ExportFormat, GroupBy, Metric
from campaignmcp.campaigns.provider import CampaignDataProvider
from campaignmcp.tools.base import Tool
from campaignmcp.tools.registry import ToolRegistry
from campaignmcp.utils.exceptions import NotFoundError


class GetCampaignArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str


class AggregateArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")
    group_by: GroupBy
    metric: Metric
    aggregation: Aggregation
    filters: str | None = None


class ExportArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")
    format: ExportFormat
    filters: str | None = None


class _ProviderTool(Tool):
    def __init__(self, provider: CampaignDataProvider):
        self._provider = provider


class ListCampaignsTool(_ProviderTool):
    args_model = CampaignFilters

    @property
    def name(self) -> str:
        return "list_campaigns"

    @property
    def description(self) -> str:
        return "Retrieve a paginated list of campaign performance records with optional filters"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "game": {"type": "string", "description": "Filter by game name"},
                "network": {"type": "string", "description": "Filter by advertising network"},
                "store": {"type": "string", "enum": ["ios", "android"], "description": "Filter by app store"},
                "campaign_name": {"type": "string", "description": "Filter by campaign name"},
                "month_from": {"type": "string", "format": "date", "description": "Start date filter (YYYY-MM format)"},
                "month_to": {"type": "string", "format": "date", "description": "End date filter (YYYY-MM format)"},
                "min_cpi": {"type": "number", "description": "Minimum cost per install"},
                "max_cpi": {"type": "number", "description": "Maximum cost per install"},
                "roas_day": {"type": "integer", "enum": [0, 7, 30, 365], "description": "ROAS day for filtering"},
                "min_roas": {"type": "number", "description": "Minimum ROAS value"},
                "max_roas": {"type": "number", "description": "Maximum ROAS value"},
                "page": {"type": "integer", "default": 1, "description": "Page number for pagination"},
                "page_size": {"type": "integer", "default": 50, "description": "Number of records per page"},
            },
        }

    async def run(self, args: CampaignFilters) -> Any:
        return self._provider.list_filtered(args)


class GetCampaignTool(_ProviderTool):
    args_model = GetCampaignArgs

    @property
    def name(self) -> str:
        return "get_campaign"

    @property
    def description(self) -> str:
        return "Get detailed information about a specific campaign by ID"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"id": {"type": "string", "description": "Campaign ID"}},
            "required": ["id"],
        }

    async def run(self, args: GetCampaignArgs) -> Any:
        campaign = self._provider.get_by_id(args.id)
        if campaign is None:
            raise NotFoundError("Campaign", args.id)
        return campaign.to_record()


class AggregateMetricsTool(_ProviderTool):
    args_model = AggregateArgs

    @property
    def name(self) -> str:
        return "aggregate_metrics"

    @property
    def description(self) -> str:
        return "Get aggregated campaign metrics grouped by dimensions"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "group_by": {
                    "type": "string",
                    "enum": ["month", "network", "store", "campaign_name"],
                    "description": "Dimension to group by",
                },
                "metric": {
                    "type": "string",
                    "enum": [
                        "cpi", "acquired_users",
                        "roas_d0", "roas_d7", "roas_d30", "roas_d365",
                        "retention_d0", "retention_d7", "retention_d30", "retention_d365",
                    ],
                    "description": "Metric to aggregate",
                },
                "aggregation": {
                    "type": "string",
                    "enum": ["sum", "avg", "min", "max"],
                    "description": "Aggregation function",
                },
                "filters": {"type": "string", "description": "Optional filter expression"},
            },
            "required": ["group_by", "metric", "aggregation"],
        }

    async def run(self, args: AggregateArgs) -> Any:
        return self._provider.aggregate(args.group_by, args.metric, args.aggregation, args.filters)


class ExportCampaignsTool(_ProviderTool):
    args_model = ExportArgs

    @property
    def name(self) -> str:
        return "export_campaigns"

    @property
    def description(self) -> str:
        return "Export filtered campaign data as CSV or JSON"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "format": {"type": "string", "enum": ["csv", "json"], "description": "Export format"},
                "filters": {"type": "string", "description": "Optional filter expression"},
            },
            "required": ["format"],
        }

    async def run(self, args: ExportArgs) -> Any:
        result = self._provider.export(args.format, args.filters)
        return {"url": result.url}


class HealthCheckTool(Tool):
    @property
    def name(self) -> str:
        return "health_check"

    @property
    def description(self) -> str:
        return "Check the health status of the Campaign Performance API"

    async def run(self, args: Any) -> Any:
        return {
            "success": True,
            "message": "Campaign Performance API is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
        }


def create_campaign_tool_registry(provider: CampaignDataProvider) -> ToolRegistry:
    return ToolRegistry([
        ListCampaignsTool(provider),
        GetCampaignTool(provider),
        AggregateMetricsTool(provider),
        ExportCampaignsTool(provider),
        HealthCheckTool(),
    ])
