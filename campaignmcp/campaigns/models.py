"""Campaign records and the query shapes used against them."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

RoasDay = Literal[0, 7, 30, 365]
GroupBy = Literal["month", "network", "store", "campaign_name"]
Metric = Literal[
    "cpi",
    "acquired_users",
    "roas_d0",
    "roas_d7",
    "roas_d30",
    "roas_d365",
    "retention_d0",
    "retention_d7",
    "retention_d30",
    "retention_d365",
]
Aggregation = Literal["sum", "avg", "min", "max"]
ExportFormat = Literal["csv", "json"]

METRIC_DAYS = (0, 7, 30, 365)


def _to_float(value: Any) -> float:
    """Lenient numeric parse: "1.20", "25%", 3 -> float; garbage -> 0.0."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().rstrip("%"))
    except (TypeError, ValueError):
        return 0.0


class RoasMetrics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    d0: str = Field(default="0", alias="ROAS d0")
    d7: str = Field(default="0", alias="ROAS d7")
    d30: str = Field(default="0", alias="ROAS d30")
    d365: str = Field(default="0", alias="ROAS d365")


class RetentionMetrics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    d0: str = Field(default="0%", alias="Retention d0")
    d7: str = Field(default="0%", alias="Retention d7")
    d30: str = Field(default="0%", alias="Retention d30")
    d365: str = Field(default="0%", alias="Retention d365")


class Campaign(BaseModel):
    """One campaign/month row of performance data."""
    id: str
    game: str
    campaign_name: str
    network: str
    store: str
    month: str
    acquired_users: int
    cpi: float
    roas: RoasMetrics
    retention: RetentionMetrics

    def roas_value(self, day: int) -> float:
        return _to_float(getattr(self.roas, f"d{day}", 0))

    def retention_value(self, day: int) -> float:
        return _to_float(getattr(self.retention, f"d{day}", 0))

    def to_record(self) -> dict[str, Any]:
        """Wire/export shape (ROAS/Retention keys as in the source data)."""
        return self.model_dump(by_alias=True)


class CampaignFilters(BaseModel):
    """Filters accepted by list_campaigns; every field is optional."""
    model_config = ConfigDict(extra="ignore")

    game: str | None = None
    network: str | None = None
    store: Literal["ios", "android"] | None = None
    campaign_name: str | None = None
    month_from: str | None = None
    month_to: str | None = None
    min_cpi: float | None = None
    max_cpi: float | None = None
    roas_day: RoasDay | None = None
    min_roas: float | None = None
    max_roas: float | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=1000)


class Pagination(BaseModel):
    page: int
    page_size: int
    total_pages: int
    total_records: int


class CampaignPage(BaseModel):
    data: list[dict[str, Any]]
    pagination: Pagination


class AggregateRow(BaseModel):
    group: str
    value: float


class AggregateResult(BaseModel):
    group_by: GroupBy
    metric: Metric
    aggregation: Aggregation
    results: list[AggregateRow]


class ExportResult(BaseModel):
    url: str
    file_name: str
    total_records: int
