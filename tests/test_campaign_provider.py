import csv
import json

import pytest

from campaignmcp.campaigns.filters import parse_filter_expression, parse_month
from campaignmcp.campaigns.models import CampaignFilters
from campaignmcp.campaigns.provider import (
    CSV_HEADERS,
    InMemoryCampaignProvider,
    generate_campaign_id,
    load_campaigns,
)
from campaignmcp.utils.exceptions import ValidationError


def _row(name, month, network="Facebook", store="ios", cpi=2.0, users=100, roas_d7="0.5"):
    return {
        "game": "Space Miner",
        "campaign_name": name,
        "network": network,
        "store": store,
        "month": month,
        "acquired_users": users,
        "cpi": cpi,
        "roas": {"ROAS d0": "0.1", "ROAS d7": roas_d7, "ROAS d30": "1.0", "ROAS d365": "2.0"},
        "retention": {
            "Retention d0": "100%",
            "Retention d7": "20%",
            "Retention d30": "10%",
            "Retention d365": "2%",
        },
    }


@pytest.fixture
def data_file(tmp_path):
    rows = [
        _row("Spring Push", "2024-03", network="Facebook", cpi=1.5, users=1000, roas_d7="0.8"),
        _row("Spring Push", "2024-04", network="Facebook", cpi=2.5, users=500, roas_d7="0.3"),
        _row("Summer Blast", "2024-06", network="Google", store="android", cpi=3.0, users=200, roas_d7="1.2"),
    ]
    path = tmp_path / "campaigns.json"
    path.write_text(json.dumps(rows), encoding="utf-8")
    return path


@pytest.fixture
def loaded(data_file, tmp_path):
    return InMemoryCampaignProvider.from_path(data_file, exports_dir=tmp_path / "exports", base_url="http://host/")


def test_generate_campaign_id():
    assert generate_campaign_id({"campaign_name": "Spring Push!", "month": "2024-03"}) == "Spring_Push__2024_03"
    assert generate_campaign_id({"id": "keep", "campaign_name": "x", "month": "y"}) == "keep"


def test_missing_file_falls_back_to_samples(tmp_path):
    campaigns = load_campaigns(tmp_path / "nope.json")
    assert [c.id for c in campaigns] == ["1", "2"]


def test_invalid_row_is_rejected(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps([{"game": "x"}]), encoding="utf-8")
    with pytest.raises(ValueError, match="index 0"):
        load_campaigns(path)


def test_non_array_file_is_rejected(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"rows": []}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_campaigns(path)


def test_substring_and_range_filters(loaded):
    page = loaded.list_filtered(CampaignFilters(campaign_name="spring", min_cpi=2.0))
    assert [row["id"] for row in page.data] == ["Spring_Push_2024_04"]

    page = loaded.list_filtered(CampaignFilters(month_from="2024-04", month_to="2024-06"))
    assert page.pagination.total_records == 2


def test_roas_filter_defaults_to_day_seven(loaded):
    page = loaded.list_filtered(CampaignFilters(min_roas=0.5))
    assert {row["campaign_name"] for row in page.data} == {"Spring Push", "Summer Blast"}
    page = loaded.list_filtered(CampaignFilters(min_roas=1.5, roas_day=365))
    assert page.pagination.total_records == 3


def test_pagination(loaded):
    page = loaded.list_filtered(CampaignFilters(page=2, page_size=2))
    assert len(page.data) == 1
    assert page.pagination.total_pages == 2
    assert page.pagination.total_records == 3


def test_aggregate_groups_and_reduces(loaded):
    result = loaded.aggregate("network", "acquired_users", "sum")
    values = {row.group: row.value for row in result.results}
    assert values == {"Facebook": 1500.0, "Google": 200.0}

    result = loaded.aggregate("store", "cpi", "avg", json.dumps({"network": "Facebook"}))
    assert [(r.group, r.value) for r in result.results] == [("ios", 2.0)]


def test_aggregate_with_invalid_filter_expression_uses_everything(loaded):
    result = loaded.aggregate("month", "roas_d7", "max", "{not json")
    assert len(result.results) == 3


def test_export_csv(loaded, tmp_path):
    result = loaded.export("csv")
    assert result.total_records == 3
    assert result.url == f"http://host/exports/{result.file_name}"
    with open(tmp_path / "exports" / result.file_name, newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0] == CSV_HEADERS
    assert len(rows) == 4


def test_export_rejects_unknown_format(loaded):
    with pytest.raises(ValidationError) as exc_info:
        loaded.export("xml")
    assert exc_info.value.details == {"field": "format"}


def test_parse_helpers():
    assert parse_month("2024-03").month == 3
    assert parse_month("2024-03-15").day == 15
    assert parse_month("garbage") is None
    assert parse_filter_expression("[1, 2]") == {}
    assert parse_filter_expression('{"store": "ios"}') == {"store": "ios"}
