import json

import pytest

import gsc_server
from gsc_client import GSCApiError
from gsc_server import MAX_BATCH_URLS, Tool, ToolError, ToolRegistry

pytestmark = pytest.mark.anyio

SITE = "https://example.com/"


def _urls(n):
    return [f"{SITE}page-{i}" for i in range(n)]


def _inspection(verdict="PASS", indexing="INDEXING_ALLOWED", **extra):
    index_status = {
        "verdict": verdict,
        "coverageState": "Submitted and indexed",
        "indexingState": indexing,
        "robotsTxtState": "ALLOWED",
        "pageFetchState": "SUCCESSFUL",
        "lastCrawlTime": "2024-01-01T00:00:00Z",
        "googleCanonical": "https://example.com/a",
        "userCanonical": "https://example.com/a",
    }
    index_status.update(extra)
    return {
        "inspectionResult": {
            "indexStatusResult": index_status,
            "mobileUsabilityResult": {"verdict": "PASS"},
            "inspectionResultLink": "https://search.google.com/search-console/inspect",
        }
    }


async def test_registry_rejects_duplicates(registry):
    tool = next(iter(registry))
    with pytest.raises(ValueError):
        ToolRegistry([tool, tool])


async def test_registry_lookup(registry):
    assert "inspect_url" in registry
    assert registry.get("inspect_url").name == "inspect_url"
    assert registry.get("missing") is None
    assert registry.get(42) is None
    assert isinstance(registry.get("list_sites"), Tool)


@pytest.mark.parametrize("tool_name", ["batch_inspect_urls", "detect_indexing_issues"])
async def test_batch_tools_reject_more_than_limit_without_calls(registry, gsc_client, tool_name):
    tool = registry.get(tool_name)
    with pytest.raises(ToolError, match="Maximum 20 URLs"):
        await tool.invoke({"siteUrl": SITE, "urls": json.dumps(_urls(MAX_BATCH_URLS + 1))}, gsc_client)
    gsc_client.inspect_url.assert_not_called()


async def test_batch_rejects_non_array_urls(registry, gsc_client):
    with pytest.raises(ToolError, match="JSON array"):
        await registry.get("batch_inspect_urls").invoke({"siteUrl": SITE, "urls": "not json"}, gsc_client)
    with pytest.raises(ToolError, match="At least one URL"):
        await registry.get("batch_inspect_urls").invoke({"siteUrl": SITE, "urls": "[]"}, gsc_client)


@pytest.mark.parametrize("tool_name", ["batch_inspect_urls", "detect_indexing_issues"])
async def test_batch_tools_pause_between_inspections(registry, gsc_client, monkeypatch, tool_name):
    urls = _urls(3)
    events = []

    async def fake_sleep(delay):
        events.append(("sleep", delay))

    async def fake_inspect(site_url, url, language_code):
        events.append(("inspect", url))
        return _inspection()

    monkeypatch.setattr(gsc_server, "INSPECTION_DELAY_SECONDS", 0.1)
    monkeypatch.setattr(gsc_server.asyncio, "sleep", fake_sleep)
    gsc_client.inspect_url.side_effect = fake_inspect

    await registry.get(tool_name).invoke({"siteUrl": SITE, "urls": json.dumps(urls)}, gsc_client)

    assert events == [
        ("inspect", urls[0]),
        ("sleep", 0.1),
        ("inspect", urls[1]),
        ("sleep", 0.1),
        ("inspect", urls[2]),
    ]


async def test_batch_inspects_in_order_and_isolates_failures(registry, gsc_client):
    urls = _urls(3)
    gsc_client.inspect_url.side_effect = [
        _inspection(),
        GSCApiError(500, "backend error"),
        _inspection(verdict="NEUTRAL", indexing="BLOCKED_BY_META_TAG"),
    ]

    text = await registry.get("batch_inspect_urls").invoke({"siteUrl": SITE, "urls": urls}, gsc_client)

    assert [c.args[1] for c in gsc_client.inspect_url.call_args_list] == urls
    assert "URLs Inspected: 3" in text
    assert "✓ Indexed: 1 URLs" in text
    assert "❌ Not Indexed: 2 URLs" in text
    assert "API Error: 500" in text


async def test_search_analytics_validates_dates_before_calling(registry, gsc_client):
    tool = registry.get("search_analytics")
    with pytest.raises(ToolError, match="YYYY-MM-DD"):
        await tool.invoke({"siteUrl": SITE, "startDate": "2024/01/01", "endDate": "2024-01-31"}, gsc_client)
    with pytest.raises(ToolError, match="before or equal"):
        await tool.invoke({"siteUrl": SITE, "startDate": "2024-02-01", "endDate": "2024-01-31"}, gsc_client)
    with pytest.raises(ToolError, match="1095 days"):
        await tool.invoke({"siteUrl": SITE, "startDate": "2020-01-01", "endDate": "2024-01-31"}, gsc_client)
    gsc_client.query_search_analytics.assert_not_called()


async def test_search_analytics_rejects_bad_dimension(registry, gsc_client):
    with pytest.raises(ToolError, match="Invalid dimensions: keyword"):
        await registry.get("search_analytics").invoke(
            {"siteUrl": SITE, "startDate": "2024-01-01", "endDate": "2024-01-31", "dimensions": "query,keyword"},
            gsc_client,
        )


async def test_search_analytics_builds_regex_filters(registry, gsc_client):
    gsc_client.query_search_analytics.return_value = {
        "rows": [{"keys": ["seo tips", f"{SITE}blog"], "clicks": 10, "impressions": 200, "ctr": 0.05, "position": 2.5}]
    }

    text = await registry.get("search_analytics").invoke(
        {
            "siteUrl": SITE,
            "startDate": "2024-01-01",
            "endDate": "2024-01-31",
            "dimensions": '["query", "page"]',
            "rowLimit": "50",
            "pageFilter": "regex:.*blog.*",
        },
        gsc_client,
    )

    site_url, body = gsc_client.query_search_analytics.call_args.args
    assert site_url == SITE
    assert body["rowLimit"] == 50
    assert body["dimensions"] == ["query", "page"]
    assert body["dimensionFilterGroups"] == [
        {"filters": [{"dimension": "page", "operator": "includingRegex", "expression": ".*blog.*"}]}
    ]
    assert '"seo tips"' in text
    assert "Average CTR: 5.00%" in text
    assert "Total Clicks: 10" in text


async def test_list_sites_empty(registry, gsc_client):
    gsc_client.list_sites.return_value = {}
    text = await registry.get("list_sites").invoke({}, gsc_client)
    assert "You have access to 0 properties." in text


async def test_list_sites_labels_domain_properties(registry, gsc_client):
    gsc_client.list_sites.return_value = {
        "siteEntry": [
            {"siteUrl": "sc-domain:example.com", "permissionLevel": "siteFullUser"},
            {"siteUrl": SITE, "permissionLevel": "siteRestrictedUser"},
        ]
    }
    text = await registry.get("list_sites").invoke({}, gsc_client)
    assert "1. sc-domain:example.com\n   Permission: Full User\n   Type: Domain property" in text
    assert "Type: URL-prefix property" in text
    assert "Total: 2 properties" in text


async def test_get_site_details_not_found(registry, gsc_client):
    gsc_client.get_site.side_effect = GSCApiError(404, "not found")
    with pytest.raises(ToolError, match="Site not found: https://example.com/"):
        await registry.get("get_site_details").invoke({"siteUrl": SITE}, gsc_client)


async def test_compare_periods_fetches_both_periods(registry, gsc_client):
    gsc_client.query_search_analytics.side_effect = [
        {"rows": [
            {"keys": ["alpha"], "clicks": 10, "impressions": 100, "ctr": 0.1, "position": 5},
            {"keys": ["gone"], "clicks": 4, "impressions": 40, "ctr": 0.1, "position": 8},
        ]},
        {"rows": [
            {"keys": ["alpha"], "clicks": 20, "impressions": 150, "ctr": 0.13, "position": 4},
            {"keys": ["fresh"], "clicks": 3, "impressions": 30, "ctr": 0.1, "position": 9},
        ]},
    ]

    text = await registry.get("compare_periods").invoke(
        {
            "siteUrl": SITE,
            "period1StartDate": "2024-01-01",
            "period1EndDate": "2024-01-31",
            "period2StartDate": "2024-02-01",
            "period2EndDate": "2024-02-29",
        },
        gsc_client,
    )

    bodies = [c.args[1] for c in gsc_client.query_search_analytics.call_args_list]
    assert [(b["startDate"], b["endDate"]) for b in bodies] == [("2024-01-01", "2024-01-31"), ("2024-02-01", "2024-02-29")]
    assert "1. fresh - 3 clicks" in text
    assert "1. gone - was 4 clicks" in text
    assert "Clicks: +9" in text


async def test_compare_periods_rejects_bad_metric(registry, gsc_client):
    with pytest.raises(ToolError, match="Invalid metric"):
        await registry.get("compare_periods").invoke(
            {
                "siteUrl": SITE,
                "period1StartDate": "2024-01-01",
                "period1EndDate": "2024-01-31",
                "period2StartDate": "2024-02-01",
                "period2EndDate": "2024-02-29",
                "metric": "revenue",
            },
            gsc_client,
        )


async def test_keyword_opportunities_filters_window(registry, gsc_client):
    gsc_client.query_search_analytics.return_value = {"rows": [
        {"keys": ["close call", "/a"], "clicks": 5, "impressions": 1000, "ctr": 0.005, "position": 6},
        {"keys": ["already top", "/b"], "clicks": 300, "impressions": 1000, "ctr": 0.3, "position": 1.2},
        {"keys": ["too few", "/c"], "clicks": 0, "impressions": 10, "ctr": 0, "position": 8},
    ]}

    text = await registry.get("find_keyword_opportunities").invoke(
        {"siteUrl": SITE, "startDate": "2024-01-01", "endDate": "2024-01-31"}, gsc_client
    )

    assert "Found 1 quick win opportunities" in text
    assert '"close call"' in text
    assert "already top" not in text


async def test_device_breakdown_picks_primary_device(registry, gsc_client):
    gsc_client.query_search_analytics.return_value = {"rows": [
        {"keys": ["MOBILE"], "clicks": 70, "impressions": 1000, "ctr": 0.07, "position": 5},
        {"keys": ["DESKTOP"], "clicks": 30, "impressions": 800, "ctr": 0.0375, "position": 6},
    ]}

    text = await registry.get("get_device_breakdown").invoke(
        {"siteUrl": SITE, "startDate": "2024-01-01", "endDate": "2024-01-31"}, gsc_client
    )

    assert "Primary Device: MOBILE" in text
    assert "📱 Mobile-first traffic" in text
    assert "Clicks: 0 (0.0%)" in text  # tablet


async def test_country_breakdown_names_countries(registry, gsc_client):
    gsc_client.query_search_analytics.return_value = {"rows": [
        {"keys": ["usa"], "clicks": 80, "impressions": 1000, "ctr": 0.08, "position": 4},
        {"keys": ["xyz"], "clicks": 20, "impressions": 500, "ctr": 0.04, "position": 12},
    ]}

    text = await registry.get("get_country_breakdown").invoke(
        {"siteUrl": SITE, "startDate": "2024-01-01", "endDate": "2024-01-31", "topN": "5"}, gsc_client
    )

    assert "🇺🇸 United States (usa)" in text
    assert "🌍 xyz (xyz)" in text
    assert "United States dominates with 80.0% of traffic" in text


async def test_detect_indexing_issues_scores_site(registry, gsc_client):
    gsc_client.inspect_url.side_effect = [
        _inspection(),
        _inspection(verdict="FAIL", indexing="BLOCKED_BY_ROBOTS_TXT", robotsTxtState="DISALLOWED"),
    ]

    text = await registry.get("detect_indexing_issues").invoke({"siteUrl": SITE, "urls": _urls(2)}, gsc_client)

    assert "URLs Checked: 2" in text
    assert "✓ Healthy: 1 URLs (50.0%)" in text
    assert "❌ HIGH PRIORITY (2 issues)" in text
    assert "Robots.txt Blocked" in text
    assert "Technical SEO Health Score: 70/100" in text


async def test_list_sitemaps_reports_index_rate(registry, gsc_client):
    gsc_client.list_sitemaps.return_value = {"sitemap": [{
        "path": f"{SITE}sitemap.xml",
        "type": "sitemap",
        "errors": "0",
        "warnings": "2",
        "contents": [{"type": "web", "submitted": "200", "indexed": "150"}],
    }]}

    text = await registry.get("list_sitemaps").invoke({"siteUrl": SITE}, gsc_client)

    assert "Total Sitemaps: 1" in text
    assert "WEB: 200 submitted, 150 indexed (75.0%)" in text
    assert "⚠ 2 warnings" in text
    assert "Index Rate: 75.0%" in text


async def test_get_sitemap_details_not_found(registry, gsc_client):
    gsc_client.get_sitemap.side_effect = GSCApiError(404, "Requested entity was not found.")
    with pytest.raises(ToolError, match="Sitemap not found"):
        await registry.get("get_sitemap_details").invoke({"siteUrl": SITE, "feedpath": f"{SITE}sitemap.xml"}, gsc_client)
