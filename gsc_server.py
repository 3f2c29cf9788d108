from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence
import asyncio
import json
from dataclasses import dataclass
from datetime import datetime

from mcp import types

from formatting import (
    fmt_number,
    fmt_signed,
    fmt_signed_pct,
    generate_insights,
    generate_recommendations,
    index_rate,
    numbered,
    permission_label,
    property_type,
)
from gsc_client import GSCApiError, GSCClient

# Batch inspection limits: ~600 inspections/minute per property
MAX_BATCH_URLS = 20
INSPECTION_DELAY_SECONDS = 0.1

MAX_ROW_LIMIT = 25000
MAX_DATE_RANGE_DAYS = 1095

VALID_DIMENSIONS = ["query", "page", "country", "device", "searchAppearance", "date"]
VALID_OPERATORS = ["equals", "contains", "notEquals", "notContains", "includingRegex", "excludingRegex"]
VALID_DEVICES = ["DESKTOP", "MOBILE", "TABLET"]
VALID_SEARCH_TYPES = ["web", "image", "video", "news", "discover", "googleNews"]
VALID_AGGREGATION_TYPES = ["auto", "byNewsShowcasePanel", "byProperty", "byPage"]
VALID_METRICS = ["clicks", "impressions", "ctr", "position"]

SITE_URL_PROPERTY = {
    "type": "string",
    "description": 'Site URL property (e.g., "https://example.com/" or "sc-domain:example.com")',
}


class ToolError(Exception):
    """Invalid tool arguments or an upstream failure, reported to the caller verbatim."""


ToolHandler = Callable[[Dict[str, Any], GSCClient], Awaitable[str]]


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: ToolHandler

    def describe(self) -> types.Tool:
        return types.Tool(name=self.name, description=self.description, inputSchema=self.input_schema)

    async def invoke(self, arguments: Dict[str, Any], client: GSCClient) -> str:
        return await self.handler(arguments, client)


class ToolRegistry:
    """Ordered name -> Tool mapping. Registration order is the listing order."""

    def __init__(self, tools: Sequence[Tool] = ()):
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Duplicate tool name: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: Any) -> Optional[Tool]:
        return self._tools.get(name) if isinstance(name, str) else None

    def describe(self) -> List[types.Tool]:
        return [tool.describe() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


_TOOLS: List[Tool] = []


def gsc_tool(name: str, description: str, properties: Dict[str, Any], required: Sequence[str] = ()):
    """Register the decorated coroutine as a tool with a flat JSON schema."""

    def decorator(fn: ToolHandler) -> ToolHandler:
        schema = {"type": "object", "properties": properties, "required": list(required)}
        _TOOLS.append(Tool(name=name, description=description, input_schema=schema, handler=fn))
        return fn

    return decorator


def create_registry() -> ToolRegistry:
    return ToolRegistry(_TOOLS)


# --- Argument helpers ---

def _str_arg(args: Dict[str, Any], name: str, default: Optional[str] = None) -> Optional[str]:
    value = args.get(name)
    if value is None or value == "":
        return default
    return str(value)


def _int_arg(args: Dict[str, Any], name: str, default: int) -> Optional[int]:
    """Numbers may arrive as numbers or strings. Returns None when unparseable."""
    value = args.get(name)
    if value is None or value == "":
        return default
    try:
        return int(float(str(value).strip()))
    except ValueError:
        return None


def _float_arg(args: Dict[str, Any], name: str, default: float) -> Optional[float]:
    value = args.get(name)
    if value is None or value == "":
        return default
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def _bool_arg(args: Dict[str, Any], name: str) -> bool:
    value = args.get(name)
    return value is True or (isinstance(value, str) and value.strip().lower() == "true")


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value or len(value) != 10 or value[4] != "-" or value[7] != "-":
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return None


def _require_dates(*values: Optional[str], message: str = "Dates must be in YYYY-MM-DD format") -> List[datetime]:
    parsed = [_parse_date(v) for v in values]
    if any(p is None for p in parsed):
        raise ToolError(message)
    return parsed


def _parse_list(value: Any) -> List[str]:
    """Accept a list, a JSON array string or a comma-separated string."""
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return [str(v).strip() for v in parsed if str(v).strip()]
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


def _parse_urls(value: Any, limit_message: str) -> List[str]:
    """Parse and bound a URL list before any API call is made."""
    urls: List[str] = []
    if isinstance(value, list):
        urls = [str(u).strip() for u in value if str(u).strip()]
    elif isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            raise ToolError("urls must be a JSON array string or array")
        if not isinstance(parsed, list):
            raise ToolError("urls must be a JSON array string or array")
        urls = [str(u).strip() for u in parsed if str(u).strip()]
    if not urls:
        raise ToolError("At least one URL is required")
    if len(urls) > MAX_BATCH_URLS:
        raise ToolError(limit_message)
    return urls


def _rows(response: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Normalize analytics rows; the API reports CTR as a ratio, reports use percent."""
    rows = []
    for row in response.get("rows", []) or []:
        rows.append({
            "keys": [str(k) for k in row.get("keys", [])],
            "clicks": float(row.get("clicks", 0) or 0),
            "impressions": float(row.get("impressions", 0) or 0),
            "ctr": float(row.get("ctr", 0) or 0) * 100,
            "position": float(row.get("position", 0) or 0),
        })
    return rows


def _failure(prefix: str, error: GSCApiError) -> ToolError:
    return ToolError(f"{prefix}: {error.message}" if error.message else prefix)


def _analytics_body(start_date: str, end_date: str, dimensions: List[str]) -> Dict[str, Any]:
    return {
        "startDate": start_date,
        "endDate": end_date,
        "dimensions": dimensions,
        "rowLimit": MAX_ROW_LIMIT,
        "startRow": 0,
        "dataState": "final",
    }


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# ==== Tier 1: Site Management ====

@gsc_tool(
    "list_sites",
    "Retrieves all Google Search Console properties (websites) that the authenticated user has access to. "
    "Returns site URLs, permission levels, and verification status.",
    {},
)
async def list_sites(args: Dict[str, Any], client: GSCClient) -> str:
    try:
        data = await client.list_sites()
    except GSCApiError as e:
        raise ToolError(f"Failed to list sites: {e.text}") from e

    sites = data.get("siteEntry", []) or []
    if not sites:
        return (
            "Google Search Console Properties:\n\n"
            "You have access to 0 properties.\n\n"
            "No Search Console properties found. Please verify your OAuth credentials and ensure you have "
            "access to at least one property in Google Search Console."
        )

    noun = "property" if len(sites) == 1 else "properties"
    entries = [
        f"{site.get('siteUrl', 'Unknown')}\n"
        f"   Permission: {permission_label(site.get('permissionLevel', 'Unknown'))}\n"
        f"   Type: {property_type(site.get('siteUrl', ''))}"
        for site in sites
    ]
    return (
        "Google Search Console Properties:\n\n"
        f"You have access to {len(sites)} {noun}:\n\n"
        f"{numbered(entries)}\n\n"
        f"Total: {len(sites)} {noun}\n\n"
        "Tip: Use get_site_details with a specific siteUrl to see verification status and additional information."
    )


@gsc_tool(
    "get_site_details",
    "Retrieves detailed information about a specific Search Console property, including verification status "
    "and permission level.",
    {"siteUrl": {"type": "string", "description": 'The site URL (e.g., "https://example.com/" or "sc-domain:example.com")'}},
    required=["siteUrl"],
)
async def get_site_details(args: Dict[str, Any], client: GSCClient) -> str:
    site_url = _str_arg(args, "siteUrl")
    if not site_url:
        raise ToolError("siteUrl parameter is required")

    try:
        data = await client.get_site(site_url)
    except GSCApiError as e:
        if e.status == 404:
            raise ToolError(
                f"Site not found: {site_url}. Please verify the site URL and ensure you have access to this property."
            ) from e
        raise ToolError(f"Failed to get site details: {e.text}") from e

    permission_level = data.get("permissionLevel", "Unknown")
    access = {
        "siteOwner": "Full Owner - Can manage all aspects",
        "siteFullUser": "Full User - Can view all data and take some actions",
        "siteRestrictedUser": "Restricted User - Limited view access",
    }.get(permission_level, "Unknown permission level")
    icon = "✓" if permission_level == "siteOwner" else "→"

    return (
        "Site Property Details:\n\n"
        f"Site URL: {data.get('siteUrl', site_url)}\n"
        f"Permission Level: {permission_level}\n"
        f"Property Type: {property_type(site_url)}\n\n"
        f"{icon} Access Level: {access}\n\n"
        "This property is properly configured and accessible."
    )


# ==== Tier 1: Search Analytics ====

@gsc_tool(
    "search_analytics",
    "Retrieves comprehensive search performance data from Google Search Console with support for up to 25,000 rows, "
    "advanced filtering including regex patterns, multiple dimensions, and automatic quick wins detection for SEO "
    "opportunities.",
    {
        "siteUrl": SITE_URL_PROPERTY,
        "startDate": {"type": "string", "description": "Start date in YYYY-MM-DD format"},
        "endDate": {"type": "string", "description": "End date in YYYY-MM-DD format"},
        "dimensions": {
            "type": "string",
            "description": "Comma-separated list or JSON array of dimensions. Valid values: query, page, country, "
            'device, searchAppearance, date. Example: "query,page" or ["query","page"]',
        },
        "type": {"type": "string", "description": "Search type. Valid values: web, image, video, news, discover, googleNews. Default: web"},
        "aggregationType": {
            "type": "string",
            "description": "Aggregation method. Valid values: auto, byNewsShowcasePanel, byProperty, byPage. Default: auto",
        },
        "rowLimit": {"type": "string", "description": "Maximum rows to return. Range: 1-25000. Default: 1000. Can be a number or string."},
        "startRow": {"type": "string", "description": "Starting row for pagination. Default: 0. Can be a number or string."},
        "dataState": {"type": "string", "description": "Data freshness. Valid values: all, final. Default: final"},
        "pageFilter": {"type": "string", "description": 'Filter by page URL. Use "regex:" prefix for regex patterns (e.g., "regex:.*blog.*")'},
        "queryFilter": {
            "type": "string",
            "description": 'Filter by search query. Use "regex:" prefix for regex patterns (e.g., "regex:(AI|machine learning)")',
        },
        "countryFilter": {"type": "string", "description": "Filter by country ISO 3166-1 alpha-3 code (e.g., USA, CAN, GBR)"},
        "deviceFilter": {"type": "string", "description": "Filter by device type. Valid values: DESKTOP, MOBILE, TABLET"},
        "searchAppearanceFilter": {"type": "string", "description": "Filter by search feature (e.g., AMP_BLUE_LINK, AMP_TOP_STORIES)"},
        "filterOperator": {
            "type": "string",
            "description": "Operator for filters. Valid values: equals, contains, notEquals, notContains, includingRegex, "
            "excludingRegex. Default: equals",
        },
        "detectQuickWins": {
            "type": "string",
            "description": 'Enable automatic detection of SEO optimization opportunities. Accepts: true, false, "true", "false". Default: false',
        },
        "quickWinsConfig": {
            "type": "string",
            "description": 'JSON string with quick wins configuration. Example: {"positionRange": [4, 20], "minImpressions": 100, "minCtr": 1}',
        },
    },
    required=["siteUrl", "startDate", "endDate"],
)
async def search_analytics(args: Dict[str, Any], client: GSCClient) -> str:
    site_url = _str_arg(args, "siteUrl", "")
    start_date = _str_arg(args, "startDate")
    end_date = _str_arg(args, "endDate")
    search_type = _str_arg(args, "type", "web")
    aggregation_type = _str_arg(args, "aggregationType", "auto")
    data_state = _str_arg(args, "dataState", "final")
    filter_operator = _str_arg(args, "filterOperator", "equals")
    detect_quick_wins = _bool_arg(args, "detectQuickWins")

    start_obj, end_obj = _require_dates(start_date, end_date)
    if start_obj > end_obj:
        raise ToolError("startDate must be before or equal to endDate")
    if (end_obj - start_obj).days > MAX_DATE_RANGE_DAYS:
        raise ToolError("Date range cannot exceed 3 years (1095 days). Please use a smaller date range.")

    dimensions = _parse_list(args.get("dimensions"))
    invalid = [d for d in dimensions if d not in VALID_DIMENSIONS]
    if invalid:
        raise ToolError(f"Invalid dimensions: {', '.join(invalid)}. Valid values: {', '.join(VALID_DIMENSIONS)}")

    row_limit = _int_arg(args, "rowLimit", 1000)
    if row_limit is None or row_limit < 1 or row_limit > MAX_ROW_LIMIT:
        raise ToolError("rowLimit must be a number between 1 and 25000")
    start_row = _int_arg(args, "startRow", 0)
    if start_row is None or start_row < 0:
        raise ToolError("startRow must be a non-negative number")

    quick_wins = {"positionRange": (4.0, 20.0), "minImpressions": 100.0, "minCtr": 1.0}
    config_value = args.get("quickWinsConfig")
    if config_value:
        try:
            parsed = json.loads(config_value) if isinstance(config_value, str) else config_value
        except ValueError:
            parsed = {}  # Invalid JSON, use defaults
        if isinstance(parsed, dict):
            position_range = parsed.get("positionRange")
            if isinstance(position_range, list) and len(position_range) == 2:
                quick_wins["positionRange"] = (float(position_range[0]), float(position_range[1]))
            for key in ("minImpressions", "minCtr"):
                if isinstance(parsed.get(key), (int, float)) and not isinstance(parsed.get(key), bool):
                    quick_wins[key] = float(parsed[key])

    if filter_operator not in VALID_OPERATORS:
        raise ToolError(f"Invalid filterOperator: {filter_operator}. Valid values: {', '.join(VALID_OPERATORS)}")

    def regex_aware(dimension: str, value: str) -> Dict[str, str]:
        if value.startswith("regex:"):
            operator = "includingRegex" if filter_operator in ("equals", "contains") else "excludingRegex"
            return {"dimension": dimension, "operator": operator, "expression": value[len("regex:"):]}
        return {"dimension": dimension, "operator": filter_operator, "expression": value}

    filter_groups = []
    page_filter = _str_arg(args, "pageFilter")
    if page_filter:
        filter_groups.append({"filters": [regex_aware("page", page_filter)]})
    query_filter = _str_arg(args, "queryFilter")
    if query_filter:
        filter_groups.append({"filters": [regex_aware("query", query_filter)]})
    country_filter = _str_arg(args, "countryFilter")
    if country_filter:
        filter_groups.append({"filters": [{"dimension": "country", "operator": filter_operator, "expression": country_filter}]})
    device_filter = _str_arg(args, "deviceFilter")
    if device_filter:
        if device_filter not in VALID_DEVICES:
            raise ToolError(f"Invalid device filter: {device_filter}. Valid values: {', '.join(VALID_DEVICES)}")
        filter_groups.append({"filters": [{"dimension": "device", "operator": filter_operator, "expression": device_filter}]})
    appearance_filter = _str_arg(args, "searchAppearanceFilter")
    if appearance_filter:
        filter_groups.append({
            "filters": [{"dimension": "searchAppearance", "operator": filter_operator, "expression": appearance_filter}]
        })

    if search_type not in VALID_SEARCH_TYPES:
        raise ToolError(f"Invalid search type: {search_type}. Valid values: {', '.join(VALID_SEARCH_TYPES)}")
    if aggregation_type not in VALID_AGGREGATION_TYPES:
        raise ToolError(
            f"Invalid aggregationType: {aggregation_type}. Valid values: {', '.join(VALID_AGGREGATION_TYPES)}"
        )
    if data_state not in ("all", "final"):
        raise ToolError(f"Invalid dataState: {data_state}. Valid values: all, final")

    body: Dict[str, Any] = {
        "startDate": start_date,
        "endDate": end_date,
        "type": search_type,
        "aggregationType": aggregation_type,
        "dataState": data_state,
        "rowLimit": row_limit,
        "startRow": start_row,
    }
    if dimensions:
        body["dimensions"] = dimensions
    if filter_groups:
        body["dimensionFilterGroups"] = filter_groups

    try:
        response = await client.query_search_analytics(site_url, body)
    except GSCApiError as e:
        message = f"Failed to query search analytics: {e.message}" if e.message else "Failed to query search analytics"
        hint = {
            400: "Bad Request - check your parameters",
            401: "Unauthorized - check your OAuth credentials",
            403: "Forbidden - you may not have access to this site",
            404: "Site not found - verify the siteUrl parameter",
        }.get(e.status)
        raise ToolError(f"{message} ({hint})" if hint else message) from e

    rows = _rows(response)
    total_clicks = sum(r["clicks"] for r in rows)
    total_impressions = sum(r["impressions"] for r in rows)
    avg_ctr = _mean([r["ctr"] for r in rows])
    avg_position = _mean([r["position"] for r in rows])

    def dimension_value(row: Dict[str, Any], name: str) -> str:
        index = dimensions.index(name) if name in dimensions else -1
        return row["keys"][index] if 0 <= index < len(row["keys"]) else "N/A"

    top_entries = []
    for row in rows[:10]:
        query = dimension_value(row, "query")
        query_display = f'"{query}"' if query != "N/A" else "N/A"
        top_entries.append(
            f"{query_display}\n"
            f"   Page: {dimension_value(row, 'page')}\n"
            f"   Clicks: {fmt_number(row['clicks'])} | Impressions: {fmt_number(row['impressions'])}\n"
            f"   CTR: {row['ctr']:.2f}% | Position: {row['position']:.1f}"
        )

    quick_wins_text = ""
    if detect_quick_wins:
        min_position, max_position = quick_wins["positionRange"]
        candidates = [
            r for r in rows
            if min_position <= r["position"] <= max_position
            and r["impressions"] >= quick_wins["minImpressions"]
            and r["ctr"] <= quick_wins["minCtr"]
        ][:10]
        if candidates:
            entries = []
            for r in candidates:
                # Estimate 5% CTR if ranking top 3
                potential = round(r["impressions"] * 0.05)
                increase = potential - r["clicks"]
                percent = (increase / r["clicks"]) * 100 if r["clicks"] > 0 else 0
                entries.append(
                    f"\"{dimension_value(r, 'query')}\" ({dimension_value(r, 'page')})\n"
                    f"   Position: {r['position']:.1f} | Impressions: {fmt_number(r['impressions'])}\n"
                    f"   Current CTR: {r['ctr']:.2f}%\n"
                    f"   → Optimize title tag and meta description to improve CTR. "
                    f"Potential: +{fmt_number(increase)} clicks (+{percent:.0f}%)"
                )
            quick_wins_text = f"\n\nQuick Win Opportunities Detected:\n{numbered(entries)}"
        else:
            quick_wins_text = "\n\nQuick Win Opportunities Detected:\nNo quick win opportunities found with current criteria."

    ctr_line = (
        "✓ Click-through rate is healthy (above 5%)" if avg_ctr > 5
        else "⚠ Click-through rate is below industry average (5%)"
    )
    position_line = (
        "✓ Average position is strong (first page)" if avg_position < 10
        else "⚠ Average position is needs improvement (page 2+)"
    )

    return (
        "Search Performance Summary:\n\n"
        f"Site: {site_url}\n"
        f"Date Range: {start_date} to {end_date}\n"
        f"Dimensions: {', '.join(dimensions) if dimensions else 'none'}\n"
        f"Row Limit: {row_limit} (showing {len(rows)} rows)\n\n"
        "Overall Metrics:\n"
        f"- Total Clicks: {fmt_number(total_clicks)}\n"
        f"- Total Impressions: {fmt_number(total_impressions)}\n"
        f"- Average CTR: {avg_ctr:.2f}%\n"
        f"- Average Position: {avg_position:.1f}\n\n"
        "Performance Indicators:\n"
        f"{ctr_line}\n"
        f"{position_line}\n\n"
        "Top Performing Queries:\n"
        f"{numbered(top_entries)}{quick_wins_text}\n\n"
        "Insights:\n"
        f"{generate_insights(total_clicks, total_impressions, avg_ctr, avg_position, rows)}\n\n"
        "Recommendations:\n"
        f"{generate_recommendations(avg_ctr, avg_position, total_clicks)}"
    )


# ==== Tier 2: URL & Sitemap Inspection ====

def _inspection_summary(response: Dict[str, Any]) -> Dict[str, Any]:
    inspection = response.get("inspectionResult", {}) or {}
    index_status = inspection.get("indexStatusResult", {}) or {}
    mobile = inspection.get("mobileUsabilityResult", {}) or {}
    rich = inspection.get("richResultsResult", {}) or {}
    return {
        "verdict": index_status.get("verdict") or "UNKNOWN",
        "coverageState": index_status.get("coverageState") or "UNKNOWN",
        "indexingState": index_status.get("indexingState") or "UNKNOWN",
        "lastCrawlTime": index_status.get("lastCrawlTime") or "Never",
        "pageFetchState": index_status.get("pageFetchState") or "UNKNOWN",
        "robotsTxtState": index_status.get("robotsTxtState") or "UNKNOWN",
        "googleCanonical": index_status.get("googleCanonical") or "",
        "userCanonical": index_status.get("userCanonical") or "",
        "mobileVerdict": mobile.get("verdict") or "UNKNOWN",
        "mobileIssues": mobile.get("issues", []) or [],
        "richVerdict": rich.get("verdict") or "UNKNOWN",
        "richItems": rich.get("detectedItems", []) or [],
        "link": inspection.get("inspectionResultLink") or "N/A",
    }


@gsc_tool(
    "inspect_url",
    "Retrieves detailed indexing information for a specific URL, including whether it's indexed by Google, crawl "
    "status, mobile usability, and any indexing issues detected.",
    {
        "siteUrl": {"type": "string", "description": 'The site URL property (e.g., "https://example.com/" or "sc-domain:example.com")'},
        "inspectionUrl": {"type": "string", "description": 'The full URL to inspect (e.g., "https://example.com/page")'},
        "languageCode": {"type": "string", "description": 'Language code for response. Default: "en-US"'},
    },
    required=["siteUrl", "inspectionUrl"],
)
async def inspect_url(args: Dict[str, Any], client: GSCClient) -> str:
    site_url = _str_arg(args, "siteUrl")
    inspection_url = _str_arg(args, "inspectionUrl")
    language_code = _str_arg(args, "languageCode", "en-US")
    if not site_url or not inspection_url:
        raise ToolError("siteUrl and inspectionUrl parameters are required")

    try:
        response = await client.inspect_url(site_url, inspection_url, language_code)
    except GSCApiError as e:
        raise _failure("Failed to inspect URL", e) from e

    if not (response.get("inspectionResult") or {}).get("indexStatusResult"):
        raise ToolError("No inspection result returned from API")
    s = _inspection_summary(response)

    verdict = s["verdict"]
    google_canonical = s["googleCanonical"] or "N/A"
    user_canonical = s["userCanonical"] or "N/A"
    canonical_match = google_canonical == user_canonical and google_canonical != "N/A"

    mobile_status = {"PASS": "✓ Passed", "FAIL": "❌ Failed"}.get(s["mobileVerdict"], "⚠ Neutral")
    if s["mobileIssues"]:
        mobile_issues = "Issues detected:\n" + "\n".join(
            f"  - {i.get('issueType') or 'Unknown'}: {i.get('message') or 'No message'}" for i in s["mobileIssues"]
        )
    else:
        mobile_issues = "No mobile usability issues"
    rich_status = {
        "PASS": "✓ Valid structured data",
        "FAIL": "❌ Issues with structured data",
    }.get(s["richVerdict"], "- No rich results detected")
    rich_items = ""
    if s["richItems"]:
        rich_items = "Detected items:\n" + "\n".join(
            f"  - {i.get('richResultType') or 'Unknown'}" for i in s["richItems"]
        ) + "\n"

    def check(ok: bool) -> str:
        return "✓" if ok else "❌"

    return (
        "URL Inspection Results:\n\n"
        f"URL: {inspection_url}\n"
        f"Site Property: {site_url}\n"
        f"Last Crawled: {s['lastCrawlTime']}\n\n"
        "Index Status:\n"
        f"{check(verdict == 'PASS')} Overall Verdict: {verdict}\n"
        f"Coverage State: {s['coverageState']}\n\n"
        "Crawling & Indexing:\n"
        f"{check(s['indexingState'] == 'INDEXING_ALLOWED')} Indexing: {s['indexingState']}\n"
        f"{check(s['robotsTxtState'] == 'ALLOWED')} Robots.txt: {s['robotsTxtState']}\n"
        f"{check(s['pageFetchState'] == 'SUCCESSFUL')} Page Fetch: {s['pageFetchState']}\n\n"
        "Canonical URLs:\n"
        f"- Google's Canonical: {google_canonical}\n"
        f"- User-Declared Canonical: {user_canonical}\n"
        f"{'✓ Canonicals match' if canonical_match else '⚠ Canonical mismatch detected'}\n\n"
        "Mobile Usability:\n"
        f"{mobile_status}\n"
        f"{mobile_issues}\n\n"
        "Rich Results:\n"
        f"{rich_status}\n"
        f"{rich_items}\n"
        f"{'✓ This URL is healthy and properly indexed by Google.' if verdict == 'PASS' else '⚠ Action Required: Address the issues above to improve indexing.'}\n\n"
        "View full details in Search Console:\n"
        f"{s['link']}"
    )


async def _inspect_sequentially(client: GSCClient, site_url: str, urls: List[str], language_code: str) -> List[Dict[str, Any]]:
    """Inspect URLs one at a time with a fixed pause between calls."""
    results = []
    for i, url in enumerate(urls):
        try:
            response = await client.inspect_url(site_url, url, language_code)
            summary = _inspection_summary(response)
            summary["indexed"] = summary["indexingState"] == "INDEXING_ALLOWED" and summary["verdict"] == "PASS"
            summary["error"] = None
        except GSCApiError as e:
            summary = {"verdict": "ERROR", "indexed": False, "error": f"API Error: {e.status or e.message}"}
        summary["url"] = url
        results.append(summary)
        # Pause between requests (except after the last one)
        if i < len(urls) - 1:
            await asyncio.sleep(INSPECTION_DELAY_SECONDS)
    return results


@gsc_tool(
    "batch_inspect_urls",
    "Inspects multiple URLs at once and identifies common indexing patterns, issues, or opportunities across the "
    "batch. Useful for auditing important pages or identifying systemic issues.",
    {
        "siteUrl": {"type": "string", "description": 'The site URL property (e.g., "https://example.com/" or "sc-domain:example.com")'},
        "urls": {
            "type": "string",
            "description": "JSON array of URLs to inspect (recommend max 20 per call due to rate limits). "
            'Example: ["https://example.com/page1", "https://example.com/page2"]',
        },
        "languageCode": {"type": "string", "description": 'Language code for response. Default: "en-US"'},
    },
    required=["siteUrl", "urls"],
)
async def batch_inspect_urls(args: Dict[str, Any], client: GSCClient) -> str:
    site_url = _str_arg(args, "siteUrl")
    language_code = _str_arg(args, "languageCode", "en-US")
    if not site_url:
        raise ToolError("siteUrl parameter is required")
    urls = _parse_urls(args.get("urls"), "Maximum 20 URLs per batch inspection (rate limit)")

    inspected = await _inspect_sequentially(client, site_url, urls, language_code)

    results = []
    for r in inspected:
        issues: List[str] = []
        if r["error"]:
            issues.append(r["error"])
        else:
            if r["verdict"] != "PASS":
                issues.append(f"Verdict: {r['verdict']}")
            if r["indexingState"] != "INDEXING_ALLOWED":
                issues.append(f"Indexing: {r['indexingState']}")
            if r["mobileVerdict"] == "FAIL":
                issues.append(f"Mobile usability issues ({len(r['mobileIssues'])})")
            if r["richVerdict"] == "FAIL":
                issues.append("Rich results issues")
        results.append({
            "url": r["url"],
            "indexed": r["indexed"],
            "verdict": r["verdict"],
            "lastCrawlTime": r.get("lastCrawlTime", "Never"),
            "issues": issues,
        })

    total = len(results)
    indexed = sum(1 for r in results if r["indexed"])
    with_issues = sum(1 for r in results if r["issues"])

    issue_counts: Dict[str, int] = {}
    for r in results:
        for issue in r["issues"]:
            issue_type = issue.split(":")[0]
            issue_counts[issue_type] = issue_counts.get(issue_type, 0) + 1
    common_issues = [f"{issue} ({count} URLs)" for issue, count in issue_counts.items() if count > 1][:5]

    entries = [
        f"{r['url']}\n"
        f"   Status: {'✓ Indexed' if r['indexed'] else '❌ Not Indexed'}\n"
        f"   Verdict: {r['verdict']}\n"
        f"   Last Crawled: {r['lastCrawlTime']}"
        + (f"\n   Issues: {', '.join(r['issues'])}" if r["issues"] else "")
        for r in results
    ]

    recommendations = []
    if total - indexed > 0:
        recommendations.append(f"- {total - indexed} URLs are not indexed - review robots.txt and sitemap")
    mobile_count = sum(1 for r in results if any("Mobile" in i for i in r["issues"]))
    if mobile_count:
        recommendations.append(f"- {mobile_count} URLs have mobile usability issues - optimize for mobile")
    if common_issues:
        recommendations.append(f"- Address common issues: {', '.join(common_issues)}")

    return (
        "Batch URL Inspection Results:\n\n"
        f"Site: {site_url}\n"
        f"URLs Inspected: {total}\n\n"
        "Summary:\n"
        f"✓ Indexed: {indexed} URLs\n"
        f"❌ Not Indexed: {total - indexed} URLs\n"
        f"⚠ Issues: {with_issues} URLs\n\n"
        "Detailed Results:\n\n"
        f"{numbered(entries)}\n\n"
        "Common Issues Found:\n"
        f"{chr(10).join(f'⚠ {i}' for i in common_issues) if common_issues else '✓ No common issues detected'}\n\n"
        "Recommendations:\n"
        f"{chr(10).join(recommendations) if recommendations else '- All URLs are healthy'}"
    )


def _content_stats(contents: List[Dict[str, Any]]):
    submitted_total = 0.0
    indexed_total = 0.0
    stats = []
    for c in contents:
        submitted = float(c.get("submitted", 0) or 0)
        indexed = float(c.get("indexed", 0) or 0)
        submitted_total += submitted
        indexed_total += indexed
        stats.append((str(c.get("type") or "Unknown").upper(), submitted, indexed))
    return stats, submitted_total, indexed_total


@gsc_tool(
    "list_sitemaps",
    "Retrieves all sitemaps submitted for a site, including their status, last submission date, and any warnings or "
    "errors detected during processing.",
    {
        "siteUrl": {"type": "string", "description": 'The site URL property (e.g., "https://example.com/" or "sc-domain:example.com")'},
        "sitemapIndex": {"type": "string", "description": "Optional: URL of sitemap index to list entries from"},
    },
    required=["siteUrl"],
)
async def list_sitemaps(args: Dict[str, Any], client: GSCClient) -> str:
    site_url = _str_arg(args, "siteUrl")
    sitemap_index = _str_arg(args, "sitemapIndex")
    if not site_url:
        raise ToolError("siteUrl parameter is required")

    try:
        data = await client.list_sitemaps(site_url, sitemap_index)
    except GSCApiError as e:
        raise _failure("Failed to list sitemaps", e) from e

    sitemaps = data.get("sitemap", []) or []
    if not sitemaps:
        return (
            f"Sitemaps for {site_url}:\n\n"
            "Total Sitemaps: 0\n\n"
            "No sitemaps found for this site. Submit sitemaps in Google Search Console to help Google discover and "
            "index your pages."
        )

    total_submitted = 0.0
    total_indexed = 0.0
    has_errors = False
    entries = []
    for s in sitemaps:
        # int64 counters arrive as strings
        errors, warnings = int(s.get("errors") or 0), int(s.get("warnings") or 0)
        has_errors = has_errors or errors > 0
        stats, submitted, indexed = _content_stats(s.get("contents", []) or [])
        total_submitted += submitted
        total_indexed += indexed
        stats_text = "\n".join(
            f"   - {kind}: {fmt_number(sub)} submitted, {fmt_number(idx)} indexed ({index_rate(idx, sub)}%)"
            for kind, sub, idx in stats
        ) or "   No content statistics available"
        lines = [
            s.get("path") or "N/A",
            f"   Type: {s.get('type') or 'Unknown'}",
            f"   Last Submitted: {s.get('lastSubmitted') or 'Never'}",
            f"   Status: {'⏳ Pending' if s.get('isPending') else '✓ Processed'}",
        ]
        if s.get("isSitemapsIndex"):
            lines.append("   📑 Sitemap Index")
        lines.extend([
            "",
            "   Content Statistics:",
            stats_text,
            "",
            "   Issues:",
            f"   {f'❌ {errors} errors' if errors else '✓ No errors'}",
            f"   {f'⚠ {warnings} warnings' if warnings else '✓ No warnings'}",
        ])
        entries.append("\n".join(lines))

    health = (
        "⚠ Some sitemaps have errors - use get_sitemap_details for more information"
        if has_errors else "✓ All sitemaps are healthy"
    )
    return (
        f"Sitemaps for {site_url}:\n\n"
        f"Total Sitemaps: {len(sitemaps)}\n\n"
        f"{numbered(entries)}\n\n"
        "Summary:\n"
        f"- Total URLs Submitted: {fmt_number(total_submitted)}\n"
        f"- Total URLs Indexed: {fmt_number(total_indexed)}\n"
        f"- Index Rate: {index_rate(total_indexed, total_submitted)}%\n\n"
        f"{health}\n\n"
        "Tip: Use get_sitemap_details with a specific sitemap path to see detailed error information."
    )


@gsc_tool(
    "get_sitemap_details",
    "Retrieves detailed information about a specific sitemap, including submission status, processing errors, "
    "warnings, and statistics on submitted vs indexed URLs.",
    {
        "siteUrl": {"type": "string", "description": 'The site URL property (e.g., "https://example.com/" or "sc-domain:example.com")'},
        "feedpath": {"type": "string", "description": 'The sitemap URL (e.g., "https://example.com/sitemap.xml")'},
    },
    required=["siteUrl", "feedpath"],
)
async def get_sitemap_details(args: Dict[str, Any], client: GSCClient) -> str:
    site_url = _str_arg(args, "siteUrl")
    feedpath = _str_arg(args, "feedpath")
    if not site_url or not feedpath:
        raise ToolError("siteUrl and feedpath parameters are required")

    try:
        data = await client.get_sitemap(site_url, feedpath)
    except GSCApiError as e:
        if e.status == 404:
            raise ToolError(
                f"Sitemap not found: {feedpath}. Please verify the sitemap path and ensure it exists for this site."
            ) from e
        raise _failure("Failed to get sitemap details", e) from e

    errors = int(data.get("errors") or 0)
    warnings = int(data.get("warnings") or 0)
    stats, total_submitted, total_indexed = _content_stats(data.get("contents", []) or [])
    contents_text = "\n".join(
        f"- {kind}:\n"
        f"  Submitted: {fmt_number(sub)} URLs\n"
        f"  Indexed: {fmt_number(idx)} URLs\n"
        f"  Index Rate: {index_rate(idx, sub)}%"
        for kind, sub, idx in stats
    ) or "No content statistics available"

    if not errors and not warnings:
        verdict = "✓ This sitemap is healthy and properly configured."
    else:
        actions = []
        if errors:
            actions.append(f"Fix {errors} errors")
        if warnings:
            actions.append(f"Review {warnings} warnings")
        verdict = f"⚠ Action Required: {' '.join(actions)}"
    coverage = (
        "✓ All URLs are indexed" if total_indexed == total_submitted
        else f"⚠ {fmt_number(total_submitted - total_indexed)} URLs not yet indexed"
    )

    status_lines = [
        f"Type: {data.get('type') or 'Unknown'}",
        "⏳ Status: Pending processing" if data.get("isPending") else "✓ Status: Processed",
    ]
    if data.get("isSitemapsIndex"):
        status_lines.append("📑 This is a Sitemap Index")

    return (
        "Sitemap Details:\n\n"
        f"Path: {data.get('path') or feedpath}\n"
        f"Site: {site_url}\n\n"
        "Status:\n"
        f"{chr(10).join(status_lines)}\n\n"
        "Timeline:\n"
        f"- Last Submitted: {data.get('lastSubmitted') or 'Never'}\n"
        f"- Last Downloaded: {data.get('lastDownloaded') or 'Never'}\n\n"
        "Content Statistics:\n"
        f"{contents_text}\n\n"
        "Issues:\n"
        f"{f'❌ Errors: {errors}' if errors else '✓ No errors'}\n"
        f"{f'⚠ Warnings: {warnings}' if warnings else '✓ No warnings'}\n\n"
        f"{verdict}\n\n"
        f"Index Coverage: {index_rate(total_indexed, total_submitted)}%\n"
        f"{coverage}"
    )


# ==== Tier 3: Advanced Analytics ====

@gsc_tool(
    "compare_periods",
    "Compares search performance between two time periods to identify which queries improved, declined, or remained "
    "stable. Useful for measuring impact of SEO changes or content updates.",
    {
        "siteUrl": SITE_URL_PROPERTY,
        "period1StartDate": {"type": "string", "description": "First period start date in YYYY-MM-DD format"},
        "period1EndDate": {"type": "string", "description": "First period end date in YYYY-MM-DD format"},
        "period2StartDate": {"type": "string", "description": "Second period start date in YYYY-MM-DD format"},
        "period2EndDate": {"type": "string", "description": "Second period end date in YYYY-MM-DD format"},
        "dimensions": {
            "type": "string",
            "description": 'Comma-separated list or JSON array of dimensions to compare. Default: ["query"]. '
            "Valid values: query, page, country, device",
        },
        "metric": {"type": "string", "description": "Metric to compare. Valid values: clicks, impressions, ctr, position. Default: clicks"},
    },
    required=["siteUrl", "period1StartDate", "period1EndDate", "period2StartDate", "period2EndDate"],
)
async def compare_periods(args: Dict[str, Any], client: GSCClient) -> str:
    site_url = _str_arg(args, "siteUrl", "")
    p1_start = _str_arg(args, "period1StartDate")
    p1_end = _str_arg(args, "period1EndDate")
    p2_start = _str_arg(args, "period2StartDate")
    p2_end = _str_arg(args, "period2EndDate")
    metric = _str_arg(args, "metric", "clicks")

    _require_dates(p1_start, p1_end, p2_start, p2_end, message="All dates must be in YYYY-MM-DD format")
    dimensions = _parse_list(args.get("dimensions")) or ["query"]
    if metric not in VALID_METRICS:
        raise ToolError(f"Invalid metric: {metric}. Valid values: {', '.join(VALID_METRICS)}")

    # Sequential: the client's httplib2 connection is not thread-safe
    period_rows = []
    for start, end in ((p1_start, p1_end), (p2_start, p2_end)):
        try:
            period_rows.append(_rows(await client.query_search_analytics(site_url, _analytics_body(start, end, dimensions))))
        except GSCApiError as e:
            raise ToolError(f"Failed to fetch period data: {e.status or e.message}") from e
    p1_rows, p2_rows = period_rows

    def totals(rows):
        return (
            sum(r["clicks"] for r in rows),
            sum(r["impressions"] for r in rows),
            _mean([r["ctr"] for r in rows]),
            _mean([r["position"] for r in rows]),
        )

    p1_clicks, p1_impressions, p1_ctr, p1_position = totals(p1_rows)
    p2_clicks, p2_impressions, p2_ctr, p2_position = totals(p2_rows)
    clicks_change = p2_clicks - p1_clicks
    clicks_change_pct = (clicks_change / p1_clicks) * 100 if p1_clicks > 0 else 0
    impressions_change = p2_impressions - p1_impressions
    impressions_change_pct = (impressions_change / p1_impressions) * 100 if p1_impressions > 0 else 0
    ctr_change = p2_ctr - p1_ctr
    position_change = p2_position - p1_position

    p1_map = {"|".join(r["keys"]): r for r in p1_rows}
    p2_map = {"|".join(r["keys"]): r for r in p2_rows}
    empty = {"clicks": 0.0, "impressions": 0.0, "ctr": 0.0, "position": 0.0}

    comparisons = []
    for key in list(dict.fromkeys(list(p1_map) + list(p2_map))):
        v1 = p1_map.get(key, empty)[metric]
        v2 = p2_map.get(key, empty)[metric]
        change = v2 - v1
        change_pct = (change / v1) * 100 if v1 > 0 else (100 if v2 > 0 else 0)
        comparisons.append({"keys": key.split("|"), "p1": v1, "p2": v2, "change": change, "changePct": change_pct})
    comparisons.sort(key=lambda c: abs(c["changePct"]), reverse=True)

    if metric == "position":
        # Lower position is better
        improved = [c for c in comparisons if c["change"] < 0]
        declined = [c for c in comparisons if c["change"] > 0]
    else:
        improved = [c for c in comparisons if c["change"] > 0 and c["p1"] > 0]
        declined = [c for c in comparisons if c["change"] < 0 and c["p1"] > 0]
    new_items = [c for c in comparisons if c["p1"] == 0 and c["p2"] > 0]
    lost_items = [c for c in comparisons if c["p1"] > 0 and c["p2"] == 0]

    def label(c) -> str:
        return c["keys"][0] if c["keys"] else "N/A"

    def format_item(c) -> str:
        dims = ", ".join(f"{d}: {c['keys'][i] if i < len(c['keys']) else 'N/A'}" for i, d in enumerate(dimensions))
        return (
            f"{label(c)}\n"
            f"   {dims}\n"
            f"   Period 1: {fmt_number(c['p1'])} {metric}\n"
            f"   Period 2: {fmt_number(c['p2'])} {metric}\n"
            f"   Change: {fmt_signed(c['change'])} ({fmt_signed_pct(c['changePct'])})"
        )

    insights = []
    if clicks_change_pct > 20:
        insights.append(f"📈 Significant growth: Clicks increased by {clicks_change_pct:.1f}%")
    elif clicks_change_pct < -20:
        insights.append(f"📉 Significant decline: Clicks decreased by {abs(clicks_change_pct):.1f}%")
    if position_change < -2:
        insights.append(f"✓ Average position improved by {abs(position_change):.1f} positions")
    elif position_change > 2:
        insights.append(f"⚠ Average position declined by {position_change:.1f} positions")
    if len(new_items) > len(improved):
        insights.append(f"💡 More new items ({len(new_items)}) than improved items ({len(improved)}) - expanding reach")

    recommendations = []
    if len(declined) > len(improved):
        recommendations.append("- More items declined than improved - review content strategy")
    if position_change > 0:
        recommendations.append("- Average position declined - focus on content quality and backlinks")
    if ctr_change < 0:
        recommendations.append("- CTR decreased - optimize title tags and meta descriptions")
    if new_items:
        recommendations.append(f"- {len(new_items)} new items appeared - capitalize on these opportunities")

    new_lines = [f"{label(c)} - {fmt_number(c['p2'])} {metric}" for c in new_items[:5]]
    lost_lines = [f"{label(c)} - was {fmt_number(c['p1'])} {metric}" for c in lost_items[:5]]

    def arrow(up: bool) -> str:
        return "📈" if up else "📉"

    return (
        "Period Comparison Analysis:\n\n"
        f"Site: {site_url}\n\n"
        f"Period 1: {p1_start} to {p1_end}\n"
        f"- Total Clicks: {fmt_number(p1_clicks)}\n"
        f"- Total Impressions: {fmt_number(p1_impressions)}\n"
        f"- Average CTR: {p1_ctr:.2f}%\n"
        f"- Average Position: {p1_position:.1f}\n\n"
        f"Period 2: {p2_start} to {p2_end}\n"
        f"- Total Clicks: {fmt_number(p2_clicks)}\n"
        f"- Total Impressions: {fmt_number(p2_impressions)}\n"
        f"- Average CTR: {p2_ctr:.2f}%\n"
        f"- Average Position: {p2_position:.1f}\n\n"
        "Overall Change:\n"
        f"{arrow(clicks_change >= 0)} Clicks: {fmt_signed(clicks_change)} ({fmt_signed_pct(clicks_change_pct)})\n"
        f"{arrow(impressions_change >= 0)} Impressions: {fmt_signed(impressions_change)} ({fmt_signed_pct(impressions_change_pct)})\n"
        f"{arrow(ctr_change >= 0)} CTR: {fmt_signed_pct(ctr_change, 2)}\n"
        f"{arrow(position_change <= 0)} Position: {'+' if position_change <= 0 else ''}{abs(position_change):.1f} "
        f"{'(improved)' if position_change <= 0 else '(declined)'}\n\n"
        "Top Improved Items:\n"
        f"{numbered([format_item(c) for c in improved[:5]])}\n\n"
        "Top Declined Items:\n"
        f"{numbered([format_item(c) for c in declined[:5]])}\n\n"
        "New Items (appeared in Period 2):\n"
        f"{numbered(new_lines, separator=chr(10))}\n\n"
        "Lost Items (disappeared in Period 2):\n"
        f"{numbered(lost_lines, separator=chr(10))}\n\n"
        "Insights:\n"
        f"{chr(10).join(insights) if insights else 'Performance is relatively stable between periods'}\n\n"
        "Recommendations:\n"
        f"{chr(10).join(recommendations) if recommendations else '- Continue current strategy'}"
    )


@gsc_tool(
    "find_keyword_opportunities",
    'Identifies search queries where the site is ranking on positions 4-20 (page 1-2) with high impressions but low '
    'clicks. These represent "quick win" opportunities where small improvements could significantly increase traffic.',
    {
        "siteUrl": SITE_URL_PROPERTY,
        "startDate": {"type": "string", "description": "Start date in YYYY-MM-DD format"},
        "endDate": {"type": "string", "description": "End date in YYYY-MM-DD format"},
        "minPosition": {"type": "string", "description": "Minimum position to consider. Default: 4"},
        "maxPosition": {"type": "string", "description": "Maximum position to consider. Default: 20"},
        "minImpressions": {"type": "string", "description": "Minimum impressions threshold. Default: 100"},
        "maxCtr": {"type": "string", "description": "Maximum CTR percentage to flag. Default: 3"},
    },
    required=["siteUrl", "startDate", "endDate"],
)
async def find_keyword_opportunities(args: Dict[str, Any], client: GSCClient) -> str:
    site_url = _str_arg(args, "siteUrl", "")
    start_date = _str_arg(args, "startDate")
    end_date = _str_arg(args, "endDate")
    min_position = _int_arg(args, "minPosition", 4)
    max_position = _int_arg(args, "maxPosition", 20)
    min_impressions = _int_arg(args, "minImpressions", 100)
    max_ctr = _float_arg(args, "maxCtr", 3.0)
    if None in (min_position, max_position, min_impressions, max_ctr):
        raise ToolError("minPosition, maxPosition, minImpressions and maxCtr must be numbers")

    _require_dates(start_date, end_date)

    try:
        response = await client.query_search_analytics(site_url, _analytics_body(start_date, end_date, ["query", "page"]))
    except GSCApiError as e:
        raise ToolError(f"Failed to fetch search analytics: {e.status or e.message}") from e

    candidates = [
        r for r in _rows(response)
        if min_position <= r["position"] <= max_position and r["impressions"] >= min_impressions and r["ctr"] <= max_ctr
    ]
    candidates.sort(key=lambda r: r["impressions"], reverse=True)

    opportunities = []
    for r in candidates[:10]:
        # Estimate potential clicks if ranking #1-3 (assume 5% CTR)
        potential = round(r["impressions"] * 0.05)
        increase = potential - r["clicks"]
        recommendation = "Optimize title tag and meta description to improve CTR"
        if r["position"] > 10:
            recommendation += ". Improve content quality to push ranking to page 1"
        elif r["position"] > 7:
            recommendation += ". Enhance content depth and internal linking"
        opportunities.append({
            **r,
            "query": r["keys"][0] if r["keys"] else "N/A",
            "page": r["keys"][1] if len(r["keys"]) > 1 else "N/A",
            "potential": potential,
            "increase": increase,
            "increasePct": (increase / r["clicks"]) * 100 if r["clicks"] > 0 else 0,
            "recommendation": recommendation,
        })

    total_impressions = sum(o["impressions"] for o in opportunities)
    potential_clicks = sum(o["increase"] for o in opportunities)

    entries = [
        f"\"{o['query']}\"\n"
        f"   Page: {o['page']}\n\n"
        "   Current Performance:\n"
        f"   - Position: {o['position']:.1f}\n"
        f"   - Impressions: {fmt_number(o['impressions'])}\n"
        f"   - Clicks: {fmt_number(o['clicks'])}\n"
        f"   - CTR: {o['ctr']:.2f}%\n\n"
        "   Potential Impact:\n"
        f"   - Estimated clicks if ranking #1-3: ~{o['potential']}\n"
        f"   - Potential increase: +{fmt_number(o['increase'])} clicks (+{o['increasePct']:.0f}%)\n\n"
        f"   → Recommendation: {o['recommendation']}"
        for o in opportunities
    ]

    return (
        "Keyword Ranking Opportunities:\n\n"
        f"Site: {site_url}\n"
        f"Date Range: {start_date} to {end_date}\n"
        f"Position Range: {min_position} - {max_position}\n\n"
        "Summary:\n"
        f"✓ Found {len(opportunities)} quick win opportunities\n"
        f"📊 Total impressions from these queries: {fmt_number(total_impressions)}\n"
        f"💰 Potential traffic increase: ~{fmt_number(potential_clicks)} additional clicks/month\n\n"
        "Top Opportunities:\n\n"
        f"{numbered(entries)}\n\n"
        "Strategy Overview:\n"
        "These queries are already ranking on page 1-2 with high visibility but low clicks.\n"
        "Small improvements could push them into top 3 positions and significantly increase traffic.\n\n"
        "Recommended Actions:\n"
        "1. Content Optimization: Update these pages with fresh, comprehensive content\n"
        "2. Title Tags: Improve click-worthiness with compelling, keyword-rich titles\n"
        "3. Meta Descriptions: Write persuasive descriptions to increase CTR\n"
        "4. Internal Linking: Add contextual links from related high-authority pages\n"
        "5. User Experience: Improve page speed and mobile usability\n"
        "6. Featured Snippets: Optimize content to capture position zero\n\n"
        "Expected ROI:\n"
        f"By targeting just the top 10 opportunities, you could potentially gain {fmt_number(potential_clicks)}\n"
        "additional monthly clicks with minimal effort compared to ranking for new keywords."
    )


def _aggregate_by_first_key(rows: List[Dict[str, Any]]) -> Dict[str, Dict[str, float]]:
    """Sum clicks/impressions and average CTR/position per first dimension value."""
    buckets: Dict[str, Dict[str, float]] = {}
    for r in rows:
        key = r["keys"][0] if r["keys"] else "UNKNOWN"
        b = buckets.setdefault(key, {"clicks": 0.0, "impressions": 0.0, "ctr": 0.0, "position": 0.0, "count": 0})
        b["clicks"] += r["clicks"]
        b["impressions"] += r["impressions"]
        b["ctr"] += r["ctr"]
        b["position"] += r["position"]
        b["count"] += 1
    for b in buckets.values():
        count = b.pop("count")
        b["ctr"] = b["ctr"] / count if count else 0.0
        b["position"] = b["position"] / count if count else 0.0
    return buckets


@gsc_tool(
    "get_device_breakdown",
    "Analyzes search performance across different device types (desktop, mobile, tablet) to identify device-specific "
    "optimization opportunities or issues.",
    {
        "siteUrl": SITE_URL_PROPERTY,
        "startDate": {"type": "string", "description": "Start date in YYYY-MM-DD format"},
        "endDate": {"type": "string", "description": "End date in YYYY-MM-DD format"},
        "additionalDimension": {
            "type": "string",
            "description": 'Additional dimension to break down by (e.g., "query", "page"). Default: none',
        },
    },
    required=["siteUrl", "startDate", "endDate"],
)
async def get_device_breakdown(args: Dict[str, Any], client: GSCClient) -> str:
    site_url = _str_arg(args, "siteUrl", "")
    start_date = _str_arg(args, "startDate")
    end_date = _str_arg(args, "endDate")
    additional = _str_arg(args, "additionalDimension")

    _require_dates(start_date, end_date)
    dimensions = ["device", additional] if additional else ["device"]

    try:
        response = await client.query_search_analytics(site_url, _analytics_body(start_date, end_date, dimensions))
    except GSCApiError as e:
        raise ToolError(f"Failed to fetch search analytics: {e.status or e.message}") from e

    by_device = _aggregate_by_first_key(_rows(response))
    empty = {"clicks": 0.0, "impressions": 0.0, "ctr": 0.0, "position": 0.0}
    total_clicks = sum(d["clicks"] for d in by_device.values())
    devices = {}
    for name in VALID_DEVICES:
        d = dict(by_device.get(name, empty))
        d["percent"] = (d["clicks"] / total_clicks) * 100 if total_clicks > 0 else 0.0
        devices[name] = d
    mobile, desktop, tablet = devices["MOBILE"], devices["DESKTOP"], devices["TABLET"]

    if mobile["clicks"] > desktop["clicks"] and mobile["clicks"] > tablet["clicks"]:
        primary = "MOBILE"
    elif desktop["clicks"] > tablet["clicks"]:
        primary = "DESKTOP"
    else:
        primary = "TABLET"

    order = ["MOBILE", "DESKTOP", "TABLET"]
    best_ctr = max(order, key=lambda n: devices[n]["ctr"])
    worst_ctr = min(order, key=lambda n: devices[n]["ctr"])
    ctr_gap = devices[best_ctr]["ctr"] - devices[worst_ctr]["ctr"]
    best_position = min(order, key=lambda n: devices[n]["position"])
    worst_position = max(order, key=lambda n: devices[n]["position"])
    position_gap = devices[worst_position]["position"] - devices[best_position]["position"]

    insights = []
    if mobile["percent"] > 60:
        insights.append("📱 Mobile-first traffic: Majority of traffic comes from mobile devices")
    elif desktop["percent"] > 60:
        insights.append("💻 Desktop-focused: Most traffic comes from desktop devices")
    if ctr_gap > 2:
        insights.append(f"⚠ CTR gap of {ctr_gap:.2f}% between devices - optimize underperforming device")
    if position_gap > 5:
        insights.append(f"⚠ Position gap of {position_gap:.1f} positions - improve rankings for {worst_position}")

    recommendations = []
    if mobile["percent"] > 50 and mobile["ctr"] < desktop["ctr"]:
        recommendations.append("- Optimize mobile experience to improve mobile CTR")
    if worst_ctr == "MOBILE":
        recommendations.append("- Focus on mobile optimization: improve page speed, mobile usability")
    if worst_position == "MOBILE":
        recommendations.append("- Improve mobile rankings: ensure mobile-friendly content and structure")

    if mobile["ctr"] < 2 or mobile["position"] > 15:
        priority, priority_note = "HIGH", "⚠ Mobile performance needs immediate attention"
    elif mobile["ctr"] < 3 or mobile["position"] > 10:
        priority, priority_note = "MEDIUM", "→ Consider mobile improvements"
    else:
        priority, priority_note = "LOW", "✓ Mobile performance is healthy"

    icons = {"MOBILE": "📱", "DESKTOP": "💻", "TABLET": "📲"}
    sections = "\n\n".join(
        f"{icons[name]} {name}\n"
        f"   Clicks: {fmt_number(devices[name]['clicks'])} ({devices[name]['percent']:.1f}%)\n"
        f"   Impressions: {fmt_number(devices[name]['impressions'])}\n"
        f"   CTR: {devices[name]['ctr']:.2f}%\n"
        f"   Avg Position: {devices[name]['position']:.1f}"
        for name in order
    )

    return (
        "Device Performance Breakdown:\n\n"
        f"Site: {site_url}\n"
        f"Date Range: {start_date} to {end_date}\n\n"
        "Overall Traffic Distribution:\n\n"
        f"{sections}\n\n"
        "Performance Analysis:\n\n"
        f"Primary Device: {primary}\n"
        f"{icons[primary]} {primary} generates {devices[primary]['percent']:.1f}% of total traffic\n\n"
        "CTR Comparison:\n"
        f"✓ {best_ctr.capitalize()} has the best CTR at {devices[best_ctr]['ctr']:.2f}%\n"
        f"{worst_ctr} has the lowest CTR at {devices[worst_ctr]['ctr']:.2f}% ({ctr_gap:.2f}% gap)\n\n"
        "Position Comparison:\n"
        f"{best_position} ranks best at position {devices[best_position]['position']:.1f}\n"
        f"{worst_position} ranks worst at position {devices[worst_position]['position']:.1f}\n\n"
        "Insights:\n"
        f"{chr(10).join(insights) if insights else 'Device performance is balanced'}\n\n"
        "Recommendations:\n"
        f"{chr(10).join(recommendations) if recommendations else '- Continue monitoring device performance'}\n\n"
        f"Mobile Optimization Priority: {priority}\n"
        f"{priority_note}"
    )


# ISO 3166-1 alpha-3 -> (name, flag)
COUNTRIES = {
    "USA": ("United States", "🇺🇸"),
    "GBR": ("United Kingdom", "🇬🇧"),
    "CAN": ("Canada", "🇨🇦"),
    "AUS": ("Australia", "🇦🇺"),
    "DEU": ("Germany", "🇩🇪"),
    "FRA": ("France", "🇫🇷"),
    "ITA": ("Italy", "🇮🇹"),
    "ESP": ("Spain", "🇪🇸"),
    "NLD": ("Netherlands", "🇳🇱"),
    "BEL": ("Belgium", "🇧🇪"),
    "SWE": ("Sweden", "🇸🇪"),
    "NOR": ("Norway", "🇳🇴"),
    "DNK": ("Denmark", "🇩🇰"),
    "FIN": ("Finland", "🇫🇮"),
    "POL": ("Poland", "🇵🇱"),
    "JPN": ("Japan", "🇯🇵"),
    "CHN": ("China", "🇨🇳"),
    "IND": ("India", "🇮🇳"),
    "BRA": ("Brazil", "🇧🇷"),
    "MEX": ("Mexico", "🇲🇽"),
    "ARG": ("Argentina", "🇦🇷"),
    "ZAF": ("South Africa", "🇿🇦"),
}


def _country_name(code: str) -> str:
    return COUNTRIES.get(code.upper(), (code, ""))[0]


def _country_flag(code: str) -> str:
    return COUNTRIES.get(code.upper(), ("", "🌍"))[1]


@gsc_tool(
    "get_country_breakdown",
    "Analyzes search performance across different countries to identify geographic expansion opportunities, "
    "localization needs, or regional performance issues.",
    {
        "siteUrl": SITE_URL_PROPERTY,
        "startDate": {"type": "string", "description": "Start date in YYYY-MM-DD format"},
        "endDate": {"type": "string", "description": "End date in YYYY-MM-DD format"},
        "topN": {"type": "string", "description": "Number of top countries to return. Default: 10"},
        "additionalDimension": {"type": "string", "description": 'Additional dimension to break down by (e.g., "query"). Default: none'},
    },
    required=["siteUrl", "startDate", "endDate"],
)
async def get_country_breakdown(args: Dict[str, Any], client: GSCClient) -> str:
    site_url = _str_arg(args, "siteUrl", "")
    start_date = _str_arg(args, "startDate")
    end_date = _str_arg(args, "endDate")
    top_n = _int_arg(args, "topN", 10)
    additional = _str_arg(args, "additionalDimension")
    if top_n is None or top_n < 1:
        raise ToolError("topN must be a positive number")

    _require_dates(start_date, end_date)
    dimensions = ["country", additional] if additional else ["country"]

    try:
        response = await client.query_search_analytics(site_url, _analytics_body(start_date, end_date, dimensions))
    except GSCApiError as e:
        raise ToolError(f"Failed to fetch search analytics: {e.status or e.message}") from e

    by_country = _aggregate_by_first_key(_rows(response))
    if not by_country:
        return (
            "Geographic Performance Breakdown:\n\n"
            f"Site: {site_url}\n"
            f"Date Range: {start_date} to {end_date}\n\n"
            "No country data found for this period."
        )

    total_clicks = sum(c["clicks"] for c in by_country.values())
    countries = sorted(
        (
            {**data, "country": code, "percent": (data["clicks"] / total_clicks) * 100 if total_clicks > 0 else 0.0}
            for code, data in by_country.items()
        ),
        key=lambda c: c["clicks"],
        reverse=True,
    )[:top_n]

    primary = countries[0]
    top_percent = sum(c["percent"] for c in countries)
    best_ctr = max(countries, key=lambda c: c["ctr"])
    worst_ctr = min(countries, key=lambda c: c["ctr"])
    ctr_variance = best_ctr["ctr"] - worst_ctr["ctr"]
    best_position = min(countries, key=lambda c: c["position"])
    worst_position = max(countries, key=lambda c: c["position"])

    established, growing, opportunity = [], [], []
    for c in countries:
        name = _country_name(c["country"])
        if c["percent"] > 10 and c["position"] < 10:
            established.append(name)
        elif c["percent"] > 5 and c["position"] < 15:
            growing.append(name)
        elif c["position"] < 20:
            opportunity.append(name)

    insights = []
    if primary["percent"] > 50:
        insights.append(f"🌍 {_country_name(primary['country'])} dominates with {primary['percent']:.1f}% of traffic")
    if ctr_variance > 3:
        insights.append(f"⚠ CTR variance of {ctr_variance:.2f}% across countries - consider localization")
    if opportunity:
        insights.append(f"💡 {len(opportunity)} opportunity markets identified for expansion")

    recommendations = []
    if primary["percent"] > 70:
        recommendations.append("- Consider expanding to other markets - high concentration in one country")
    if opportunity:
        recommendations.append(f"- Target opportunity markets: {', '.join(opportunity[:3])}")
    if worst_ctr["ctr"] < 2:
        recommendations.append(f"- Improve CTR in {_country_name(worst_ctr['country'])} - optimize for local preferences")

    if established:
        strategy = (
            f"Maintain strong presence in established markets ({', '.join(established)}).\n"
            "Consider localization for growing markets and expansion into opportunity markets."
        )
    else:
        strategy = "Focus on building presence in top markets before expanding."

    entries = [
        f"{_country_flag(c['country'])} {_country_name(c['country'])} ({c['country']})\n"
        f"   Clicks: {fmt_number(c['clicks'])} ({c['percent']:.1f}%)\n"
        f"   Impressions: {fmt_number(c['impressions'])}\n"
        f"   CTR: {c['ctr']:.2f}%\n"
        f"   Avg Position: {c['position']:.1f}"
        for c in countries
    ]

    return (
        "Geographic Performance Breakdown:\n\n"
        f"Site: {site_url}\n"
        f"Date Range: {start_date} to {end_date}\n"
        f"Showing: Top {top_n} countries by traffic\n\n"
        "Traffic Distribution:\n\n"
        f"{numbered(entries)}\n\n"
        "Geographic Analysis:\n\n"
        f"Primary Market: {primary['country']}\n"
        f"{_country_flag(primary['country'])} {_country_name(primary['country'])} dominates with {primary['percent']:.1f}% of traffic\n\n"
        f"Top {top_n} Countries: {top_percent:.1f}% of total traffic\n"
        f"Remaining Countries: {100 - top_percent:.1f}% of total traffic\n\n"
        "Performance Insights:\n\n"
        f"Best CTR: {_country_name(best_ctr['country'])} at {best_ctr['ctr']:.2f}%\n"
        f"Lowest CTR: {_country_name(worst_ctr['country'])} at {worst_ctr['ctr']:.2f}%\n"
        f"CTR Variance: {ctr_variance:.2f}%\n\n"
        f"Best Rankings: {_country_name(best_position['country'])} at position {best_position['position']:.1f}\n"
        f"Opportunity: {_country_name(worst_position['country'])} at position {worst_position['position']:.1f} - potential for growth\n\n"
        "Market Maturity:\n"
        f"✓ Established: {', '.join(established) or 'None'}\n"
        f"→ Growing: {', '.join(growing) or 'None'}\n"
        f"💡 Opportunity: {', '.join(opportunity) or 'None'}\n\n"
        "Insights:\n"
        f"{chr(10).join(insights) if insights else 'Geographic performance is balanced'}\n\n"
        "Recommendations:\n"
        f"{chr(10).join(recommendations) if recommendations else '- Continue current geographic strategy'}\n\n"
        "Geographic Strategy:\n"
        f"{strategy}"
    )


# Severity -> issue type -> (description, recommendation)
_ISSUE_CATALOG = {
    "Not Indexed": ("URL is not being indexed by Google", "Check robots.txt, ensure URL is in sitemap, verify no noindex tags"),
    "Robots.txt Blocked": ("URL is blocked by robots.txt", "Review and update robots.txt to allow indexing"),
    "Page Fetch Failed": ("Google cannot fetch the page", "Check server configuration, SSL certificates, and page accessibility"),
    "Mobile Usability Issues": ("Mobile usability problems detected", "Fix mobile usability issues to improve mobile search performance"),
    "Canonical Mismatch": ("Google canonical differs from user-declared canonical", "Align canonical tags to ensure proper indexing"),
    "Rich Results Issues": ("Structured data issues detected", "Fix structured data markup to enable rich results"),
}


@gsc_tool(
    "detect_indexing_issues",
    "Checks multiple important URLs for indexing problems and provides a prioritized list of issues that need "
    "attention. Useful for technical SEO audits.",
    {
        "siteUrl": SITE_URL_PROPERTY,
        "urls": {
            "type": "string",
            "description": 'JSON array of URLs to check (max 20). Example: ["https://example.com/page1", "https://example.com/page2"]',
        },
    },
    required=["siteUrl", "urls"],
)
async def detect_indexing_issues(args: Dict[str, Any], client: GSCClient) -> str:
    site_url = _str_arg(args, "siteUrl")
    if not site_url:
        raise ToolError("siteUrl parameter is required")
    urls = _parse_urls(args.get("urls"), "Maximum 20 URLs per check (rate limit)")

    inspected = await _inspect_sequentially(client, site_url, urls, "en-US")

    healthy: List[str] = []
    severities: Dict[str, Dict[str, List[str]]] = {"high": {}, "medium": {}, "low": {}}
    mobile_counts: Dict[str, int] = {}
    for r in inspected:
        if r["error"]:
            r.update({"indexingState": "UNKNOWN", "robotsTxtState": "UNKNOWN", "pageFetchState": "UNKNOWN"})
            mobile_issues, rich_issues, canonical_issues = 0, False, False
        else:
            mobile_issues = len(r["mobileIssues"])
            rich_issues = r["richVerdict"] == "FAIL"
            canonical_issues = bool(
                r["googleCanonical"] and r["userCanonical"] and r["googleCanonical"] != r["userCanonical"]
            )
        url = r["url"]
        if r["indexed"] and r["verdict"] == "PASS" and not mobile_issues and not rich_issues and not canonical_issues:
            healthy.append(url)
            continue
        if not r["indexed"] or r["indexingState"] != "INDEXING_ALLOWED":
            severities["high"].setdefault("Not Indexed", []).append(url)
        if r["robotsTxtState"] != "ALLOWED":
            severities["high"].setdefault("Robots.txt Blocked", []).append(url)
        if r["pageFetchState"] != "SUCCESSFUL":
            severities["high"].setdefault("Page Fetch Failed", []).append(url)
        if mobile_issues:
            severities["medium"].setdefault("Mobile Usability Issues", []).append(url)
            mobile_counts.setdefault("Mobile Usability Issues", mobile_issues)
        if canonical_issues:
            severities["low"].setdefault("Canonical Mismatch", []).append(url)
        if rich_issues:
            severities["low"].setdefault("Rich Results Issues", []).append(url)

    total = len(inspected)
    issues_count = total - len(healthy)
    counts = {level: sum(len(v) for v in groups.values()) for level, groups in severities.items()}

    def format_issues(groups: Dict[str, List[str]]) -> str:
        blocks = []
        for issue_type, affected in groups.items():
            description, recommendation = _ISSUE_CATALOG[issue_type]
            if issue_type in mobile_counts:
                description = f"{description} ({mobile_counts[issue_type]} issues)"
            blocks.append(
                f"   {issue_type}\n"
                f"   Affected URLs ({len(affected)}):\n"
                + "\n".join(f"      - {u}" for u in affected)
                + f"\n\n   Description: {description}\n"
                f"   → Action Required: {recommendation}"
            )
        return "\n\n".join(blocks)

    sections = []
    if counts["high"]:
        sections.append(f"❌ HIGH PRIORITY ({counts['high']} issues)\n{format_issues(severities['high'])}")
    if counts["medium"]:
        sections.append(f"⚠ MEDIUM PRIORITY ({counts['medium']} issues)\n{format_issues(severities['medium'])}")
    if counts["low"]:
        sections.append(f"ℹ️ LOW PRIORITY ({counts['low']} issues)\n{format_issues(severities['low'])}")
    if healthy:
        sections.append(f"✓ Healthy URLs ({len(healthy)}):\n" + "\n".join(f"   ✓ {u}" for u in healthy))

    def action(level: str, verb: str) -> str:
        if not severities[level]:
            return f"No {level}-priority issues"
        return f"{verb} {counts[level]} {level}-priority issues ({', '.join(severities[level])})"

    if counts["high"]:
        impact = f"Fixing high-priority issues could improve indexing for {counts['high']} URLs"
    elif counts["medium"]:
        impact = "Addressing medium-priority issues could improve user experience and search performance"
    else:
        impact = "Minor optimizations could further improve search performance"

    steps = []
    if severities["high"]:
        steps.append("1. Fix robots.txt and indexing issues immediately")
    if severities["medium"]:
        steps.append("2. Address mobile usability issues")
    if severities["low"]:
        steps.append("3. Review and fix canonical and structured data issues")

    health_score = round(100 - (counts["high"] * 30 + counts["medium"] * 15 + counts["low"] * 5) / total)
    if health_score >= 90:
        rating = "✓ Excellent - Site is healthy"
    elif health_score >= 70:
        rating = "→ Good - Minor improvements needed"
    elif health_score >= 50:
        rating = "⚠ Fair - Several issues to address"
    else:
        rating = "❌ Poor - Immediate action required"

    return (
        "Indexing Issues Report:\n\n"
        f"Site: {site_url}\n"
        f"URLs Checked: {total}\n\n"
        "Summary:\n"
        f"✓ Healthy: {len(healthy)} URLs ({len(healthy) / total * 100:.1f}%)\n"
        f"⚠ Issues Found: {issues_count} URLs ({issues_count / total * 100:.1f}%)\n\n"
        "Issues by Severity:\n\n"
        f"{chr(10).join(s + chr(10) for s in sections)}\n"
        "Priority Action Plan:\n\n"
        f"1. {action('high', 'Fix')}\n"
        f"2. {action('medium', 'Address')}\n"
        f"3. {action('low', 'Review')}\n\n"
        "Expected Impact:\n"
        f"{impact}\n\n"
        "Next Steps:\n"
        f"{chr(10).join(steps) if steps else 'Continue monitoring URL health'}\n\n"
        f"Technical SEO Health Score: {health_score}/100\n"
        f"{rating}"
    )
