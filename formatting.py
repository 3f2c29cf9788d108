# formatting.py
"""Text helpers shared by the Search Console tool reports."""

from typing import Any, Dict, List, Sequence


def fmt_number(value: Any) -> str:
    """Format a count with thousands separators (``1234`` -> ``1,234``)."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return str(value)
    if number.is_integer():
        return f"{int(number):,}"
    return f"{number:,.3f}".rstrip("0").rstrip(".")


def fmt_signed(value: float) -> str:
    return f"+{fmt_number(value)}" if value >= 0 else f"-{fmt_number(abs(value))}"


def fmt_signed_pct(value: float, digits: int = 1) -> str:
    return f"{'+' if value >= 0 else ''}{value:.{digits}f}%"


def index_rate(indexed: float, submitted: float) -> str:
    return f"{(indexed / submitted) * 100:.1f}" if submitted > 0 else "0.0"


def permission_label(level: str) -> str:
    return {
        "siteOwner": "Site Owner",
        "siteFullUser": "Full User",
        "siteRestrictedUser": "Restricted User",
    }.get(level, level)


def property_type(site_url: str) -> str:
    return "Domain property" if site_url.startswith("sc-domain:") else "URL-prefix property"


def generate_insights(
    total_clicks: float,
    total_impressions: float,
    avg_ctr: float,
    avg_position: float,
    rows: Sequence[Dict[str, Any]],
) -> str:
    """Observations about a search analytics result. CTR values are percentages."""
    insights: List[str] = []

    if total_clicks == 0:
        insights.append("⚠ No clicks recorded in this period. Consider reviewing your content strategy and keyword targeting.")

    if avg_ctr < 2:
        insights.append("⚠ CTR is below 2%. Consider optimizing title tags and meta descriptions to improve click-through rates.")
    elif avg_ctr < 5:
        insights.append("→ CTR is below industry average (5%). There is room for improvement in title and description optimization.")

    if avg_position > 20:
        insights.append("⚠ Average position is beyond page 2. Focus on improving content quality and relevance for target keywords.")
    elif avg_position > 10:
        insights.append("→ Average position is on page 2. Optimize content to push rankings to page 1.")

    if total_impressions > 0 and total_clicks == 0:
        insights.append("⚠ High impressions but zero clicks suggests content may not match search intent. Review and update content.")

    if rows:
        top = rows[0]
        if top["position"] <= 3 and top["ctr"] > 5:
            insights.append(
                f"✓ Top performing query has strong position ({top['position']:.1f}) and healthy CTR ({top['ctr']:.2f}%)."
            )

    return "\n".join(insights) if insights else "✓ Performance metrics are within healthy ranges."


def generate_recommendations(avg_ctr: float, avg_position: float, total_clicks: float) -> str:
    recommendations: List[str] = []

    if avg_ctr < 5:
        recommendations.append("- Improve meta descriptions to increase CTR")
        recommendations.append("- A/B test title tags to find more compelling variations")

    if avg_position > 10:
        recommendations.append("- Optimize content for better rankings")
        recommendations.append("- Build high-quality backlinks to improve domain authority")

    if total_clicks == 0:
        recommendations.append("- Review keyword targeting and content relevance")
        recommendations.append("- Check for technical SEO issues that may prevent indexing")

    recommendations.append("- Monitor top performing queries and create similar content")
    recommendations.append("- Use find_keyword_opportunities tool to identify quick wins")

    return "\n".join(recommendations)


def numbered(items: Sequence[str], separator: str = "\n\n") -> str:
    return separator.join(f"{i + 1}. {item}" for i, item in enumerate(items))
