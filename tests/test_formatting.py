from formatting import (
    fmt_number,
    fmt_signed,
    fmt_signed_pct,
    generate_insights,
    generate_recommendations,
    index_rate,
    numbered,
    property_type,
)


def test_fmt_number():
    assert fmt_number(1234) == "1,234"
    assert fmt_number(1234.0) == "1,234"
    assert fmt_number(2.5) == "2.5"
    assert fmt_number("n/a") == "n/a"


def test_signed_values():
    assert fmt_signed(12) == "+12"
    assert fmt_signed(-1500) == "-1,500"
    assert fmt_signed_pct(12.345) == "+12.3%"
    assert fmt_signed_pct(-0.5, 2) == "-0.50%"


def test_index_rate_handles_zero_submitted():
    assert index_rate(0, 0) == "0.0"
    assert index_rate(1, 3) == "33.3"


def test_property_type():
    assert property_type("sc-domain:example.com") == "Domain property"
    assert property_type("https://example.com/") == "URL-prefix property"


def test_numbered():
    assert numbered(["a", "b"], separator="\n") == "1. a\n2. b"


def test_insights_flag_low_ctr_and_page_two():
    text = generate_insights(10, 1000, 1.0, 15.0, [])
    assert "CTR is below 2%" in text
    assert "page 2" in text


def test_insights_healthy():
    rows = [{"position": 2.0, "ctr": 12.0}]
    text = generate_insights(500, 2000, 8.0, 3.0, rows)
    assert text.startswith("✓ Top performing query")


def test_recommendations_always_suggest_monitoring():
    text = generate_recommendations(8.0, 3.0, 100)
    assert text.splitlines() == [
        "- Monitor top performing queries and create similar content",
        "- Use find_keyword_opportunities tool to identify quick wins",
    ]
