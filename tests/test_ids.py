from postharvest.core.ids import build_search_url, post_link, safe_filename, urn_from_link


def test_search_url_encodes_keywords_and_filters():
    url = build_search_url("legal counsel & co")
    assert url.startswith("https://www.linkedin.com/search/results/content/?")
    assert "keywords=legal%20counsel%20%26%20co" in url
    assert "datePosted=%22past-month%22" in url
    assert "sortBy=%22relevance%22" in url
    assert "origin=FACETED_SEARCH" in url


def test_post_link_is_deterministic():
    assert post_link("urn:li:activity:7123") == "https://www.linkedin.com/feed/update/urn:li:activity:7123/"
    assert post_link("urn:li:activity:7123") == post_link("urn:li:activity:7123")


def test_urn_helpers():
    link = post_link("urn:li:ugcPost:998")
    assert urn_from_link(link) == "urn:li:ugcPost:998"
    assert urn_from_link("https://example.com/") is None
    assert safe_filename("urn:li:activity:1") == "urn_li_activity_1"
