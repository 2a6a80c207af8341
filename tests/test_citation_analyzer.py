import pytest

from services.max_visibility.citation_analyzer import CitationAnalyzer, citation_stats, clean_domain

@pytest.fixture
def analyzer():
    return CitationAnalyzer("Acme Analytics", "https://www.acme.io", competitor_domains=["mixpanel.com"])

def test_clean_domain():
    assert clean_domain("https://WWW.Acme.io/path") == "acme.io"
    assert clean_domain("www.acme.io") == "acme.io"
    assert clean_domain(None) == ""

@pytest.mark.parametrize("url, bucket, influence", [
    ("https://docs.acme.io/start", "owned", 0.95),
    ("https://www.linkedin.com/company/acme", "operated", 0.85),
    ("https://www.g2.com/products/other-tool", "earned", 0.7),
    ("https://mixpanel.com/blog/compare", "competitor", 0.3),
    ("https://techcrunch.com/2024/05/acme-raises", "earned", 0.8),
    ("https://www.nytimes.com/tech", "earned", 0.85),
    ("https://citynews.com/story", "earned", 0.8),
    ("https://someblog.dev/post", "earned", 0.7),
])
def test_classify(analyzer, url, bucket, influence):
    result = analyzer.classify(url)
    assert result["bucket"] == bucket
    assert result["influence_score"] == influence

def test_operated_platform_recognized_by_title(analyzer):
    result = analyzer.classify("https://www.youtube.com/watch?v=123", title="Acme Analytics product tour")
    assert result["bucket"] == "operated"

def test_owned_aliases_and_custom_platforms():
    analyzer = CitationAnalyzer("Acme", "acme.io", owned_domains=["acme.dev"], operated_domains=["acme.medium.com"])
    analyzer.add_platforms({"producthunt.com": "operated", "example.org": "bogus"})
    assert analyzer.classify("https://blog.acme.dev/x")["bucket"] == "owned"
    assert analyzer.classify("https://acme.medium.com/post")["bucket"] == "operated"
    assert analyzer.classify("https://www.producthunt.com/posts/acme")["bucket"] == "operated"
    assert "example.org" not in analyzer.platforms

def test_relevance_score(analyzer):
    assert analyzer.relevance_score("https://g2.com/acme-reviews") == 0.8
    assert analyzer.relevance_score("https://example.com/acmeanalytics-pricing-comparison") == 1.0
    assert analyzer.relevance_score("https://example.com/") == 0.5

def test_classify_invalid_url_falls_back(analyzer):
    result = analyzer.classify("not a url")
    assert result["bucket"] == "earned"
    assert result["influence_score"] == 0.5
    assert result["reasoning"].startswith("Classification error")

def test_analyze_accepts_strings_and_dicts(analyzer):
    results = analyzer.analyze(["https://acme.io", {"url": "https://g2.com/x", "title": "G2"}])
    assert [r["bucket"] for r in results] == ["owned", "earned"]
    assert results[1]["title"] == "G2"
    assert analyzer.analyze(None) == []

def test_citation_stats(analyzer):
    stats = citation_stats(analyzer.analyze(["https://acme.io", "https://mixpanel.com"]))
    assert stats["total"] == 2
    assert stats["by_bucket"] == {"owned": 1, "operated": 0, "earned": 0, "competitor": 1}
    assert stats["avg_influence_score"] == 0.625
    assert citation_stats([])["avg_influence_score"] == 0.0
