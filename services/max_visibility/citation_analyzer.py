"""
Citation classification into owned / operated / earned / competitor buckets
"""
import logging
import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

BUCKETS = ("owned", "operated", "earned", "competitor")

BASE_INFLUENCE = {"owned": 0.95, "operated": 0.85, "earned": 0.7, "competitor": 0.3}

KNOWN_PLATFORMS = {
    # profiles a company runs itself
    "linkedin.com": "operated",
    "twitter.com": "operated",
    "x.com": "operated",
    "facebook.com": "operated",
    "instagram.com": "operated",
    "youtube.com": "operated",
    "tiktok.com": "operated",
    "g2.com": "operated",
    "capterra.com": "operated",
    "trustpilot.com": "operated",
    "glassdoor.com": "operated",
    "crunchbase.com": "operated",
    "angel.co": "operated",
    "github.com": "operated",
    "npmjs.com": "operated",
    "stackshare.io": "operated",
    "apps.apple.com": "operated",
    "play.google.com": "operated",
    # press and reference
    "techcrunch.com": "earned",
    "venturebeat.com": "earned",
    "theverge.com": "earned",
    "wired.com": "earned",
    "forbes.com": "earned",
    "bloomberg.com": "earned",
    "reuters.com": "earned",
    "cnn.com": "earned",
    "hbr.org": "earned",
    "mckinsey.com": "earned",
    "deloitte.com": "earned",
    "accenture.com": "earned",
    "wikipedia.org": "earned",
    "investopedia.com": "earned",
}

HIGH_AUTHORITY_DOMAINS = {
    "techcrunch.com", "venturebeat.com", "theverge.com", "wired.com",
    "forbes.com", "bloomberg.com", "reuters.com", "wsj.com",
    "nytimes.com", "washingtonpost.com", "cnn.com", "bbc.com",
    "wikipedia.org", "investopedia.com", "hbr.org",
}

NEWS_KEYWORDS = ("news", "times", "post", "herald", "journal", "tribune")
RELEVANCE_KEYWORDS = ("review", "comparison", "alternative", "pricing", "features")

def clean_domain(host: str) -> str:
    host = (host or "").strip().lower()
    if "://" in host:
        host = urlparse(host).hostname or ""
    return re.sub(r"^www\.", "", host)

def is_high_authority(domain: str) -> bool:
    return domain in HIGH_AUTHORITY_DOMAINS or any(domain.endswith("." + d) for d in HIGH_AUTHORITY_DOMAINS)

def is_news_domain(domain: str) -> bool:
    return any(k in domain for k in NEWS_KEYWORDS) or domain.endswith(".news") or is_high_authority(domain)

def influence_score(bucket: str, domain: str) -> float:
    score = BASE_INFLUENCE[bucket]
    if is_high_authority(domain):
        score = min(score + 0.1, 1.0)
    return round(score, 4)

def earned_influence_score(domain: str) -> float:
    if is_high_authority(domain):
        return 0.85
    if is_news_domain(domain):
        return 0.8
    return 0.7

class CitationAnalyzer:
    def __init__(self, company_name: str, company_domain: str,
                 owned_domains: Iterable[str] = (), operated_domains: Iterable[str] = (),
                 competitor_domains: Iterable[str] = ()):
        self.company_name = company_name or ""
        self.company_domain = clean_domain(company_domain)
        self.brand = self.company_domain.split(".")[0] if self.company_domain else ""
        self.owned_domains = {clean_domain(d) for d in owned_domains if d}
        self.operated_domains = {clean_domain(d) for d in operated_domains if d}
        self.competitor_domains = {clean_domain(d) for d in competitor_domains if d}
        self.platforms = dict(KNOWN_PLATFORMS)

    def add_platforms(self, classifications: Dict[str, str]):
        self.platforms.update({clean_domain(d): b for d, b in classifications.items() if b in BUCKETS})

    # Matching helpers
    def _matches(self, domain: str, candidates) -> bool:
        return any(domain == c or domain.endswith("." + c) for c in candidates)

    def _platform_for(self, domain: str) -> Optional[str]:
        for platform, bucket in self.platforms.items():
            if domain == platform or domain.endswith("." + platform):
                return bucket
        return None

    def _name_variants(self) -> List[str]:
        name = self.company_name.lower().strip()
        variants = {re.sub(r"\s+", "", name), re.sub(r"\s+", "-", name), re.sub(r"\s+", "_", name), self.brand}
        return [v for v in variants if v]

    def company_presence(self, url: str, title: str = "") -> bool:
        """Company handle in the URL path/query, or the company named in the title"""
        url = url.lower()
        for variant in self._name_variants():
            if any(f"{sep}{variant}" in url for sep in ("/", "=", "-", "_")):
                return True
        title = (title or "").lower()
        return bool(title and self.company_name and self.company_name.lower() in title)

    def relevance_score(self, url: str) -> float:
        url = url.lower()
        score = 0.5
        name = re.sub(r"\s+", "", self.company_name.lower())
        if name and name in url:
            score += 0.3
        if self.brand and self.brand in url:
            score += 0.2
        score += 0.1 * sum(1 for k in RELEVANCE_KEYWORDS if k in url)
        return min(round(score, 4), 1.0)

    # Classification
    def classify(self, url: str, title: str = "") -> Dict[str, Any]:
        try:
            domain = clean_domain(urlparse(url).hostname or "")
            if not domain:
                raise ValueError(f"Invalid URL: {url}")
            return self._classify(url, title, domain)
        except Exception as e:
            logger.warning(f"Citation classification failed for {url}: {e}")
            return {
                "url": url,
                "domain": "",
                "bucket": "earned",
                "influence_score": 0.5,
                "relevance_score": 0.5,
                "reasoning": f"Classification error: {e}",
            }

    def _classify(self, url: str, title: str, domain: str) -> Dict[str, Any]:
        result = {"url": url, "domain": domain}

        if self.company_domain and self._matches(domain, {self.company_domain} | self.owned_domains):
            return {**result, "bucket": "owned", "influence_score": 0.95, "relevance_score": 0.9,
                    "reasoning": f"Direct company domain: {domain}"}

        if domain in self.operated_domains:
            return {**result, "bucket": "operated", "influence_score": 0.85, "relevance_score": 0.8,
                    "reasoning": f"Company operated domain: {domain}"}

        if self.competitor_domains and self._matches(domain, self.competitor_domains):
            return {**result, "bucket": "competitor", "influence_score": influence_score("competitor", domain),
                    "relevance_score": self.relevance_score(url),
                    "reasoning": f"Competitor domain: {domain}"}

        platform_bucket = self._platform_for(domain)
        if platform_bucket == "operated":
            if self.company_presence(url, title):
                bucket, reasoning = "operated", f"Company presence detected on {domain}"
            else:
                bucket, reasoning = "earned", f"Third-party content on {domain}"
            return {**result, "bucket": bucket, "influence_score": influence_score(bucket, domain),
                    "relevance_score": self.relevance_score(url), "reasoning": reasoning}
        if platform_bucket:
            return {**result, "bucket": platform_bucket,
                    "influence_score": influence_score(platform_bucket, domain),
                    "relevance_score": self.relevance_score(url),
                    "reasoning": f"Known platform: {domain} ({platform_bucket})"}

        return {**result, "bucket": "earned", "influence_score": earned_influence_score(domain),
                "relevance_score": self.relevance_score(url),
                "reasoning": f"Third-party content from {domain}"}

    def analyze(self, citations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Citations as {url, title?} dicts or bare url strings"""
        results = []
        for citation in citations or []:
            if isinstance(citation, str):
                citation = {"url": citation}
            results.append({**self.classify(citation.get("url") or "", citation.get("title") or ""),
                            "title": citation.get("title") or ""})
        return results

def citation_stats(citations: List[Dict[str, Any]]) -> Dict[str, Any]:
    stats = {
        "total": len(citations),
        "by_bucket": {bucket: 0 for bucket in BUCKETS},
        "avg_influence_score": 0.0,
        "avg_relevance_score": 0.0,
    }
    if not citations:
        return stats
    for c in citations:
        stats["by_bucket"][c["bucket"]] += 1
    stats["avg_influence_score"] = round(sum(c["influence_score"] for c in citations) / len(citations), 4)
    stats["avg_relevance_score"] = round(sum(c["relevance_score"] for c in citations) / len(citations), 4)
    return stats
