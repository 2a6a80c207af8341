"""
AI crawler registry and user-agent detection
Shared by the crawler-events API, the tracking pixel and the visitor beacon
"""

from typing import Dict, List, Optional

CATEGORIES = ("ai-training", "ai-assistant", "ai-search", "search-ai", "social-ai")

# user-agent token -> (company, category)
KNOWN_CRAWLERS = {
    'GPTBot': ('OpenAI', 'ai-training'),
    'ChatGPT-User': ('OpenAI', 'ai-assistant'),
    'OAI-SearchBot': ('OpenAI', 'ai-search'),
    'Claude-Web': ('Anthropic', 'ai-assistant'),
    'ClaudeBot': ('Anthropic', 'ai-training'),
    'anthropic-ai': ('Anthropic', 'ai-training'),
    'PerplexityBot': ('Perplexity', 'ai-search'),
    'Google-Extended': ('Google', 'ai-training'),
    'Googlebot': ('Google', 'search-ai'),
    'Bingbot': ('Microsoft', 'search-ai'),
    'msnbot': ('Microsoft', 'search-ai'),
    'FacebookBot': ('Meta', 'social-ai'),
    'Meta-ExternalAgent': ('Meta', 'ai-training'),
    'YouBot': ('You.com', 'ai-search'),
    'Bytespider': ('ByteDance', 'ai-training'),
    'Baiduspider': ('Baidu', 'search-ai'),
    'Amazonbot': ('Amazon', 'ai-assistant'),
    'LinkedInBot': ('LinkedIn', 'social-ai'),
    'Applebot': ('Apple', 'search-ai'),
    'Applebot-Extended': ('Apple', 'ai-training'),
    'CCBot': ('Common Crawl', 'ai-training'),
    'PetalBot': ('Petal Search', 'search-ai'),
    'YandexBot': ('Yandex', 'search-ai'),
    'DuckDuckBot': ('DuckDuckGo', 'search-ai'),
}

# Longest token first so "Applebot-Extended" is tried before "Applebot"
_MATCH_ORDER = sorted(KNOWN_CRAWLERS, key=len, reverse=True)

def detect_crawler(user_agent: Optional[str]) -> Optional[Dict[str, str]]:
    """Return {name, company, category} for a known crawler user-agent, else None."""
    if not user_agent:
        return None

    ua_lower = user_agent.lower()
    for token in _MATCH_ORDER:
        if token.lower() in ua_lower:
            company, category = KNOWN_CRAWLERS[token]
            return {"name": token, "company": company, "category": category}

    return None

def is_ai_crawler(user_agent: Optional[str]) -> bool:
    return detect_crawler(user_agent) is not None

def crawler_info(name: str) -> Optional[Dict[str, str]]:
    """Registry entry by exact crawler name"""
    entry = KNOWN_CRAWLERS.get(name)
    if not entry:
        return None
    return {"name": name, "company": entry[0], "category": entry[1]}

def crawlers_by_company() -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = {}
    for name, (company, _) in KNOWN_CRAWLERS.items():
        grouped.setdefault(company, []).append(name)
    return grouped

def crawlers_in_category(category: str) -> List[str]:
    if category not in CATEGORIES:
        raise ValueError(f"Unknown crawler category: {category}")
    return [name for name, (_, cat) in KNOWN_CRAWLERS.items() if cat == category]

def crawler_categories() -> Dict[str, List[str]]:
    """Category -> crawler names, every category present even when empty"""
    return {category: crawlers_in_category(category) for category in CATEGORIES}
