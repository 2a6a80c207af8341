"""
Exa client: company -> currently employed LinkedIn contact matching the workspace ICP
"""
import asyncio
import logging
import os
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

EXA_BASE_URL = "https://api.exa.ai"
TARGET_TITLES = ['CEO', 'CFO', 'Chief Executive Officer', 'Chief Financial Officer']
MIN_CONFIDENCE = 0.3

CONCEPT_KEYWORDS = {
    'product': ['product', 'pm', 'prod', 'offering'],
    'technology': ['technology', 'tech', 'engineering', 'technical', 'software', 'hardware'],
    'executive': ['executive', 'chief', 'vp', 'vice president', 'svp', 'evp', 'head', 'director'],
    'senior': ['senior', 'sr', 'principal', 'lead'],
    'design': ['design', 'ux', 'ui', 'user experience', 'creative'],
    'marketing': ['marketing', 'growth', 'brand', 'demand'],
    'sales': ['sales', 'revenue', 'business development', 'bd'],
    'engineering': ['engineering', 'engineer', 'development', 'dev'],
    'decisions': ['decision', 'strategy', 'leadership', 'strategic'],
}

_MONTH = r'(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*'
CURRENT_EMPLOYMENT_PATTERNS = [
    re.compile(r'(\d{4})\s*[-–]\s*(present|current|now)', re.I),
    re.compile(_MONTH + r'\s+\d{4}\s*[-–]\s*(present|current|now)', re.I),
    re.compile(r'\d{1,2}/\d{4}\s*[-–]\s*(present|current|now)', re.I),
    re.compile(r'present\s*·\s*\d+\s*(yr|year|mo|month)', re.I),
    re.compile(r'current\s*(role|position|job)', re.I),
    re.compile(r'currently\s*(working|employed)', re.I),
]
NEGATIVE_INDICATORS = ['previous', 'former', 'past', 'prior', 'ex-', 'left', 'departed', 'ended']

_COMPANY_SUFFIX_RE = re.compile(r'\s*(inc|llc|corp|corporation|ltd|limited)\.?$', re.I)
_PROFILE_TITLE_RE = re.compile(r'^(.+?)\s*[-–]\s*(.+?)\s*(?:at|@)\s*(.+?)\s*\|\s*LinkedIn', re.I)
_SIMPLE_TITLE_RE = re.compile(r'^(.+?)\s*(?:[-–]\s*(.+?))?\s*\|\s*LinkedIn', re.I)
_LOCATION_RE = re.compile(r'(?:Located in|Based in|Location:)\s*([^.\n]+)', re.I)
_TWITTER_RE = re.compile(r'twitter\.com/([^/?]+)|x\.com/([^/?]+)')

def build_linkedin_query(company: str, titles: List[str] = None) -> str:
    expanded = []
    for title in titles or TARGET_TITLES:
        expanded.append(f'"{title}"')
        short = re.sub(r'Chief|Officer', '', title).strip()
        if short:
            expanded.append(short)

    parts = [
        'site:linkedin.com/in OR site:linkedin.com/pub',
        '(' + ' OR '.join(expanded) + ')',
        f'"currently working at {company}" OR "{company}" "present" OR "{company}" "current"',
        '-jobs -careers -hiring -former -"used to" -previously -ex- -"worked at" -"past experience" -"former employee"',
    ]
    return ' '.join(parts)

def parse_linkedin_profile(result: Dict[str, Any]) -> Dict[str, Any]:
    """Split "Name - Title at Company | LinkedIn" page titles into fields"""
    page_title = result.get('title') or ''
    text = result.get('text') or ''
    name, title, company = '', '', ''

    match = _PROFILE_TITLE_RE.match(page_title)
    if match:
        name, title, company = (g.strip() for g in match.groups())
    elif page_title:
        simple = _SIMPLE_TITLE_RE.match(page_title)
        if simple:
            name = simple.group(1).strip()
            title = (simple.group(2) or '').strip()

    if not name and text:
        lines = [line.strip() for line in text.split('\n') if line.strip()]
        name = lines[0] if lines else ''
        title = title or (lines[1] if len(lines) > 1 else '')

    location = _LOCATION_RE.search(text)
    return {
        'name': re.sub(r'\s+', ' ', re.sub(r"[^\w\s'-]", '', name)).strip(),
        'title': re.sub(r'at\s+.+$', '', re.sub(r'\|.*$', '', title), flags=re.I).strip(),
        'company': company,
        'linkedin_url': result.get('url', ''),
        'location': location.group(1).strip() if location else None,
    }

def title_match_score(text: str, title: str, icp_description: str = None) -> float:
    lower_text, lower_title = text.lower(), title.lower()

    if icp_description:
        icp = icp_description.lower()
        concept_count = concept_hits = 0
        for keywords in CONCEPT_KEYWORDS.values():
            if any(k in icp for k in keywords):
                concept_count += 1
                if any(k in lower_title or k in lower_text for k in keywords):
                    concept_hits += 1

        title_words = lower_title.split()
        icp_words = icp.split()
        exact = len([w for w in icp_words if len(w) > 3 and any(w in tw for tw in title_words)])

        concept_ratio = concept_hits / concept_count if concept_count else 0
        exact_ratio = exact / max(len(icp_words), 1)
        return min(concept_ratio * 0.7 + exact_ratio * 0.3, 1)

    if 'chief' in lower_title or 'ceo' in lower_title or 'cto' in lower_title:
        return 1.0
    if 'vp' in lower_title or 'vice president' in lower_title:
        return 0.8
    if 'director' in lower_title or 'head' in lower_title:
        return 0.6
    return 0.3

def company_match_score(text: str, company: str) -> float:
    """1.0 only when the profile shows a current role at the company, otherwise 0"""
    lower_text = text.lower()
    lower_company = company.lower()
    variants = {lower_company, _COMPANY_SUFFIX_RE.sub('', lower_company).strip()}

    for variant in filter(None, variants):
        index = lower_text.find(variant)
        while index != -1:
            start = max(0, index - 500)
            context = lower_text[start:index + len(variant) + 500]
            if any(p.search(context) for p in CURRENT_EMPLOYMENT_PATTERNS):
                company_end = index - start + len(variant)
                negative = any(
                    0 <= context.find(word) < company_end for word in NEGATIVE_INDICATORS
                )
                if not negative:
                    return 1.0
            index = lower_text.find(variant, index + 1)
    return 0.0

def location_match_score(text: str, location: str = None) -> float:
    if not location:
        return 0.5
    lower = text.lower()
    parts = [p for p in re.split(r'[,\s]+', location.lower()) if p]
    if not parts:
        return 0.5
    hits = len([p for p in parts if len(p) > 2 and p in lower])
    return min(hits / len(parts), 1)

def recency_score(text: str, now: datetime = None) -> float:
    year = (now or datetime.utcnow()).year
    return 1.0 if any(str(y) in text for y in (year, year - 1, year - 2)) else 0.5

def score_and_select_best_contact(search_results: List[Dict[str, Any]],
                                  contents: List[Dict[str, Any]],
                                  company: str,
                                  location: str = None,
                                  icp_description: str = None) -> Optional[Dict[str, Any]]:
    best = None
    for idx, content in enumerate(contents):
        search_result = search_results[idx] if idx < len(search_results) else {}
        text = content.get('text') or ''
        contact = parse_linkedin_profile({**search_result, 'text': text})

        company_score = company_match_score(text, company)
        if company_score == 0:
            continue

        score = (
            title_match_score(text, content.get('title') or '', icp_description) * 0.60
            + company_score * 0.30
            + location_match_score(text, location) * 0.05
            + recency_score(text) * 0.05
        )
        if score <= MIN_CONFIDENCE:
            continue

        contact['confidence_score'] = round(score, 3)
        contact['highlights'] = content.get('highlights') or []
        if best is None or score > best['confidence_score']:
            best = contact
    return best

def detect_content_type(title: str, url: str) -> str:
    lower = (title or '').lower()
    if 'podcast' in lower:
        return 'podcast'
    if 'interview' in lower:
        return 'interview'
    if 'keynote' in lower or 'talk' in lower:
        return 'talk'
    if 'webinar' in lower:
        return 'webinar'
    if 'blog' in (url or ''):
        return 'blog'
    return 'article'

def extract_twitter_handle(url: str) -> str:
    match = _TWITTER_RE.search(url or '')
    return f"@{match.group(1) or match.group(2)}" if match else ''

def extract_publication(url: str) -> str:
    hostname = urlparse(url or '').hostname
    if not hostname:
        return 'Unknown'
    return hostname.replace('www.', '').split('.')[0]

class ExaClient:
    def __init__(self, api_key: str = None, timeout: float = 15, transport: httpx.AsyncBaseTransport = None):
        self.api_key = api_key or os.getenv("EXA_API_KEY")
        if not self.api_key:
            raise ValueError("EXA_API_KEY environment variable is required")
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "User-Agent": "Split-Leads/1.0",
        }

    async def _post(self, path: str, body: Dict[str, Any]) -> List[Dict[str, Any]]:
        """POST to Exa; any failure yields an empty result list"""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(f"{EXA_BASE_URL}{path}", json=body, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error(f"Exa {path} request failed: {e}")
            return []

        if response.status_code != 200:
            logger.error(f"Exa {path} API error: {response.status_code} {response.text[:200]}")
            return []
        try:
            return response.json().get("results") or []
        except ValueError:
            logger.error(f"Exa {path} returned invalid JSON")
            return []

    async def search_linkedin(self, company: str, titles: List[str] = None) -> List[Dict[str, Any]]:
        return await self._post("/search", {
            "query": build_linkedin_query(company, titles),
            "numResults": 6,
            "includeDomains": ["linkedin.com"],
            "useAutoprompt": False,
        })

    async def fetch_contents(self, urls: List[str]) -> List[Dict[str, Any]]:
        if not urls:
            return []
        return await self._post("/contents", {
            "urls": urls,
            "text": True,
            "livecrawl": "preferred",
            "highlights": {"numSentences": 2},
        })

    async def find_contact(self, company: str, titles: List[str] = None,
                           location: str = None, icp_description: str = None) -> Optional[Dict[str, Any]]:
        results = await self.search_linkedin(company, titles)
        if not results:
            logger.info(f"No LinkedIn results for {company}")
            return None

        contents = await self.fetch_contents([r["url"] for r in results if r.get("url")])
        contact = score_and_select_best_contact(results, contents, company, location, icp_description)
        if contact:
            logger.info(f"🎯 Matched contact at {company} (confidence {contact['confidence_score']})")
        return contact

    async def deep_enrich_person(self, name: str, company: str) -> Dict[str, Any]:
        thought_leadership, social, patents, press = await asyncio.gather(
            self._search_thought_leadership(name, company),
            self._search_social_profiles(name, company),
            self._search_patents(name),
            self._search_press_quotes(name, company),
        )
        return {
            "thought_leadership": thought_leadership[:3],
            "social_profiles": social,
            "patents": patents[:2],
            "press_quotes": press[:3],
            "total_public_mentions": len(thought_leadership) + len(press),
        }

    async def _search_thought_leadership(self, name: str, company: str) -> List[Dict[str, Any]]:
        since = (datetime.utcnow() - timedelta(days=365)).isoformat() + "Z"
        results = await self._post("/search", {
            "query": f'"{name}" "{company}" (podcast OR blog OR interview OR keynote OR webinar OR talk OR conference)',
            "numResults": 5,
            "useAutoprompt": True,
            "type": "auto",
            "startPublishedDate": since,
        })
        return [{
            "type": detect_content_type(r.get("title"), r.get("url")),
            "title": r.get("title"),
            "url": r.get("url"),
            "date": r.get("publishedDate"),
            "snippet": (r.get("text") or "")[:200],
        } for r in results]

    async def _search_social_profiles(self, name: str, company: str) -> List[Dict[str, Any]]:
        results = await self._post("/search", {
            "query": f'"{name}" site:twitter.com "{company}"',
            "numResults": 1,
            "includeDomains": ["twitter.com", "x.com"],
        })
        if not results:
            return []
        url = results[0].get("url", "")
        return [{"platform": "Twitter/X", "url": url, "handle": extract_twitter_handle(url)}]

    async def _search_patents(self, name: str) -> List[Dict[str, Any]]:
        results = await self._post("/search", {
            "query": f'"{name}" patent (USPTO OR "patent application" OR inventor)',
            "numResults": 3,
            "useAutoprompt": False,
        })
        return [{"title": r.get("title"), "url": r.get("url"), "date": r.get("publishedDate")} for r in results]

    async def _search_press_quotes(self, name: str, company: str) -> List[Dict[str, Any]]:
        since = (datetime.utcnow() - timedelta(days=180)).isoformat() + "Z"
        results = await self._post("/search", {
            "query": f'"{name}" "{company}" (announced OR launches OR said OR "press release" OR quoted)',
            "numResults": 5,
            "useAutoprompt": True,
            "type": "news",
            "startPublishedDate": since,
        })
        return [{
            "publication": extract_publication(r.get("url")),
            "title": r.get("title"),
            "url": r.get("url"),
            "date": r.get("publishedDate"),
            "snippet": (r.get("text") or "")[:200],
        } for r in results]
