import httpx
import pytest

import services.leads as leads_service

from api.leads import get_lead_service, router as leads_router
from services.enrichment.exa_client import (
    ExaClient,
    build_linkedin_query,
    company_match_score,
    extract_publication,
    extract_twitter_handle,
    parse_linkedin_profile,
    score_and_select_best_contact,
    title_match_score,
)
from services.enrichment.ipinfo_client import IPInfoClient, domain_from_company, is_public_ip, parse_company
from services.feature_flags import feature_flags
from services.leads import LeadEnrichmentService, dedupe_key

USER = {"X-User-Id": "user-1"}
WORKSPACE_ROW = {"id": "ws-1", "user_id": "user-1", "workspace_name": "Acme", "domain": "acme.io",
                 "created_at": None}
PROFILE_TITLE = "Jane Doe - VP Marketing at Globex | LinkedIn"
PROFILE_TEXT = "Jane Doe\nVP Marketing at Globex\nGlobex 2021 - Present\nLocated in Austin, Texas"
GLOBEX = {"name": "Globex", "domain": "globex.com", "city": "Austin", "region": "TX",
          "country": "US", "type": "business"}

class FakeIPInfo:
    def __init__(self, company=GLOBEX):
        self.company = company

    async def lookup(self, ip):
        return self.company

class FakeDedupeCache:
    def __init__(self):
        self.keys = {}

    async def set_if_absent(self, key, value, ttl=300):
        if key in self.keys:
            return False
        self.keys[key] = value
        return True

    async def delete(self, key):
        return self.keys.pop(key, None) is not None

class FakeExa:
    def __init__(self, contact=None):
        self.contact = contact
        self.searched = []

    async def find_contact(self, company, titles=None, location=None, icp_description=None):
        self.searched.append((company, titles))
        return self.contact

    async def deep_enrich_person(self, name, company):
        return {"thought_leadership": [], "total_public_mentions": 0}

# IPInfo

def test_is_public_ip():
    assert is_public_ip("8.8.8.8")
    assert not is_public_ip("10.0.0.1")
    assert not is_public_ip("127.0.0.1")
    assert not is_public_ip("garbage")

def test_parse_company_basic_plan_org_string():
    company = parse_company({"org": "AS15169 Google LLC", "city": "Mountain View", "country": "US"})
    assert company["name"] == "Google LLC"
    assert company["domain"] == "google.com"
    assert company["city"] == "Mountain View"

def test_parse_company_filters_isps_and_hosting():
    assert parse_company({"org": "AS7922 Comcast Cable Communications"}) is None
    assert parse_company({"org": "AS16509 Amazon Web Services"}) is None
    assert parse_company({"asn": {"name": "Globex", "domain": "globex.com", "type": "isp"}}) is None
    assert parse_company({}) is None

def test_parse_company_asn_plan_keeps_business_domain():
    company = parse_company({"asn": {"name": "Globex Corp", "domain": "globex.com", "type": "business"}})
    assert company["domain"] == "globex.com"

def test_domain_from_company():
    assert domain_from_company("Initech, Inc.") == "initech.com"
    assert domain_from_company("Salesforce Ltd") == "salesforce.com"
    assert domain_from_company("") == ""

def test_ipinfo_requires_token(monkeypatch):
    monkeypatch.delenv("IPINFO_TOKEN", raising=False)
    with pytest.raises(ValueError):
        IPInfoClient()

async def test_ipinfo_lookup():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"ip": "8.8.8.8", "org": "AS1 Globex Corporation", "country": "US"})

    client = IPInfoClient(token="t", transport=httpx.MockTransport(handler))
    company = await client.lookup("8.8.8.8")
    assert company["name"] == "Globex Corporation"
    assert seen[0].url.path == "/8.8.8.8"
    assert seen[0].url.params["token"] == "t"

async def test_ipinfo_lookup_skips_private_ips_and_errors():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(429)

    client = IPInfoClient(token="t", transport=httpx.MockTransport(handler))
    assert await client.lookup("192.168.1.10") is None
    assert calls == []
    assert await client.lookup("8.8.8.8") is None

# Exa

def test_build_linkedin_query_expands_titles():
    query = build_linkedin_query("Globex", ["Chief Marketing Officer"])
    assert '"Chief Marketing Officer"' in query
    assert "Marketing" in query
    assert '"currently working at Globex"' in query
    assert "-former" in query

def test_parse_linkedin_profile():
    profile = parse_linkedin_profile({"title": PROFILE_TITLE, "text": PROFILE_TEXT,
                                      "url": "https://linkedin.com/in/janedoe"})
    assert profile["name"] == "Jane Doe"
    assert profile["title"] == "VP Marketing"
    assert profile["company"] == "Globex"
    assert profile["location"] == "Austin, Texas"

def test_company_match_requires_current_role():
    assert company_match_score(PROFILE_TEXT, "Globex Inc") == 1.0
    assert company_match_score("Worked at Globex 2015 - 2018", "Globex") == 0.0
    assert company_match_score("Former engineer at Globex, 2019 - present", "Globex") == 0.0

def test_title_match_score_without_icp():
    assert title_match_score("", "Chief Revenue Officer") == 1.0
    assert title_match_score("", "VP Sales") == 0.8
    assert title_match_score("", "Account Executive") == 0.3

def test_title_match_score_with_icp():
    score = title_match_score("", "VP Marketing", "VP Marketing Head of Growth")
    assert 0 < score <= 1
    assert title_match_score("", "Software Engineer", "marketing") == 0

def test_select_best_contact_skips_non_employees():
    results = [{"title": PROFILE_TITLE, "url": "https://linkedin.com/in/janedoe"},
               {"title": "John Roe - CEO at Initech | LinkedIn", "url": "https://linkedin.com/in/jroe"}]
    contents = [{"title": PROFILE_TITLE, "text": PROFILE_TEXT},
                {"title": "John Roe - CEO at Initech | LinkedIn", "text": "John Roe\nCEO at Initech 2020 - present"}]
    best = score_and_select_best_contact(results, contents, "Globex")
    assert best["name"] == "Jane Doe"
    assert 0.3 < best["confidence_score"] <= 1

def test_social_and_press_helpers():
    assert extract_twitter_handle("https://twitter.com/janedoe") == "@janedoe"
    assert extract_twitter_handle("https://x.com/jd?s=1") == "@jd"
    assert extract_twitter_handle("https://example.com") == ""
    assert extract_publication("https://www.techcrunch.com/2024/story") == "techcrunch"

async def test_exa_find_contact():
    def handler(request):
        if request.url.path == "/search":
            return httpx.Response(200, json={"results": [{"title": PROFILE_TITLE,
                                                          "url": "https://linkedin.com/in/janedoe"}]})
        return httpx.Response(200, json={"results": [{"title": PROFILE_TITLE, "text": PROFILE_TEXT}]})

    client = ExaClient(api_key="k", transport=httpx.MockTransport(handler))
    contact = await client.find_contact("Globex", titles=["VP Marketing"])
    assert contact["linkedin_url"] == "https://linkedin.com/in/janedoe"

async def test_exa_errors_yield_no_contact():
    client = ExaClient(api_key="k", transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    assert await client.find_contact("Globex") is None

# Enrichment service

async def test_enrich_visitor_company_only(pool):
    feature_flags.set("FEATURE_EXA_CONTACTS", False)
    pool.con.queue("fetchval", "lead-1")
    result = await LeadEnrichmentService(pool, ipinfo=FakeIPInfo()).enrich_visitor(
        WORKSPACE_ROW, "8.8.8.8", page="/pricing", referrer="https://chatgpt.com/"
    )
    assert result["status"] == "company_only"
    assert result["lead_id"] == "lead-1"
    args = pool.con.args_for("INSERT INTO leads")
    assert args[2:4] == ("Globex", "globex.com")
    assert args[10:12] == (True, "chatgpt")

async def test_enrich_visitor_with_contact(pool):
    feature_flags.set("FEATURE_EXA_CONTACTS", True)
    exa = FakeExa(contact={"name": "Jane Doe", "title": "VP Marketing", "confidence_score": 0.82,
                           "linkedin_url": "https://linkedin.com/in/janedoe"})
    result = await LeadEnrichmentService(pool, ipinfo=FakeIPInfo(), exa=exa).enrich_visitor(
        WORKSPACE_ROW, "8.8.8.8", icp_titles=["CMO"]
    )
    assert result["status"] == "enriched"
    assert exa.searched == [("Globex", ["CMO"])]
    assert pool.con.args_for("INSERT INTO leads")[6:10] == (
        "Jane Doe", "VP Marketing", "https://linkedin.com/in/janedoe", 0.82)

async def test_enrich_visitor_skips_isps(pool):
    result = await LeadEnrichmentService(pool, ipinfo=FakeIPInfo(company=None)).enrich_visitor(WORKSPACE_ROW, "8.8.8.8")
    assert result == {"success": False, "status": "skip_isp"}
    assert pool.con.calls == []

async def test_enrich_visitor_disabled(pool):
    feature_flags.set("FEATURE_LEAD_ENRICHMENT", False)
    result = await LeadEnrichmentService(pool, ipinfo=FakeIPInfo()).enrich_visitor(WORKSPACE_ROW, "8.8.8.8")
    assert result["status"] == "disabled"

async def test_enrich_visitor_duplicate_within_window(pool, monkeypatch):
    feature_flags.set("FEATURE_EXA_CONTACTS", False)
    monkeypatch.setattr(leads_service, "cache", FakeDedupeCache())
    pool.con.queue("fetchval", "lead-1")
    service = LeadEnrichmentService(pool, ipinfo=FakeIPInfo())

    assert (await service.enrich_visitor(WORKSPACE_ROW, "8.8.8.8"))["status"] == "company_only"
    second = await service.enrich_visitor(WORKSPACE_ROW, "8.8.4.4")
    assert second["status"] == "duplicate"
    assert len(pool.con.queries("fetchval")) == 1

async def test_enrich_visitor_releases_claim_when_save_fails(pool, monkeypatch):
    feature_flags.set("FEATURE_EXA_CONTACTS", False)
    dedupe = FakeDedupeCache()
    monkeypatch.setattr(leads_service, "cache", dedupe)
    pool.con.queue("fetchval", RuntimeError("connection reset"), "lead-2")
    service = LeadEnrichmentService(pool, ipinfo=FakeIPInfo())

    with pytest.raises(RuntimeError):
        await service.enrich_visitor(WORKSPACE_ROW, "8.8.8.8")
    assert dedupe.keys == {}

    retry = await service.enrich_visitor(WORKSPACE_ROW, "8.8.8.8")
    assert retry["status"] == "company_only"
    assert retry["lead_id"] == "lead-2"
    assert dedupe_key("ws-1", "globex.com") in dedupe.keys

def test_dedupe_key_is_case_insensitive():
    assert dedupe_key("ws-1", "Globex.COM") == "lead:ws-1:globex.com"

async def test_list_leads_formats_confidence(pool):
    pool.con.queue("fetch", [
        {"id": 1, "confidence_score": 0.834, "is_ai_attributed": True, "ai_source": "perplexity"},
        {"id": 2, "confidence_score": None, "is_ai_attributed": False, "ai_source": None},
    ])
    leads = await LeadEnrichmentService(pool).list_leads("ws-1")
    assert [(lead["confidence"], lead["attribution_source"]) for lead in leads] == [
        ("83%", "perplexity"), ("N/A", "direct")]

# API

@pytest.fixture
def client(make_client, pool):
    service = LeadEnrichmentService(pool, ipinfo=FakeIPInfo(), exa=FakeExa())
    return make_client(leads_router, overrides={get_lead_service: lambda: service})

def test_leads_require_pro_plan(client, pool):
    pool.con.queue("fetchrow", {"id": "user-1", "subscription_plan": "plus"})
    response = client.get("/api/leads", params={"workspace_id": "ws-1"}, headers=USER)
    assert response.status_code == 402

def test_list_leads_endpoint(client, pool):
    pool.con.queue("fetchrow", {"id": "user-1", "subscription_plan": "pro"}, WORKSPACE_ROW)
    pool.con.queue("fetch", [{"id": 1, "confidence_score": 0.5, "is_ai_attributed": False, "ai_source": None}])
    body = client.get("/api/leads", params={"workspace_id": "ws-1"}, headers=USER).json()
    assert body["total"] == 1
    assert body["leads"][0]["confidence"] == "50%"

def test_enrich_now_rejects_private_ip(client, pool):
    pool.con.queue("fetchrow", {"id": "user-1", "subscription_plan": "enterprise"}, WORKSPACE_ROW)
    response = client.post("/api/leads/enrich-now", json={"workspace_id": "ws-1", "ip": "10.0.0.1"}, headers=USER)
    assert response.status_code == 400

def test_enrich_now_bypasses_dedupe(client, pool):
    pool.con.queue("fetchrow", {"id": "user-1", "is_admin": True}, WORKSPACE_ROW)
    pool.con.queue("fetchval", "lead-9")
    response = client.post("/api/leads/enrich-now", json={"workspace_id": "ws-1", "ip": "8.8.8.8"}, headers=USER)
    body = response.json()
    assert body["status"] == "company_only"
    assert body["lead_id"] == "lead-9"

def test_enrich_now_without_ipinfo_token(make_client, pool, monkeypatch):
    monkeypatch.delenv("IPINFO_TOKEN", raising=False)
    client = make_client(leads_router)
    pool.con.queue("fetchrow", {"id": "user-1", "subscription_plan": "pro"}, WORKSPACE_ROW)
    response = client.post("/api/leads/enrich-now", json={"workspace_id": "ws-1", "ip": "8.8.8.8"}, headers=USER)
    assert response.status_code == 503
