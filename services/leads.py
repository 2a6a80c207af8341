"""
Lead enrichment: visitor IP -> company (IPInfo) -> named contact (Exa) -> leads table
"""
import json
import logging
from typing import Any, Dict, List, Optional

from config.app_config import get_config
from infra.cache import cache
from services.enrichment.exa_client import ExaClient
from services.enrichment.ipinfo_client import IPInfoClient
from services.feature_flags import exa_contacts_enabled, lead_enrichment_enabled

logger = logging.getLogger(__name__)

AI_REFERRERS = {
    'chatgpt.com': 'chatgpt',
    'chat.openai.com': 'chatgpt',
    'perplexity.ai': 'perplexity',
    'claude.ai': 'claude',
    'gemini.google.com': 'gemini',
    'copilot.microsoft.com': 'copilot',
    'you.com': 'you',
}
AI_UTM_SOURCES = {'chatgpt', 'perplexity', 'claude', 'copilot', 'openai', 'gemini'}
AI_UTM_MEDIUMS = {'ai', 'llm', 'chatbot', 'assistant'}

class EnrichmentError(Exception):
    pass

def detect_ai_source(referrer: Optional[str], utm_source: str = None, utm_medium: str = None) -> Optional[str]:
    """Engine name for AI-referred visits, None for everything else"""
    if referrer:
        lower = referrer.lower()
        for host, engine in AI_REFERRERS.items():
            if host in lower:
                return engine
    if utm_source and utm_source.lower() in AI_UTM_SOURCES:
        return 'chatgpt' if utm_source.lower() == 'openai' else utm_source.lower()
    if utm_medium and utm_medium.lower() in AI_UTM_MEDIUMS:
        return 'unknown-ai'
    return None

def dedupe_key(workspace_id: str, company_domain: str) -> str:
    return f"lead:{workspace_id}:{company_domain.lower()}"

class LeadEnrichmentService:
    def __init__(self, pool, ipinfo: IPInfoClient = None, exa: ExaClient = None):
        self.pool = pool
        self.settings = get_config().get_enrichment()
        self._ipinfo = ipinfo
        self._exa = exa

    @property
    def ipinfo(self) -> IPInfoClient:
        if self._ipinfo is None:
            try:
                self._ipinfo = IPInfoClient(timeout_ms=self.settings["ipinfo_timeout_ms"])
            except ValueError as e:
                raise EnrichmentError(str(e))
        return self._ipinfo

    @property
    def exa(self) -> Optional[ExaClient]:
        if self._exa is None:
            try:
                self._exa = ExaClient(timeout=self.settings["exa_timeout_seconds"])
            except ValueError as e:
                logger.warning(f"Contact lookup unavailable: {e}")
                return None
        return self._exa

    async def enrich_visitor(self, workspace: Dict[str, Any], ip: str, page: str = None,
                             referrer: str = None, icp_titles: List[str] = None,
                             force: bool = False) -> Dict[str, Any]:
        """
        Resolve a visitor to a lead. Returns a result dict whose status is one of
        enriched, company_only, skip_isp, duplicate, disabled
        """
        if not lead_enrichment_enabled():
            return {"success": False, "status": "disabled"}

        company = await self.ipinfo.lookup(ip)
        if not company:
            return {"success": False, "status": "skip_isp"}

        ttl = int(self.settings["dedupe_hours"] * 3600)
        key = dedupe_key(workspace["id"], company["domain"] or company["name"])
        if not force and not await cache.set_if_absent(key, {"ip": ip}, ttl=ttl):
            logger.info(f"Lead for {company['name']} already enriched in workspace {workspace['id']}")
            return {"success": False, "status": "duplicate", "company": company}

        contact, insights = None, None
        try:
            if exa_contacts_enabled() and self.exa is not None:
                titles = icp_titles or self.settings["default_icp_titles"]
                contact = await self.exa.find_contact(
                    company["name"], titles=titles, icp_description=" ".join(titles)
                )
                if contact:
                    insights = await self.exa.deep_enrich_person(contact["name"], company["name"])

            ai_source = detect_ai_source(referrer)
            lead_id = await self._save_lead(workspace, company, contact, insights, page, referrer, ai_source)
        except Exception as e:
            # release the claim so the next visit retries
            logger.error(f"Lead enrichment failed for {company['name']} in workspace {workspace['id']}: {e}")
            if not force:
                await cache.delete(key)
            raise
        status = "enriched" if contact else "company_only"
        logger.info(f"💼 Lead {lead_id} ({status}) for {company['name']} in workspace {workspace['id']}")

        return {
            "success": True,
            "status": status,
            "lead_id": lead_id,
            "company": company,
            "contact": contact,
            "insights": insights,
        }

    async def _save_lead(self, workspace, company, contact, insights, page, referrer, ai_source) -> str:
        contact = contact or {}
        async with self.pool.acquire() as con:
            return await con.fetchval("""
                INSERT INTO leads (
                    workspace_id, user_id, company_name, company_domain, company_city,
                    company_country, contact_name, contact_title, linkedin_url,
                    confidence_score, is_ai_attributed, ai_source, page_url, referrer, insights
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15::jsonb)
                RETURNING id
            """,
                workspace["id"], workspace["user_id"], company["name"], company["domain"],
                company.get("city"), company.get("country"),
                contact.get("name"), contact.get("title"), contact.get("linkedin_url"),
                contact.get("confidence_score"), ai_source is not None, ai_source,
                page, referrer, json.dumps(insights or {}, default=str)
            )

    async def list_leads(self, workspace_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as con:
            rows = await con.fetch("""
                SELECT id, company_name, company_domain, company_city, company_country,
                       contact_name, contact_title, linkedin_url, confidence_score,
                       is_ai_attributed, ai_source, page_url, created_at
                FROM leads
                WHERE workspace_id = $1
                ORDER BY created_at DESC
                LIMIT $2
            """, workspace_id, limit)

        leads = []
        for row in rows:
            lead = dict(row)
            score = lead.get("confidence_score")
            lead["confidence"] = f"{round(float(score) * 100)}%" if score is not None else "N/A"
            lead["attribution_source"] = lead["ai_source"] if lead["is_ai_attributed"] else "direct"
            leads.append(lead)
        return leads

async def run_enrichment_job(pool, workspace: Dict[str, Any], ip: str, page: str = None, referrer: str = None):
    """Background entry point; failures are logged since there is no caller to report to"""
    try:
        result = await LeadEnrichmentService(pool).enrich_visitor(workspace, ip, page=page, referrer=referrer)
        logger.info(f"Background enrichment for workspace {workspace['id']}: {result['status']}")
    except Exception as e:
        logger.error(f"Background enrichment failed for workspace {workspace['id']}: {e}")
