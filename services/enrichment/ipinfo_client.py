"""
IPInfo lookup: visitor IP -> business (or None for ISPs, hosting and private ranges)
"""
import ipaddress
import logging
import os
import re
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

IPINFO_BASE_URL = "https://ipinfo.io"

ISP_KEYWORDS = [
    'comcast', 'verizon', 'at&t', 'spectrum', 'cox', 'charter', 'centurylink', 'frontier',
    'windstream', 'mediacom', 'cable', 'broadband', 'telecom', 'communications',
    'internet service', 'isp',
]
HOSTING_KEYWORDS = [
    'amazon web services', 'aws', 'google cloud', 'microsoft azure', 'digitalocean', 'linode',
    'vultr', 'ovh', 'hosting', 'datacenter', 'cloud',
]
KNOWN_DOMAINS = {
    'google': 'google.com',
    'microsoft': 'microsoft.com',
    'amazon': 'amazon.com',
    'apple': 'apple.com',
    'meta': 'meta.com',
    'netflix': 'netflix.com',
    'salesforce': 'salesforce.com',
    'oracle': 'oracle.com',
    'adobe': 'adobe.com',
    'shopify': 'shopify.com',
}

_ORG_RE = re.compile(r'AS\d+\s+(.+)$')
_SUFFIX_RE = re.compile(r'\b(inc|llc|corp|corporation|ltd|limited|co)\b')

def is_public_ip(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return addr.is_global

def is_isp_or_hosting(company_name: str) -> bool:
    lower = company_name.lower()
    return any(k in lower for k in ISP_KEYWORDS) or any(k in lower for k in HOSTING_KEYWORDS)

def domain_from_company(company_name: str) -> str:
    clean = _SUFFIX_RE.sub('', company_name.lower())
    clean = re.sub(r'[^a-z0-9\s]', '', clean).strip()
    first_word = clean.split(' ')[0] if clean else ''
    if first_word in KNOWN_DOMAINS:
        return KNOWN_DOMAINS[first_word]
    return f"{first_word}.com" if first_word else ''

def parse_company(data: Dict[str, Any]) -> Optional[Dict[str, str]]:
    """Interpret an IPInfo payload (basic or ASN-enriched plan)"""
    asn = data.get('asn') if isinstance(data.get('asn'), dict) else None
    company_name, domain = '', ''

    if asn:
        company_name = asn.get('name') or ''
        domain = asn.get('domain') or ''
        if asn.get('type') and asn['type'] != 'business':
            return None
    elif data.get('org'):
        match = _ORG_RE.search(data['org'])
        company_name = match.group(1) if match else data['org']

    if not company_name:
        return None

    # basic plan carries no type, filter by name instead
    if not (asn and asn.get('type')) and is_isp_or_hosting(company_name):
        return None

    if not domain:
        domain = data.get('domain') or domain_from_company(company_name)

    return {
        'name': company_name,
        'domain': domain or '',
        'city': data.get('city') or '',
        'region': data.get('region') or '',
        'country': data.get('country') or '',
        'type': 'business',
    }

class IPInfoClient:
    def __init__(self, token: str = None, timeout_ms: int = 150, transport: httpx.AsyncBaseTransport = None):
        self.token = token or os.getenv("IPINFO_TOKEN")
        if not self.token:
            raise ValueError("IPINFO_TOKEN environment variable is required")
        self.timeout = timeout_ms / 1000
        self._transport = transport

    async def lookup(self, ip: str) -> Optional[Dict[str, str]]:
        if not is_public_ip(ip):
            return None

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{IPINFO_BASE_URL}/{ip}",
                    params={"token": self.token},
                    headers={"Accept": "application/json", "User-Agent": "Split-Leads/1.0"},
                )
        except httpx.TimeoutException:
            logger.warning(f"IPInfo lookup timeout for IP: {ip}")
            return None
        except httpx.HTTPError as e:
            logger.error(f"IPInfo lookup error: {e}")
            return None

        if response.status_code != 200:
            logger.error(f"IPInfo API error: {response.status_code}")
            return None

        try:
            return parse_company(response.json())
        except ValueError as e:
            logger.error(f"IPInfo returned invalid JSON: {e}")
            return None
