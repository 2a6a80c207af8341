"""
Perplexity answer-engine client with rolling-hour rate limit and retries
"""
import asyncio
import logging
import os
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from config.app_config import get_config

logger = logging.getLogger(__name__)

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"
RATE_WINDOW_SECONDS = 3600

class PerplexityError(Exception):
    def __init__(self, code: str, message: str, retryable: bool = False, retry_after: float = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}

def error_for_status(status: int, message: str) -> PerplexityError:
    if status in (401, 403):
        return PerplexityError("AUTH_ERROR", message)
    if status == 429:
        return PerplexityError("RATE_LIMITED", message, retryable=True)
    if status == 400:
        return PerplexityError("INVALID_REQUEST", message)
    if status >= 500:
        return PerplexityError("SERVER_ERROR", message, retryable=True)
    return PerplexityError("HTTP_ERROR", message)

def normalize_citations(data: Dict[str, Any]) -> List[Dict[str, str]]:
    """URLs from `search_results` (dicts) or `citations` (plain urls) as {url, title, domain}"""
    raw = data.get("search_results") or data.get("citations") or []
    citations, seen = [], set()
    for item in raw:
        if isinstance(item, str):
            url, title = item, ""
        elif isinstance(item, dict) and item.get("url"):
            url, title = item["url"], item.get("title") or ""
        else:
            continue
        if url in seen:
            continue
        seen.add(url)
        domain = (urlparse(url).hostname or "").lower()
        if domain.startswith("www."):
            domain = domain[4:]
        citations.append({"url": url, "title": title, "domain": domain})
    return citations

def validate_response(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise PerplexityError("INVALID_RESPONSE", "Invalid response format")
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise PerplexityError("INVALID_RESPONSE", "No response choices returned")
    content = (choices[0].get("message") or {}).get("content")
    if not content:
        raise PerplexityError("INVALID_RESPONSE", "No message content in response")
    return {
        "id": data.get("id"),
        "content": content,
        "citations": normalize_citations(data),
        "usage": data.get("usage") or {"prompt_tokens": 0, "completion_tokens": 0},
    }

class PerplexityClient:
    def __init__(self, api_key: str = None, settings: Dict[str, Any] = None,
                 transport: httpx.AsyncBaseTransport = None, max_retries: int = 3,
                 base_delay: float = 1.0, max_delay: float = 30.0, backoff_factor: float = 2.0):
        self.api_key = api_key or os.getenv("PERPLEXITY_API_KEY")
        if not self.api_key:
            raise ValueError("PERPLEXITY_API_KEY environment variable is required")

        self.settings = settings or get_config().get_perplexity_settings()
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self._transport = transport
        self._requests: List[float] = []

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)"""
        return min(self.base_delay * self.backoff_factor ** (attempt - 1), self.max_delay)

    def rate_limit_status(self) -> Dict[str, Any]:
        self._prune()
        limit = self.settings.get("requests_per_hour", 500)
        return {"used": len(self._requests), "limit": limit, "remaining": max(0, limit - len(self._requests))}

    def _prune(self, now: float = None):
        cutoff = (now or time.monotonic()) - RATE_WINDOW_SECONDS
        self._requests = [t for t in self._requests if t > cutoff]

    def _enforce_rate_limit(self):
        now = time.monotonic()
        self._prune(now)
        limit = self.settings.get("requests_per_hour", 500)
        if len(self._requests) >= limit:
            wait = RATE_WINDOW_SECONDS - (now - self._requests[0])
            raise PerplexityError(
                "RATE_LIMITED", f"Rate limit exceeded. Please wait {int(wait) + 1} seconds.",
                retryable=False, retry_after=wait
            )

    async def query(self, question: str, search_domain_filter: List[str] = None) -> Dict[str, Any]:
        self._enforce_rate_limit()

        last_error: Optional[PerplexityError] = None
        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                await asyncio.sleep(self.backoff_delay(attempt))
            try:
                result = await self._request(question, search_domain_filter)
                self._requests.append(time.monotonic())
                return result
            except PerplexityError as e:
                last_error = e
                logger.warning(f"Perplexity attempt {attempt + 1} failed: {e.code} {e.message}")
                if not e.retryable:
                    raise

        raise PerplexityError(
            last_error.code,
            f"Failed after {self.max_retries + 1} attempts: {last_error.message}",
            retryable=False,
        )

    async def _request(self, question: str, search_domain_filter: List[str] = None) -> Dict[str, Any]:
        body = {
            "model": self.settings.get("model", "sonar"),
            "messages": [{"role": "user", "content": question}],
            "temperature": self.settings.get("temperature", 0.2),
            "max_tokens": self.settings.get("max_tokens", 1500),
            "return_citations": True,
        }
        if search_domain_filter:
            body["search_domain_filter"] = search_domain_filter

        try:
            async with httpx.AsyncClient(timeout=60, transport=self._transport) as client:
                response = await client.post(PERPLEXITY_URL, json=body, headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "User-Agent": "Split-MaxVisibility/1.0",
                })
        except httpx.HTTPError as e:
            raise PerplexityError("NETWORK_ERROR", str(e) or e.__class__.__name__, retryable=True)

        if response.status_code != 200:
            message = f"HTTP {response.status_code}"
            try:
                message = response.json().get("error", {}).get("message") or message
            except (ValueError, AttributeError):
                pass
            raise error_for_status(response.status_code, message)

        try:
            data = response.json()
        except ValueError:
            raise PerplexityError("INVALID_RESPONSE", "Response was not JSON", retryable=True)
        return validate_response(data)

    async def test_connection(self) -> Dict[str, Any]:
        try:
            await self.query("What is the current date?")
            return {"success": True}
        except PerplexityError as e:
            return {"success": False, "error": e.message, "code": e.code}
