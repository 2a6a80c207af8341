"""
Company-mention detection in answer-engine responses via OpenAI
"""
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from config.app_config import get_config

logger = logging.getLogger(__name__)

POSITIONS = ("primary", "secondary", "passing", "none")
SENTIMENTS = ("very_positive", "positive", "neutral", "negative", "very_negative")
REQUIRED_FIELDS = ("mention_detected", "mention_position", "sentiment", "confidence", "reasoning")

SYSTEM_PROMPT = (
    "You are an expert AI analyst specialized in detecting and analyzing company mentions "
    "in text. Respond only with valid JSON."
)

def fallback_analysis(reason: str) -> Dict[str, Any]:
    return {
        "mention_detected": False,
        "mention_position": "none",
        "sentiment": "neutral",
        "confidence": 0.5,
        "mention_context": None,
        "competitors_mentioned": [],
        "reasoning": reason,
    }

def build_prompt(response_text: str, company_name: str, domain: str,
                 aliases: Optional[List[str]] = None) -> str:
    aliases = aliases or []
    return f"""
Analyze this AI response for mentions of "{company_name}" (domain: {domain}).

Also consider these alternative names: {', '.join(aliases)}

Response to analyze:
\"\"\"
{response_text}
\"\"\"

Determine:
1. Is "{company_name}" or any alias mentioned?
2. If mentioned, what is the mention position? (primary/secondary/passing/none)
3. What is the sentiment of the mention? (very_positive/positive/neutral/negative/very_negative)
4. What is the surrounding context of the mention?
5. Which other companies are mentioned as alternatives or competitors?
6. How confident are you in this analysis? (0-1)

Return ONLY the raw JSON object below. Start your response with {{ and end with }}

{{
  "mention_detected": boolean,
  "mention_position": "primary|secondary|passing|none",
  "sentiment": "very_positive|positive|neutral|negative|very_negative",
  "mention_context": "relevant surrounding text or null",
  "competitors_mentioned": ["company name"],
  "confidence": number,
  "reasoning": "brief explanation of your analysis"
}}
""".strip()

def extract_json_object(text: str) -> Dict[str, Any]:
    """Outermost {...} of a model reply, code fences and stray backticks removed"""
    cleaned = text.strip()
    cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"\s*```$", "", cleaned)
    cleaned = cleaned.strip("`")

    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise ValueError("No valid JSON object found in response")
    return json.loads(cleaned[start:end + 1])

def parse_analysis(text: str) -> Dict[str, Any]:
    try:
        data = extract_json_object(text)
    except (ValueError, json.JSONDecodeError) as e:
        return fallback_analysis(f"Parse error: {e}")

    # older prompt wording
    if "sentiment" not in data and "mention_sentiment" in data:
        data["sentiment"] = data["mention_sentiment"]
    if "confidence" not in data and "confidence_score" in data:
        data["confidence"] = data["confidence_score"]

    missing = [f for f in REQUIRED_FIELDS if f not in data]
    if missing:
        return fallback_analysis(f"Parse error: missing fields {', '.join(missing)}")

    position = data["mention_position"] if data["mention_position"] in POSITIONS else "none"
    sentiment = data["sentiment"] if data["sentiment"] in SENTIMENTS else "neutral"
    try:
        confidence = max(0.0, min(1.0, float(data["confidence"])))
    except (TypeError, ValueError):
        confidence = 0.5

    competitors = data.get("competitors_mentioned") or []
    if not isinstance(competitors, list):
        competitors = []

    return {
        "mention_detected": bool(data["mention_detected"]),
        "mention_position": position,
        "sentiment": sentiment,
        "confidence": confidence,
        "mention_context": data.get("mention_context"),
        "competitors_mentioned": [str(c) for c in competitors if c],
        "reasoning": str(data["reasoning"]),
    }

class MentionAnalyzer:
    def __init__(self, client: AsyncOpenAI = None, settings: Dict[str, Any] = None):
        self.settings = settings or get_config().get_analyzer_settings()
        if client is None:
            if not os.getenv("OPENAI_API_KEY"):
                raise ValueError("OPENAI_API_KEY environment variable is required")
            client = AsyncOpenAI()
        self.client = client

    async def analyze(self, response_text: str, company_name: str, domain: str,
                      aliases: Optional[List[str]] = None) -> Dict[str, Any]:
        if not response_text:
            return fallback_analysis("Empty response")

        try:
            completion = await self.client.chat.completions.create(
                model=self.settings.get("model", "gpt-4o"),
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(response_text, company_name, domain, aliases)},
                ],
                temperature=self.settings.get("temperature", 0.1),
                max_tokens=self.settings.get("max_tokens", 500),
            )
            content = completion.choices[0].message.content
        except Exception as e:
            logger.error(f"Mention analysis failed for {company_name}: {e}")
            return fallback_analysis(f"Analysis error: {e}")

        if not content:
            return fallback_analysis("No response from OpenAI")
        return parse_analysis(content)

    async def test_connection(self) -> Dict[str, Any]:
        try:
            await self.client.chat.completions.create(
                model=self.settings.get("model", "gpt-4o"),
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=1,
            )
            return {"success": True}
        except Exception as e:
            return {"success": False, "error": str(e)}
