# infra/security_filters.py
"""
Security helpers: PII masking for logs and API key hashing
"""

import re
import hashlib
import hmac
import logging

MASK = "[REDACTED]"
PII_PATTERNS = [
    re.compile(r'(\bsplit_(?:live|test)_[a-z0-9]+_[a-z0-9]+)'),   # split api keys
    re.compile(r'([\w\.-]+@[\w\.-]+\.\w+)'),                      # emails
    re.compile(r'(\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b)'),  # credit cards
    re.compile(r'(\+?\d[\d\-\s]{7,}\d)'),                         # phones
    re.compile(r'(\b[sr]k_(?:live|test)_[a-zA-Z0-9]{16,})\b'),    # stripe keys
    re.compile(r'(\bBearer\s+[A-Za-z0-9\-\._~\+/]{16,})'),        # bearer tokens
]

class PiiMaskFilter(logging.Filter):
    """Filter that masks PII in log messages"""

    def filter(self, record):
        if record.msg:
            msg = record.getMessage()
            for pattern in PII_PATTERNS:
                msg = pattern.sub(MASK, msg)
            record.msg = msg
            record.args = ()
        return True

def mask_pii(text: str) -> str:
    for pattern in PII_PATTERNS:
        text = pattern.sub(MASK, text)
    return text

def hash_api_key(api_key: str) -> str:
    """SHA-256 hex digest stored in workspace_api_keys.key_hash"""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()

def api_key_matches(api_key: str, key_hash: str) -> bool:
    return hmac.compare_digest(hash_api_key(api_key), key_hash or "")
