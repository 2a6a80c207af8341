"""
Feature flags for expensive or third-party-backed features
Toggle them off during incidents or vendor outages
"""
import os
from typing import Dict, Any

def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"

class FeatureFlags:
    def __init__(self):
        self._flags = {
            "FEATURE_LEAD_ENRICHMENT": _env_bool("FEATURE_LEAD_ENRICHMENT", "true"),
            "FEATURE_EXA_CONTACTS": _env_bool("FEATURE_EXA_CONTACTS", "true"),
            "FEATURE_MAX_VISIBILITY": _env_bool("FEATURE_MAX_VISIBILITY", "true"),
            "FEATURE_COMPETITIVE_ANALYSIS": _env_bool("FEATURE_COMPETITIVE_ANALYSIS", "true"),
            "FEATURE_CLOUD_TASKS": _env_bool("FEATURE_CLOUD_TASKS", "false"),
        }

    def is_enabled(self, flag: str) -> bool:
        return self._flags.get(flag, False)

    def set(self, flag: str, value: bool):
        """Override a flag at runtime (admin toggle, tests)"""
        self._flags[flag] = value

    def all_flags(self) -> Dict[str, Any]:
        return self._flags.copy()

# Global feature flags instance
feature_flags = FeatureFlags()

def lead_enrichment_enabled() -> bool:
    return feature_flags.is_enabled("FEATURE_LEAD_ENRICHMENT")

def exa_contacts_enabled() -> bool:
    return feature_flags.is_enabled("FEATURE_EXA_CONTACTS")

def max_visibility_enabled() -> bool:
    return feature_flags.is_enabled("FEATURE_MAX_VISIBILITY")

def competitive_analysis_enabled() -> bool:
    return feature_flags.is_enabled("FEATURE_COMPETITIVE_ANALYSIS")

def cloud_tasks_enabled() -> bool:
    return feature_flags.is_enabled("FEATURE_CLOUD_TASKS")
