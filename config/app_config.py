# config/app_config.py
import copy
import yaml
import os
from typing import Dict, Any, List
from pathlib import Path
import logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "version": "2.3",
    "global": {
        "brand_name": "Split",
        "dashboard_origins": ["https://split.dev"],
    },
    "security": {
        "rate_limits": {"requests_per_minute": 120},
        "max_events_per_batch": 100,
        "max_api_keys_per_workspace": 10,
    },
    "dashboard": {
        "stats_cache_ttl": 60,
        "plan_row_limits": {"free": 0, "visibility": 250, "plus": 500, "pro": 1000},
    },
    "max_visibility": {
        "question_count": 50,
        "batch_size": 5,
        "batch_delay_seconds": 1.0,
        "weights": {
            "mention_rate": 0.40,
            "mention_quality": 0.25,
            "source_influence": 0.20,
            "competitive_positioning": 0.10,
            "response_consistency": 0.05,
        },
        "question_distribution": {
            "direct": 0.30,
            "indirect": 0.25,
            "comparison": 0.20,
            "recommendation": 0.15,
            "explanatory": 0.10,
        },
        "perplexity": {"model": "sonar", "temperature": 0.2, "max_tokens": 1500, "requests_per_hour": 500},
        "analyzer": {"model": "gpt-4o", "temperature": 0.1, "max_tokens": 500},
    },
    "enrichment": {
        "ipinfo_timeout_ms": 150,
        "exa_timeout_seconds": 15,
        "dedupe_hours": 24,
        "default_icp_titles": ["VP Marketing", "Head of Growth", "CMO"],
    },
}

class AppConfig:
    """
    Settings loader for Split
    Loads settings.yaml and merges the block for the current ENVIRONMENT on top
    """

    def __init__(self, config_path: str = None, environment: str = None):
        self.environment = environment or os.getenv('ENVIRONMENT', 'development')
        self.config_path = config_path or str(Path(__file__).parent / 'settings.yaml')
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self):
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
            self._config = copy.deepcopy(DEFAULT_CONFIG)
            self._deep_merge(self._config, loaded)
            self._apply_environment_overrides()
            logger.info(f"Loaded settings v{self.version} for {self.environment}")
        except FileNotFoundError:
            logger.error(f"Config file not found: {self.config_path}")
            self._config = copy.deepcopy(DEFAULT_CONFIG)
        except yaml.YAMLError as e:
            logger.error(f"YAML parsing error: {e}")
            self._config = copy.deepcopy(DEFAULT_CONFIG)

    def _apply_environment_overrides(self):
        environments = self._config.pop('environments', None) or {}
        if self.environment in environments:
            self._deep_merge(self._config, environments[self.environment] or {})

    def _deep_merge(self, base: Dict, overrides: Dict):
        for key, value in overrides.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    @property
    def version(self) -> str:
        return str(self._config.get('version', '2.3'))

    @property
    def brand_name(self) -> str:
        return self._config.get('global', {}).get('brand_name', 'Split')

    def get_dashboard_origins(self) -> List[str]:
        return self._config.get('global', {}).get('dashboard_origins', [])

    # Security
    def get_rate_limit(self, limit_type: str) -> int:
        limits = self._config.get('security', {}).get('rate_limits', {})
        return limits.get(limit_type, 100)

    def get_max_events_per_batch(self) -> int:
        return self._config.get('security', {}).get('max_events_per_batch', 100)

    def get_max_api_keys(self) -> int:
        return self._config.get('security', {}).get('max_api_keys_per_workspace', 10)

    # Dashboard
    def get_stats_cache_ttl(self) -> int:
        return self._config.get('dashboard', {}).get('stats_cache_ttl', 60)

    def get_plan_row_limit(self, plan: str) -> int:
        limits = self._config.get('dashboard', {}).get('plan_row_limits', {})
        return limits.get(plan, 0)

    # MAX Visibility
    def get_max_visibility(self) -> Dict[str, Any]:
        return self._config.get('max_visibility', {})

    def get_scoring_weights(self) -> Dict[str, float]:
        return dict(self.get_max_visibility().get('weights', {}))

    def get_question_distribution(self) -> Dict[str, float]:
        return dict(self.get_max_visibility().get('question_distribution', {}))

    def get_perplexity_settings(self) -> Dict[str, Any]:
        return dict(self.get_max_visibility().get('perplexity', {}))

    def get_analyzer_settings(self) -> Dict[str, Any]:
        return dict(self.get_max_visibility().get('analyzer', {}))

    # Enrichment
    def get_enrichment(self) -> Dict[str, Any]:
        return self._config.get('enrichment', {})

    def get_raw_config(self) -> Dict:
        return copy.deepcopy(self._config)

    def reload_config(self):
        self._load_config()

    def validate_config(self) -> list:
        """Return a list of configuration problems (empty when valid)"""
        issues = []

        weights = self.get_scoring_weights()
        if weights and abs(sum(weights.values()) - 1.0) > 1e-6:
            issues.append(f"Scoring weights sum to {sum(weights.values()):.3f}, expected 1.0")

        distribution = self.get_question_distribution()
        if distribution and abs(sum(distribution.values()) - 1.0) > 1e-6:
            issues.append(f"Question distribution sums to {sum(distribution.values()):.3f}, expected 1.0")

        if self.get_max_visibility().get('batch_size', 1) < 1:
            issues.append("max_visibility.batch_size must be at least 1")

        return issues

_config_instance = None

def get_config(environment: str = None) -> AppConfig:
    """Get global configuration instance"""
    global _config_instance

    if _config_instance is None:
        _config_instance = AppConfig(environment=environment)

    return _config_instance

def reload_config():
    if _config_instance:
        _config_instance.reload_config()
